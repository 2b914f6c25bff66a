"""Payment checkout, confirmation and refund endpoints."""
from fastapi import APIRouter, Depends, Header, Query, Response, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas.payment import CheckoutRead, CheckoutRequest, PaymentRead, RefundRequest
from app.services.checkout import PaymentOrchestrator, build_orchestrator
from app.utils.errors import ValidationError

router = APIRouter(prefix="/payments", tags=["payments"])


def get_orchestrator(db: Session = Depends(get_db)) -> PaymentOrchestrator:
    return build_orchestrator(db)


@router.post("/checkout", response_model=CheckoutRead, status_code=status.HTTP_201_CREATED)
def initiate_checkout(
    payload: CheckoutRequest,
    authorization: str | None = Header(default=None),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    """Create a payment with the provider and return the client continuation."""

    result = orchestrator.initiate_checkout(payload, auth=authorization)
    return CheckoutRead(
        payment=PaymentRead.model_validate(result.payment),
        continuation=result.continuation,
        client_secret=result.client_secret,
        redirect_url=result.redirect_url,
    )


@router.post("/confirm", response_model=PaymentRead)
def confirm_payment(
    reference: str | None = Query(default=None),
    session_id: str | None = Query(default=None),
    payment_intent_id: str | None = Query(default=None),
    authorization: str | None = Header(default=None),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    """Reconcile a payment after the payer returns from the provider."""

    provider_ref = reference or session_id or payment_intent_id
    if not provider_ref:
        raise ValidationError("A provider reference is required", code="REFERENCE_MISSING")
    return orchestrator.confirm(provider_ref, auth=authorization)


@router.post("/wallet/confirm", response_model=PaymentRead)
def confirm_wallet_payment(
    payment_id: str = Query(..., description="Provider payment id returned at checkout"),
    payer_id: str = Query(..., description="Payer id the provider appended to the return URL"),
    authorization: str | None = Header(default=None),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.confirm_wallet(payment_id, payer_id, auth=authorization)


@router.post("/{payment_id}/refund", response_model=PaymentRead)
def refund_payment(
    payment_id: int,
    payload: RefundRequest | None = None,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    amount = payload.amount if payload else None
    reason = payload.reason if payload else None
    return orchestrator.refund_payment(payment_id, amount, reason=reason)


@router.post("/{payment_id}/booking/retry", response_model=PaymentRead)
def retry_booking(
    payment_id: int,
    authorization: str | None = Header(default=None),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    """Replay the booking step for a payment stuck without a booking."""

    return orchestrator.retry_booking(payment_id, auth=authorization)


@router.get("/compensation-gaps", response_model=list[PaymentRead])
def list_compensation_gaps(orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return orchestrator.list_compensation_gaps()


@router.get("/user/{user_id}", response_model=list[PaymentRead])
def list_user_payments(user_id: int, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return orchestrator.list_user_payments(user_id)


@router.get("/user/{user_id}/completed", response_model=list[PaymentRead])
def list_completed_user_payments(user_id: int, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return orchestrator.list_completed_user_payments(user_id)


@router.get("/manager/{manager_id}", response_model=list[PaymentRead])
def list_manager_payments(manager_id: int, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return orchestrator.list_manager_payments(manager_id)


@router.get("/booking/{booking_id}", response_model=PaymentRead)
def get_payment_by_booking(booking_id: int, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_payment_by_booking(booking_id)


@router.get("/{payment_id}", response_model=PaymentRead)
def get_payment(payment_id: int, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_payment(payment_id)


@router.delete("/user/{user_id}/cascade-delete", status_code=status.HTTP_204_NO_CONTENT)
def cascade_delete_user(user_id: int, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)) -> Response:
    """Cancel a deleted user's open payments and drop their saved methods."""

    orchestrator.cancel_user_payments(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
