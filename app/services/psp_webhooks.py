"""Services handling payment provider webhook callbacks."""
from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import stripe
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import Settings
from app.models.psp_webhook import PSPWebhookEvent
from app.services.checkout import PaymentOrchestrator
from app.services.psp_paypal import WalletGateway
from app.services.psp_stripe import CardGateway
from app.utils.errors import GatewayError, NotFoundError, ServiceError
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

STRIPE_CONFIRM_EVENTS = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "checkout.session.async_payment_failed",
    "checkout.session.expired",
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "payment_intent.canceled",
}

PAYPAL_CONFIRM_EVENTS = {
    "PAYMENT.SALE.COMPLETED",
    "PAYMENT.SALE.DENIED",
}


def is_replay(db: Session, provider: str, event_id: str) -> bool:
    existing = db.scalar(
        select(PSPWebhookEvent)
        .where(PSPWebhookEvent.provider == provider, PSPWebhookEvent.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return existing is not None


def _register_event(
    db: Session,
    *,
    provider: str,
    event_id: str,
    kind: str,
    reference: str | None,
    payload: dict[str, Any],
) -> PSPWebhookEvent | None:
    """Record a delivery; ``None`` when the provider already sent it."""

    if is_replay(db, provider, event_id):
        logger.warning("Replay detected for PSP webhook", extra={"event_id": event_id, "provider": provider})
        return None
    event = PSPWebhookEvent(
        provider=provider,
        event_id=event_id,
        kind=kind,
        reference=reference,
        raw_json=payload,
        received_at=utcnow(),
    )
    try:
        db.add(event)
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.warning("Replay detected for PSP webhook", extra={"event_id": event_id, "provider": provider})
        return None
    return event


def _confirm_reference(orchestrator: PaymentOrchestrator, reference: str | None, event_id: str) -> None:
    if not reference:
        logger.warning("Webhook carries no payment reference", extra={"event_id": event_id})
        return
    try:
        orchestrator.confirm(reference, auth=None)
    except NotFoundError:
        logger.info(
            "Webhook reference matches no payment",
            extra={"event_id": event_id, "reference": reference},
        )


def _finish(db: Session, event: PSPWebhookEvent) -> dict[str, Any]:
    event.processed_at = utcnow()
    db.commit()
    return {"received": True, "event_id": event.event_id}


def _stripe_reference(event_type: str, obj: Mapping[str, Any]) -> str | None:
    if event_type.startswith("checkout.session.") or event_type.startswith("payment_intent."):
        return obj.get("id")
    if event_type.startswith("charge."):
        return obj.get("payment_intent")
    return None


def handle_stripe_webhook(
    db: Session,
    orchestrator: PaymentOrchestrator,
    settings: Settings,
    payload: bytes,
    sig_header: str | None,
) -> dict[str, Any]:
    """Verify a Stripe delivery and reconcile the payment it concerns."""

    if not sig_header:
        raise ServiceError("Stripe-Signature header is required.", code="STRIPE_SIGNATURE_MISSING")
    try:
        CardGateway(settings).construct_webhook_event(payload, sig_header)
    except stripe.SignatureVerificationError as exc:
        logger.warning("Stripe signature verification failed")
        raise ServiceError("Invalid Stripe signature.", code="STRIPE_SIGNATURE_INVALID") from exc
    except ValueError as exc:
        raise ServiceError("Invalid Stripe webhook payload.", code="STRIPE_EVENT_INVALID") from exc

    event = json.loads(payload)
    event_id = event.get("id")
    event_type = event.get("type") or "unknown"
    if not event_id:
        raise ServiceError("Webhook event id is required.", code="MISSING_EVENT_ID")
    obj = (event.get("data") or {}).get("object") or {}
    reference = _stripe_reference(event_type, obj)
    logger.info("Stripe webhook received", extra={"event_type": event_type, "event_id": event_id})

    record = _register_event(
        db, provider="stripe", event_id=event_id, kind=event_type, reference=reference, payload=event
    )
    if record is None:
        return {"received": True, "event_id": event_id, "duplicate": True}

    if event_type in STRIPE_CONFIRM_EVENTS:
        _confirm_reference(orchestrator, reference, event_id)
    elif event_type == "charge.refunded":
        logger.info("Stripe refund notification", extra={"event_id": event_id, "intent_id": reference})
    else:
        logger.info("Unhandled Stripe event type", extra={"event_type": event_type})
    return _finish(db, record)


def handle_paypal_webhook(
    db: Session,
    orchestrator: PaymentOrchestrator,
    settings: Settings,
    headers: Mapping[str, str],
    payload: bytes,
    gateway: WalletGateway | None = None,
) -> dict[str, Any]:
    """Verify a PayPal delivery with PayPal and reconcile the payment."""

    try:
        event = json.loads(payload)
    except ValueError as exc:
        raise ServiceError("Invalid PayPal webhook payload.", code="PAYPAL_EVENT_INVALID") from exc

    gateway = gateway or WalletGateway(settings)
    try:
        verified = gateway.verify_webhook(dict(headers), event)
    except GatewayError:
        logger.error("PayPal webhook verification call failed", exc_info=True)
        raise
    if not verified:
        logger.warning("PayPal signature verification failed", extra={"event_id": event.get("id")})
        raise ServiceError("Invalid PayPal signature.", code="PAYPAL_SIGNATURE_INVALID")

    event_id = event.get("id")
    event_type = event.get("event_type") or "unknown"
    if not event_id:
        raise ServiceError("Webhook event id is required.", code="MISSING_EVENT_ID")
    resource = event.get("resource") or {}
    reference = resource.get("parent_payment")
    logger.info("PayPal webhook received", extra={"event_type": event_type, "event_id": event_id})

    record = _register_event(
        db, provider="paypal", event_id=event_id, kind=event_type, reference=reference, payload=event
    )
    if record is None:
        return {"received": True, "event_id": event_id, "duplicate": True}

    if event_type in PAYPAL_CONFIRM_EVENTS:
        _confirm_reference(orchestrator, reference, event_id)
    elif event_type == "PAYMENT.SALE.REFUNDED":
        logger.info("PayPal refund notification", extra={"event_id": event_id, "payment_ref": reference})
    else:
        logger.info("Unhandled PayPal event type", extra={"event_type": event_type})
    return _finish(db, record)


__all__ = ["handle_paypal_webhook", "handle_stripe_webhook", "is_replay"]
