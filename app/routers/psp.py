"""Routes for payment provider webhooks."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db import get_db
from app.routers.payments import get_orchestrator
from app.services import psp_webhooks
from app.services.checkout import PaymentOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/psp", tags=["psp"])


@router.post("/stripe/webhook", status_code=status.HTTP_200_OK)
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> dict[str, object]:
    raw_body = await request.body()
    return psp_webhooks.handle_stripe_webhook(
        db,
        orchestrator,
        get_settings(),
        raw_body,
        request.headers.get("Stripe-Signature"),
    )


@router.post("/paypal/webhook", status_code=status.HTTP_200_OK)
async def paypal_webhook(
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> dict[str, object]:
    raw_body = await request.body()
    return psp_webhooks.handle_paypal_webhook(
        db,
        orchestrator,
        get_settings(),
        dict(request.headers),
        raw_body,
    )


__all__ = ["router"]
