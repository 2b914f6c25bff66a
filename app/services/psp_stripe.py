"""Card gateway backed by the Stripe Python SDK."""
from __future__ import annotations

import logging
from collections.abc import Callable
from decimal import Decimal

import stripe

from app.config import Settings
from app.services.psp_gateway import (
    GatewayMode,
    GatewayRefund,
    GatewayResult,
    GatewayStatus,
    GatewayStatusResult,
    SavedCardDetails,
    to_minor_units,
)
from app.utils.errors import GatewayError

logger = logging.getLogger(__name__)

SESSION_PREFIX = "cs_"

_INTENT_STATUS_MAP = {
    "succeeded": GatewayStatus.SETTLED,
    "canceled": GatewayStatus.VOIDED,
    "processing": GatewayStatus.PENDING,
    "requires_payment_method": GatewayStatus.REQUIRES_ACTION,
    "requires_confirmation": GatewayStatus.REQUIRES_ACTION,
    "requires_action": GatewayStatus.REQUIRES_ACTION,
    "requires_capture": GatewayStatus.REQUIRES_ACTION,
}


def map_intent_status(status: str | None) -> GatewayStatus:
    return _INTENT_STATUS_MAP.get(status or "", GatewayStatus.PENDING)


def map_session_status(status: str | None, payment_status: str | None) -> GatewayStatus:
    """Normalise a Checkout Session's state.

    Only a completed *and* paid session counts as settled.
    """

    if status == "complete" and payment_status == "paid":
        return GatewayStatus.SETTLED
    if status == "expired":
        return GatewayStatus.VOIDED
    return GatewayStatus.PENDING


class CardGateway:
    """Wrapper around the Stripe Python SDK to isolate PSP concerns.

    With a payment method token the charge is created and confirmed at once
    (``IMMEDIATE``); without one the payer is sent to a hosted Checkout
    Session (``REDIRECT``). Refunds target the PaymentIntent, which is kept in
    ``Payment.psp_ref`` once the charge settles.
    """

    provider = "stripe"
    refund_reference_field = "psp_ref"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._ensure_enabled()
        self._secret_key = settings.STRIPE_SECRET_KEY
        self._webhook_secret = settings.STRIPE_WEBHOOK_SECRET

        if not self._secret_key:
            raise GatewayError(
                "Stripe secret key is missing; configure STRIPE_SECRET_KEY.",
                code="GATEWAY_DISABLED",
                status_code=503,
            )

        stripe.api_key = self._secret_key

    def _ensure_enabled(self) -> None:
        if not self.settings.STRIPE_ENABLED:
            raise GatewayError(
                "Stripe integration is disabled; enable STRIPE_ENABLED to proceed.",
                code="GATEWAY_DISABLED",
                status_code=503,
            )

    def create(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        method_token: str | None = None,
        *,
        description: str | None = None,
        on_method_saved: Callable[[SavedCardDetails], None] | None = None,
        cardholder_name: str | None = None,
    ) -> GatewayResult:
        if method_token:
            result = self._create_intent(amount, currency, metadata, method_token, description)
            if on_method_saved is not None:
                self._save_method(method_token, cardholder_name, on_method_saved)
            return result
        return self._create_session(amount, currency, metadata, description)

    def _create_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        method_token: str,
        description: str | None,
    ) -> GatewayResult:
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency.lower(),
                payment_method=method_token,
                confirm=True,
                return_url=self.settings.STRIPE_SUCCESS_URL,
                description=description,
                metadata=metadata,
            )
        except stripe.StripeError as exc:
            logger.warning(
                "Stripe PaymentIntent creation failed",
                extra={"transaction_id": metadata.get("transaction_id"), "error": str(exc)},
            )
            raise GatewayError(
                f"Card payment failed: {getattr(exc, 'user_message', None) or exc}",
                details={"provider": self.provider},
            ) from exc

        settled = intent.status == "succeeded"
        logger.info(
            "Stripe PaymentIntent created",
            extra={"intent_id": intent.id, "intent_status": intent.status},
        )
        return GatewayResult(
            mode=GatewayMode.IMMEDIATE,
            reference=intent.id,
            continuation=intent.client_secret,
            settled=settled,
            intent_ref=intent.id,
            transaction_ref=intent.id if settled else None,
        )

    def _create_session(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        description: str | None,
    ) -> GatewayResult:
        success_url = f"{self.settings.STRIPE_SUCCESS_URL}?session_id={{CHECKOUT_SESSION_ID}}"
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                success_url=success_url,
                cancel_url=self.settings.STRIPE_CANCEL_URL,
                line_items=[
                    {
                        "quantity": 1,
                        "price_data": {
                            "currency": currency.lower(),
                            "unit_amount": to_minor_units(amount),
                            "product_data": {"name": description or "Trip booking"},
                        },
                    }
                ],
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
            )
        except stripe.StripeError as exc:
            logger.warning(
                "Stripe Checkout Session creation failed",
                extra={"transaction_id": metadata.get("transaction_id"), "error": str(exc)},
            )
            raise GatewayError(
                f"Unable to start card checkout: {exc}",
                details={"provider": self.provider},
            ) from exc

        logger.info("Stripe Checkout Session created", extra={"session_id": session.id})
        return GatewayResult(
            mode=GatewayMode.REDIRECT,
            reference=session.id,
            continuation=session.url,
            settled=False,
            session_ref=session.id,
        )

    def retrieve_status(self, reference: str) -> GatewayStatusResult:
        try:
            if reference.startswith(SESSION_PREFIX):
                session = stripe.checkout.Session.retrieve(reference)
                status = map_session_status(session.status, session.payment_status)
                return GatewayStatusResult(
                    status=status,
                    transaction_ref=session.payment_intent if status == GatewayStatus.SETTLED else None,
                    raw_status=session.status,
                )
            intent = stripe.PaymentIntent.retrieve(reference)
        except stripe.StripeError as exc:
            raise GatewayError(
                f"Unable to read card payment status: {exc}",
                details={"provider": self.provider, "reference": reference},
            ) from exc

        status = map_intent_status(intent.status)
        return GatewayStatusResult(
            status=status,
            transaction_ref=intent.id if status == GatewayStatus.SETTLED else None,
            raw_status=intent.status,
        )

    def refund(self, reference: str, amount: Decimal, currency: str) -> GatewayRefund:
        try:
            refund = stripe.Refund.create(
                payment_intent=reference,
                amount=to_minor_units(amount),
            )
        except stripe.StripeError as exc:
            raise GatewayError(
                f"Card refund failed: {exc}",
                details={"provider": self.provider, "reference": reference},
            ) from exc

        logger.info("Stripe refund created", extra={"refund_id": refund.id, "intent_id": reference})
        return GatewayRefund(refund_ref=refund.id, status=refund.status, amount=Decimal(str(amount)))

    def _save_method(
        self,
        method_token: str,
        cardholder_name: str | None,
        callback: Callable[[SavedCardDetails], None],
    ) -> None:
        """Look up card display data and hand it over; never fails the charge."""

        try:
            method = stripe.PaymentMethod.retrieve(method_token)
            card = method.card
            billing = getattr(method, "billing_details", None)
            details = SavedCardDetails(
                provider_method_id=method.id,
                brand=getattr(card, "brand", None),
                last4=getattr(card, "last4", None),
                exp_month=str(card.exp_month) if getattr(card, "exp_month", None) else None,
                exp_year=str(card.exp_year) if getattr(card, "exp_year", None) else None,
                cardholder_name=cardholder_name or getattr(billing, "name", None),
            )
            callback(details)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Saving payment method failed; continuing checkout",
                extra={"error": str(exc)},
            )

    def construct_webhook_event(self, payload: bytes, sig_header: str) -> stripe.Event:
        """Verify and construct a Stripe webhook event."""

        if not self._webhook_secret:
            raise GatewayError(
                "Stripe webhook secret is missing; configure STRIPE_WEBHOOK_SECRET for verification.",
                code="GATEWAY_DISABLED",
                status_code=503,
            )

        return stripe.Webhook.construct_event(payload, sig_header, self._webhook_secret)


__all__ = ["CardGateway", "map_intent_status", "map_session_status"]
