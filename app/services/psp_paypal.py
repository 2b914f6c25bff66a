"""Wallet gateway backed by the PayPal REST v1 payments API."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import httpx

from app.config import Settings
from app.services.psp_gateway import (
    GatewayMode,
    GatewayRefund,
    GatewayResult,
    GatewayStatus,
    GatewayStatusResult,
    format_amount,
)
from app.utils.errors import GatewayError

logger = logging.getLogger(__name__)

_STATE_MAP = {
    "approved": GatewayStatus.SETTLED,
    "created": GatewayStatus.REQUIRES_ACTION,
    "failed": GatewayStatus.DECLINED,
    "canceled": GatewayStatus.VOIDED,
    "cancelled": GatewayStatus.VOIDED,
    "expired": GatewayStatus.VOIDED,
}


def map_payment_state(state: str | None) -> GatewayStatus:
    return _STATE_MAP.get((state or "").lower(), GatewayStatus.PENDING)


def _sale_id(payment: dict[str, Any]) -> str | None:
    """Return the sale id from an executed payment, if any."""

    for transaction in payment.get("transactions") or []:
        for resource in transaction.get("related_resources") or []:
            sale = resource.get("sale")
            if sale and sale.get("id"):
                return sale["id"]
    return None


def _approval_url(payment: dict[str, Any]) -> str | None:
    for link in payment.get("links") or []:
        if link.get("rel") == "approval_url":
            return link.get("href")
    return None


class WalletGateway:
    """PayPal approve-then-execute flow.

    ``create`` never settles: the payer approves on PayPal and the payment is
    finalised by :meth:`execute` with the payer id PayPal hands back. Refunds
    target the sale, kept in ``Payment.psp_ref``.
    """

    provider = "paypal"
    refund_reference_field = "psp_ref"

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        self.settings = settings
        if not settings.PAYPAL_ENABLED:
            raise GatewayError(
                "PayPal integration is disabled; enable PAYPAL_ENABLED to proceed.",
                code="GATEWAY_DISABLED",
                status_code=503,
            )
        if not (settings.PAYPAL_CLIENT_ID and settings.PAYPAL_CLIENT_SECRET):
            raise GatewayError(
                "PayPal credentials are missing; configure PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET.",
                code="GATEWAY_DISABLED",
                status_code=503,
            )
        self._client = client or httpx.Client(
            base_url=settings.paypal_base_url,
            timeout=settings.PAYPAL_TIMEOUT_SECONDS,
        )

    def _access_token(self) -> str:
        try:
            response = self._client.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.settings.PAYPAL_CLIENT_ID, self.settings.PAYPAL_CLIENT_SECRET),
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise GatewayError(
                f"PayPal authentication failed: {exc}",
                details={"provider": self.provider},
            ) from exc
        return response.json()["access_token"]

    def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }
        try:
            response = self._client.request(method, path, json=json, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message = exc.response.text[:200]
            try:
                message = exc.response.json().get("message") or message
            except ValueError:
                pass
            raise GatewayError(
                f"PayPal request failed: {message}",
                details={"provider": self.provider, "status": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(
                f"PayPal is unreachable: {exc}",
                details={"provider": self.provider},
            ) from exc
        return response.json()

    def create(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        method_token: str | None = None,
        *,
        description: str | None = None,
    ) -> GatewayResult:
        body = {
            "intent": "sale",
            "payer": {"payment_method": "paypal"},
            "transactions": [
                {
                    "amount": {"total": format_amount(amount), "currency": currency.upper()},
                    "description": description or "Trip booking",
                    "custom": metadata.get("transaction_id"),
                }
            ],
            "redirect_urls": {
                "return_url": self.settings.PAYPAL_RETURN_URL,
                "cancel_url": self.settings.PAYPAL_CANCEL_URL,
            },
        }
        payment = self._request("POST", "/v1/payments/payment", json=body)
        approval_url = _approval_url(payment)
        if not approval_url:
            raise GatewayError(
                "PayPal did not return an approval link",
                details={"provider": self.provider, "payment_id": payment.get("id")},
            )
        logger.info("PayPal payment created", extra={"paypal_payment_id": payment["id"]})
        return GatewayResult(
            mode=GatewayMode.REDIRECT,
            reference=payment["id"],
            continuation=approval_url,
            settled=False,
            session_ref=payment["id"],
        )

    def execute(self, reference: str, payer_token: str) -> GatewayStatusResult:
        """Finalise an approved payment for the payer PayPal redirected back."""

        payment = self._request(
            "POST",
            f"/v1/payments/payment/{reference}/execute",
            json={"payer_id": payer_token},
        )
        status = map_payment_state(payment.get("state"))
        logger.info(
            "PayPal payment executed",
            extra={"paypal_payment_id": reference, "state": payment.get("state")},
        )
        return GatewayStatusResult(
            status=status,
            transaction_ref=_sale_id(payment) if status == GatewayStatus.SETTLED else None,
            raw_status=payment.get("state"),
        )

    def retrieve_status(self, reference: str) -> GatewayStatusResult:
        payment = self._request("GET", f"/v1/payments/payment/{reference}")
        status = map_payment_state(payment.get("state"))
        return GatewayStatusResult(
            status=status,
            transaction_ref=_sale_id(payment) if status == GatewayStatus.SETTLED else None,
            raw_status=payment.get("state"),
        )

    def refund(self, reference: str, amount: Decimal, currency: str) -> GatewayRefund:
        refund = self._request(
            "POST",
            f"/v1/payments/sale/{reference}/refund",
            json={"amount": {"total": format_amount(amount), "currency": currency.upper()}},
        )
        logger.info("PayPal refund created", extra={"refund_id": refund.get("id"), "sale_id": reference})
        return GatewayRefund(
            refund_ref=refund.get("id", ""),
            status=refund.get("state", "unknown"),
            amount=Decimal(str(amount)),
        )

    def verify_webhook(self, headers: dict[str, str], event: dict[str, Any]) -> bool:
        """Ask PayPal whether a webhook delivery is authentic."""

        webhook_id = self.settings.PAYPAL_WEBHOOK_ID
        if not webhook_id:
            raise GatewayError(
                "PayPal webhook id is missing; configure PAYPAL_WEBHOOK_ID for verification.",
                code="GATEWAY_DISABLED",
                status_code=503,
            )
        lowered = {key.lower(): value for key, value in headers.items()}
        body = {
            "auth_algo": lowered.get("paypal-auth-algo"),
            "cert_url": lowered.get("paypal-cert-url"),
            "transmission_id": lowered.get("paypal-transmission-id"),
            "transmission_sig": lowered.get("paypal-transmission-sig"),
            "transmission_time": lowered.get("paypal-transmission-time"),
            "webhook_id": webhook_id,
            "webhook_event": event,
        }
        result = self._request("POST", "/v1/notifications/verify-webhook-signature", json=body)
        return result.get("verification_status") == "SUCCESS"


__all__ = ["WalletGateway", "map_payment_state"]
