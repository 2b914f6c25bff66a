"""Tests for Stripe and PayPal webhook processing."""
from __future__ import annotations

import hashlib
import hmac
import json
import time

import pytest
import stripe
from sqlalchemy import func, select

from app.config import get_settings
from app.models import PaymentMethod, PaymentStatus, PSPWebhookEvent
from app.services.psp_gateway import GatewayStatus, GatewayStatusResult

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def stripe_enabled(monkeypatch):
    settings = get_settings().model_copy(
        update={
            "STRIPE_ENABLED": True,
            "STRIPE_SECRET_KEY": "sk_test_123",
            "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
        }
    )
    monkeypatch.setattr(stripe, "api_key", None)
    monkeypatch.setattr("app.routers.psp.get_settings", lambda: settings)
    return settings


def _stripe_delivery(event: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(event).encode()
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    return body, {"Content-Type": "application/json", "Stripe-Signature": f"t={timestamp},v1={signature}"}


def _event_count(db_session, provider: str) -> int:
    return db_session.scalar(select(func.count()).select_from(PSPWebhookEvent).where(PSPWebhookEvent.provider == provider))


@pytest.mark.anyio
async def test_stripe_session_completed_confirms_payment(
    client, db_session, stripe_enabled, make_payment, card_gateway, booking_delegate, pending_details
):
    payment = make_payment(psp_session_ref="cs_hook_1", pending_booking_details=pending_details)
    card_gateway.status = GatewayStatusResult(status=GatewayStatus.SETTLED, transaction_ref="pi_hook_1")
    event = {
        "id": "evt_1",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_hook_1", "object": "checkout.session", "payment_status": "paid"}},
    }
    body, headers = _stripe_delivery(event)

    response = await client.post("/psp/stripe/webhook", content=body, headers=headers)

    assert response.status_code == 200, response.text
    assert response.json() == {"received": True, "event_id": "evt_1"}
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.psp_ref == "pi_hook_1"
    assert booking_delegate.calls[0]["auth"] is None
    assert _event_count(db_session, "stripe") == 1
    record = db_session.scalar(select(PSPWebhookEvent).where(PSPWebhookEvent.event_id == "evt_1"))
    assert record.reference == "cs_hook_1"
    assert record.processed_at is not None

    repeat = await client.post("/psp/stripe/webhook", content=body, headers=headers)

    assert repeat.status_code == 200
    assert repeat.json()["duplicate"] is True
    assert _event_count(db_session, "stripe") == 1
    assert len(booking_delegate.calls) == 1


@pytest.mark.anyio
async def test_stripe_intent_failure_fails_payment(client, stripe_enabled, make_payment, card_gateway):
    payment = make_payment(psp_intent_ref="pi_hook_fail")
    card_gateway.status = GatewayStatusResult(status=GatewayStatus.REQUIRES_ACTION, raw_status="requires_payment_method")
    body, headers = _stripe_delivery(
        {"id": "evt_2", "type": "payment_intent.payment_failed", "data": {"object": {"id": "pi_hook_fail"}}}
    )

    response = await client.post("/psp/stripe/webhook", content=body, headers=headers)

    assert response.status_code == 200, response.text
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "Payment method required (provider status: requires_payment_method)"


@pytest.mark.anyio
async def test_stripe_event_for_unknown_payment_is_acknowledged(client, db_session, stripe_enabled, card_gateway):
    body, headers = _stripe_delivery(
        {"id": "evt_3", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_nobody"}}}
    )

    response = await client.post("/psp/stripe/webhook", content=body, headers=headers)

    assert response.status_code == 200
    assert card_gateway.status_calls == []
    assert _event_count(db_session, "stripe") == 1


@pytest.mark.anyio
async def test_stripe_refund_notification_is_recorded_only(client, db_session, stripe_enabled, card_gateway):
    body, headers = _stripe_delivery(
        {"id": "evt_4", "type": "charge.refunded", "data": {"object": {"id": "ch_1", "payment_intent": "pi_r"}}}
    )

    response = await client.post("/psp/stripe/webhook", content=body, headers=headers)

    assert response.status_code == 200
    record = db_session.scalar(select(PSPWebhookEvent).where(PSPWebhookEvent.event_id == "evt_4"))
    assert record.kind == "charge.refunded"
    assert record.reference == "pi_r"
    assert card_gateway.status_calls == []


@pytest.mark.anyio
async def test_stripe_bad_signature_rejected(client, db_session, stripe_enabled):
    body, headers = _stripe_delivery({"id": "evt_5", "type": "payment_intent.succeeded"}, secret="whsec_wrong")

    response = await client.post("/psp/stripe/webhook", content=body, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "STRIPE_SIGNATURE_INVALID"
    assert _event_count(db_session, "stripe") == 0


@pytest.mark.anyio
async def test_stripe_signature_header_required(client, stripe_enabled):
    response = await client.post("/psp/stripe/webhook", content=b"{}")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "STRIPE_SIGNATURE_MISSING"


@pytest.mark.anyio
async def test_stripe_webhook_unavailable_when_disabled(client, monkeypatch):
    settings = get_settings().model_copy(update={"STRIPE_ENABLED": False})
    monkeypatch.setattr("app.routers.psp.get_settings", lambda: settings)

    response = await client.post("/psp/stripe/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "GATEWAY_DISABLED"


class FakePayPalVerifier:
    verified = True
    calls: list[dict] = []

    def __init__(self, settings, client=None):
        self.settings = settings

    def verify_webhook(self, headers, event):
        FakePayPalVerifier.calls.append(event)
        return FakePayPalVerifier.verified


@pytest.fixture
def paypal_verifier(monkeypatch):
    FakePayPalVerifier.verified = True
    FakePayPalVerifier.calls = []
    monkeypatch.setattr("app.services.psp_webhooks.WalletGateway", FakePayPalVerifier)
    return FakePayPalVerifier


@pytest.mark.anyio
async def test_paypal_sale_completed_confirms_payment(
    client, db_session, paypal_verifier, make_payment, wallet_gateway, pending_details
):
    payment = make_payment(
        method=PaymentMethod.WALLET, psp_session_ref="PAYID-HOOK", pending_booking_details=pending_details
    )
    wallet_gateway.status = GatewayStatusResult(status=GatewayStatus.SETTLED, transaction_ref="SALE-HOOK")
    event = {
        "id": "WH-1",
        "event_type": "PAYMENT.SALE.COMPLETED",
        "resource": {"id": "SALE-HOOK", "parent_payment": "PAYID-HOOK", "state": "completed"},
    }

    response = await client.post("/psp/paypal/webhook", content=json.dumps(event).encode())

    assert response.status_code == 200, response.text
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.psp_ref == "SALE-HOOK"
    assert wallet_gateway.status_calls == ["PAYID-HOOK"]
    assert paypal_verifier.calls == [event]

    repeat = await client.post("/psp/paypal/webhook", content=json.dumps(event).encode())
    assert repeat.json()["duplicate"] is True
    assert _event_count(db_session, "paypal") == 1


@pytest.mark.anyio
async def test_paypal_unverified_delivery_rejected(client, db_session, paypal_verifier):
    paypal_verifier.verified = False
    event = {"id": "WH-2", "event_type": "PAYMENT.SALE.COMPLETED", "resource": {"parent_payment": "PAYID-X"}}

    response = await client.post("/psp/paypal/webhook", content=json.dumps(event).encode())

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "PAYPAL_SIGNATURE_INVALID"
    assert _event_count(db_session, "paypal") == 0


@pytest.mark.anyio
async def test_paypal_invalid_json(client, paypal_verifier):
    response = await client.post("/psp/paypal/webhook", content=b"not-json")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "PAYPAL_EVENT_INVALID"
