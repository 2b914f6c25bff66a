"""HTTP tests for the payment and saved payment method endpoints."""
from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models import PaymentMethod, PaymentStatus, SavedPaymentMethod
from app.services.booking import BookingError
from app.services.psp_gateway import GatewayStatus, GatewayStatusResult


def _checkout_body(**overrides):
    body = {
        "payer_id": 7,
        "payer_name": "Ada Lovelace",
        "trip_id": 10,
        "participant_count": 1,
        "participant_details": [{"first_name": "Ada", "last_name": "Lovelace"}],
        "amount": "100.00",
        "currency": "usd",
        "method": "CARD",
    }
    body.update(overrides)
    return body


@pytest.mark.anyio
async def test_checkout_returns_redirect(client, auth_headers):
    response = await client.post("/payments/checkout", json=_checkout_body(), headers=auth_headers)

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["continuation"] == "REDIRECT"
    assert data["redirect_url"] == "https://provider.test/cs_1"
    payment = data["payment"]
    assert payment["status"] == "PROCESSING"
    assert payment["currency"] == "USD"
    assert Decimal(payment["fee"]) == Decimal("3.20")
    assert payment["awaiting_booking"] is True


@pytest.mark.anyio
async def test_checkout_schema_error_uses_envelope(client):
    response = await client.post("/payments/checkout", json=_checkout_body(amount="0"))

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["details"]["errors"][0]["loc"][-1] == "amount"


@pytest.mark.anyio
async def test_checkout_ambiguous_booking_mode(client):
    response = await client.post("/payments/checkout", json=_checkout_body(booking_id=3))

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "BOOKING_MODE_AMBIGUOUS"


@pytest.mark.anyio
async def test_confirm_forwards_caller_token(client, auth_headers, card_gateway, booking_delegate):
    created = await client.post("/payments/checkout", json=_checkout_body(), headers=auth_headers)
    reference = created.json()["payment"]["psp_session_ref"]
    card_gateway.status = GatewayStatusResult(status=GatewayStatus.SETTLED, transaction_ref="pi_api")

    response = await client.post("/payments/confirm", params={"session_id": reference}, headers=auth_headers)

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["status"] == "COMPLETED"
    assert data["booking_id"] == 501
    assert data["awaiting_booking"] is False
    assert booking_delegate.calls[0]["auth"] == "Bearer user-token"


@pytest.mark.anyio
async def test_confirm_requires_reference(client):
    response = await client.post("/payments/confirm")
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "REFERENCE_MISSING"


@pytest.mark.anyio
async def test_wallet_confirm(client, make_payment, wallet_gateway, pending_details):
    make_payment(method=PaymentMethod.WALLET, psp_session_ref="PAYID-API", pending_booking_details=pending_details)
    wallet_gateway.status = GatewayStatusResult(status=GatewayStatus.SETTLED, transaction_ref="SALE-API")

    response = await client.post("/payments/wallet/confirm", params={"payment_id": "PAYID-API", "payer_id": "P-1"})

    assert response.status_code == 200, response.text
    assert response.json()["psp_ref"] == "SALE-API"
    assert wallet_gateway.execute_calls == [("PAYID-API", "P-1")]


@pytest.mark.anyio
async def test_get_unknown_payment(client):
    response = await client.get("/payments/999999")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.anyio
async def test_payment_queries(client, make_payment):
    payment = make_payment(payer_id=31, booking_id=700, status=PaymentStatus.COMPLETED, psp_ref="pi_api_q")

    by_id = await client.get(f"/payments/{payment.id}")
    by_user = await client.get("/payments/user/31")
    by_booking = await client.get("/payments/booking/700")

    assert by_id.json()["transaction_id"] == payment.transaction_id
    assert [p["id"] for p in by_user.json()] == [payment.id]
    assert by_booking.json()["id"] == payment.id


@pytest.mark.anyio
async def test_refund_endpoint(client, make_payment, event_publisher):
    payment = make_payment(status=PaymentStatus.COMPLETED, psp_ref="pi_api_refund")

    response = await client.post(f"/payments/{payment.id}/refund", json={"amount": "40.00", "reason": "trip cancelled"})

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["status"] == "REFUNDED"
    assert Decimal(data["refund_amount"]) == Decimal("40.00")
    assert event_publisher.topics() == ["payment-refunded"]


@pytest.mark.anyio
async def test_refund_without_body_refunds_everything(client, make_payment):
    payment = make_payment(status=PaymentStatus.COMPLETED, psp_ref="pi_api_full")
    response = await client.post(f"/payments/{payment.id}/refund")
    assert response.status_code == 200, response.text
    assert Decimal(response.json()["refund_amount"]) == Decimal("100.00")


@pytest.mark.anyio
async def test_refund_of_processing_payment_conflicts(client, make_payment):
    payment = make_payment(status=PaymentStatus.PROCESSING)

    response = await client.post(f"/payments/{payment.id}/refund")

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "PAYMENT_NOT_REFUNDABLE"


@pytest.mark.anyio
async def test_compensation_gap_listing_and_retry(client, make_payment, booking_delegate, pending_details):
    payment = make_payment(
        status=PaymentStatus.COMPLETED,
        psp_ref="pi_gap",
        pending_booking_details=pending_details,
        failure_reason="Payment completed but booking creation failed: timeout",
    )

    gaps = await client.get("/payments/compensation-gaps")
    assert [p["id"] for p in gaps.json()] == [payment.id]

    booking_delegate.error = BookingError("still down")
    failed = await client.post(f"/payments/{payment.id}/booking/retry")
    assert failed.status_code == 200
    assert "still down" in failed.json()["failure_reason"]

    booking_delegate.error = None
    retried = await client.post(f"/payments/{payment.id}/booking/retry")
    assert retried.json()["booking_id"] == 501

    gaps = await client.get("/payments/compensation-gaps")
    assert gaps.json() == []


@pytest.mark.anyio
async def test_cascade_delete(client, make_payment, db_session):
    payment = make_payment(payer_id=55, status=PaymentStatus.PROCESSING)
    db_session.add(SavedPaymentMethod(user_id=55, provider_method_id="pm_55"))
    db_session.flush()

    response = await client.delete("/payments/user/55/cascade-delete")

    assert response.status_code == 204
    assert payment.status == PaymentStatus.CANCELLED
    assert db_session.scalars(select(SavedPaymentMethod).where(SavedPaymentMethod.user_id == 55)).all() == []


@pytest.mark.anyio
async def test_payment_method_lifecycle(client):
    first = await client.post(
        "/payment-methods",
        json={"user_id": 12, "provider_method_id": "pm_first", "is_default": True},
    )
    second = await client.post(
        "/payment-methods",
        json={"user_id": 12, "provider_method_id": "pm_second", "cardholder_name": "Ada"},
    )
    assert first.status_code == 201, first.text
    assert second.status_code == 201, second.text
    first_id, second_id = first.json()["id"], second.json()["id"]

    made_default = await client.post(f"/payment-methods/{second_id}/default")
    assert made_default.json()["is_default"] is True

    listed = await client.get("/payment-methods/user/12")
    assert [m["id"] for m in listed.json()] == [second_id, first_id]
    assert listed.json()[1]["is_default"] is False

    deleted = await client.delete(f"/payment-methods/{first_id}")
    assert deleted.status_code == 204

    missing = await client.get(f"/payment-methods/{first_id}")
    assert missing.status_code == 404


@pytest.mark.anyio
async def test_completed_and_manager_listings(client, make_payment):
    done = make_payment(payer_id=81, manager_id=6, status=PaymentStatus.COMPLETED, psp_ref="pi_api_mgr")
    open_one = make_payment(payer_id=81, manager_id=6, status=PaymentStatus.PROCESSING)

    completed = await client.get("/payments/user/81/completed")
    managed = await client.get("/payments/manager/6")

    assert [p["id"] for p in completed.json()] == [done.id]
    assert {p["id"] for p in managed.json()} == {done.id, open_one.id}


@pytest.mark.anyio
async def test_default_payment_method_lookup(client):
    missing = await client.get("/payment-methods/user/13/default")
    assert missing.status_code == 404

    await client.post("/payment-methods", json={"user_id": 13, "provider_method_id": "pm_other"})
    chosen = await client.post(
        "/payment-methods",
        json={"user_id": 13, "provider_method_id": "pm_chosen", "is_default": True},
    )

    response = await client.get("/payment-methods/user/13/default")

    assert response.status_code == 200
    assert response.json()["id"] == chosen.json()["id"]
