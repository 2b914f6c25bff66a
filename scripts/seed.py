"""Seed sample payments for local development."""
from __future__ import annotations

from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

from app import models  # noqa: E402
from app.config import get_settings  # noqa: E402
from app.db import get_engine, get_sessionmaker  # noqa: E402
from app.services.checkout import new_transaction_id  # noqa: E402
from app.services.fees import compute_fees  # noqa: E402
from app.utils.time import utcnow  # noqa: E402


def _payment(payer_id: int, amount: str, method: models.PaymentMethod, **fields) -> models.Payment:
    breakdown = compute_fees(method, Decimal(amount))
    return models.Payment(
        transaction_id=new_transaction_id(),
        payer_id=payer_id,
        amount=Decimal(amount),
        currency="USD",
        fee=breakdown.fee,
        net_amount=breakdown.net_amount,
        method=method,
        **fields,
    )


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    models.Base.metadata.create_all(bind=get_engine())
    session = get_sessionmaker()()

    try:
        now = utcnow()
        booked = _payment(
            1,
            "250.00",
            models.PaymentMethod.CARD,
            trip_id=10,
            booking_id=100,
            status=models.PaymentStatus.COMPLETED,
            psp_ref="pi_seed_booked",
            paid_at=now,
        )
        gap = _payment(
            2,
            "120.00",
            models.PaymentMethod.WALLET,
            trip_id=11,
            status=models.PaymentStatus.COMPLETED,
            psp_ref="SALE-SEED-GAP",
            paid_at=now,
            pending_booking_details={"version": 1, "trip_id": 11, "participant_count": 1, "participants": []},
            failure_reason="Payment completed but booking creation failed: seed",
        )
        card = models.SavedPaymentMethod(
            user_id=1,
            provider_method_id="pm_seed_visa",
            brand="visa",
            last4="4242",
            exp_month="12",
            exp_year="2030",
            is_default=True,
        )
        session.add_all([booked, gap, card])
        session.commit()
        print("Seed data inserted.")
    finally:
        session.close()


if __name__ == "__main__":
    main()
