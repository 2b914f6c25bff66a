"""Processing fee computation."""
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

from app.models.payment import PaymentMethod

_CENT = Decimal("0.01")

# (percentage, fixed) per method
FEE_SCHEDULE: dict[PaymentMethod, tuple[Decimal, Decimal]] = {
    PaymentMethod.CARD: (Decimal("0.029"), Decimal("0.30")),
    PaymentMethod.WALLET: (Decimal("0.0349"), Decimal("0.49")),
    PaymentMethod.OTHER: (Decimal("0"), Decimal("0")),
}


class FeeBreakdown(NamedTuple):
    fee: Decimal
    net_amount: Decimal


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def compute_fees(method: PaymentMethod, gross: Decimal) -> FeeBreakdown:
    """Return the processing fee and the net amount for ``gross``."""

    gross = Decimal(str(gross))
    percentage, fixed = FEE_SCHEDULE[PaymentMethod(method)]
    fee = _quantize(gross * percentage + fixed)
    return FeeBreakdown(fee=fee, net_amount=_quantize(gross - fee))


__all__ = ["FEE_SCHEDULE", "FeeBreakdown", "compute_fees"]
