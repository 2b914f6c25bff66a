"""Provider-neutral results returned by payment gateway adapters."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol


class GatewayMode(str, enum.Enum):
    IMMEDIATE = "IMMEDIATE"
    REDIRECT = "REDIRECT"


class GatewayStatus(str, enum.Enum):
    SETTLED = "SETTLED"
    VOIDED = "VOIDED"
    PENDING = "PENDING"
    REQUIRES_ACTION = "REQUIRES_ACTION"
    DECLINED = "DECLINED"


@dataclass(frozen=True)
class GatewayResult:
    """Outcome of creating a charge with a provider."""

    mode: GatewayMode
    reference: str
    continuation: str | None
    settled: bool
    intent_ref: str | None = None
    session_ref: str | None = None
    transaction_ref: str | None = None


@dataclass(frozen=True)
class GatewayStatusResult:
    status: GatewayStatus
    transaction_ref: str | None = None
    raw_status: str | None = None


@dataclass(frozen=True)
class GatewayRefund:
    refund_ref: str
    status: str
    amount: Decimal
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SavedCardDetails:
    """Display details of a card the payer asked to keep."""

    provider_method_id: str
    brand: str | None
    last4: str | None
    exp_month: str | None
    exp_year: str | None
    cardholder_name: str | None


class GatewayAdapter(Protocol):
    """Money-movement provider used by the checkout saga.

    ``refund_reference_field`` names the ``Payment`` attribute holding the
    reference the provider expects for refunds.
    """

    refund_reference_field: str

    def create(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        method_token: str | None = None,
        *,
        description: str | None = None,
    ) -> GatewayResult:
        ...

    def retrieve_status(self, reference: str) -> GatewayStatusResult:
        ...

    def refund(self, reference: str, amount: Decimal, currency: str) -> GatewayRefund:
        ...


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to the smallest currency unit."""

    normalized = Decimal(str(amount)).quantize(Decimal("0.01"))
    return int((normalized * 100).to_integral_value())


def format_amount(amount: Decimal) -> str:
    return str(Decimal(str(amount)).quantize(Decimal("0.01")))


__all__ = [
    "GatewayAdapter",
    "GatewayMode",
    "GatewayRefund",
    "GatewayResult",
    "GatewayStatus",
    "GatewayStatusResult",
    "SavedCardDetails",
    "format_amount",
    "to_minor_units",
]
