"""Payment aggregate for the checkout saga."""
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from app.utils.errors import ConflictError

from .base import Base


class PaymentStatus(str, enum.Enum):
    """Lifecycle states of a payment."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, enum.Enum):
    """How the payer is charged."""

    CARD = "CARD"
    WALLET = "WALLET"
    OTHER = "OTHER"


ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PROCESSING}),
    PaymentStatus.PROCESSING: frozenset(
        {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

OPEN_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})


class Payment(Base):
    """A charge taken from a payer for a trip booking."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payment_non_negative_amount"),
        Index("ix_payments_status", "status"),
        Index("ix_payments_payer_id", "payer_id"),
        Index("ix_payments_booking_id", "booking_id"),
        Index("ix_payments_psp_session_ref", "psp_session_ref"),
        Index("ix_payments_psp_intent_ref", "psp_intent_ref"),
    )

    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    payer_id: Mapped[int] = mapped_column(Integer, nullable=False)
    trip_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    manager_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    participant_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    method: Mapped[PaymentMethod] = mapped_column(SqlEnum(PaymentMethod), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SqlEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )

    psp_intent_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    psp_session_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    psp_ref: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)

    booking_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pending_booking_details: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    booking_attempted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @validates("fee", "net_amount")
    def _freeze_amounts(self, key: str, value: Decimal) -> Decimal:
        current = getattr(self, key, None)
        if current is not None and Decimal(current) != Decimal(value):
            raise ValueError(f"Payment.{key} is fixed at creation")
        return value

    @property
    def awaiting_booking(self) -> bool:
        """True while the booking for a payment-first checkout is unresolved."""

        return self.booking_id is None and self.pending_booking_details is not None

    def can_transition_to(self, target: PaymentStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def transition_to(self, target: PaymentStatus, *, at: datetime | None = None) -> None:
        """Move along the payment state machine, stamping the matching timestamp once."""

        if not self.can_transition_to(target):
            raise ConflictError(
                f"Payment cannot move from {self.status.value} to {target.value}",
                code="INVALID_PAYMENT_TRANSITION",
                details={"payment_id": self.id, "from": self.status.value, "to": target.value},
            )
        self.status = target
        if at is None:
            return
        if target == PaymentStatus.COMPLETED and self.paid_at is None:
            self.paid_at = at
        elif target == PaymentStatus.REFUNDED and self.refunded_at is None:
            self.refunded_at = at
        elif target == PaymentStatus.CANCELLED and self.cancelled_at is None:
            self.cancelled_at = at
