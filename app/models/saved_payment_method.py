"""Card details kept for reuse at a later checkout."""
from sqlalchemy import Boolean, Enum as SqlEnum, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from .payment import PaymentMethod


class SavedPaymentMethod(Base):
    """A provider-side payment method token owned by a user.

    Only display data is stored; the card itself stays with the provider.
    """

    __tablename__ = "saved_payment_methods"
    __table_args__ = (
        UniqueConstraint("user_id", "provider_method_id", name="uq_saved_payment_methods_user_token"),
        Index("ix_saved_payment_methods_user_id", "user_id"),
    )

    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    method_type: Mapped[PaymentMethod] = mapped_column(
        SqlEnum(PaymentMethod), nullable=False, default=PaymentMethod.CARD
    )
    provider_method_id: Mapped[str] = mapped_column(String(128), nullable=False)
    brand: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last4: Mapped[str | None] = mapped_column(String(4), nullable=True)
    exp_month: Mapped[str | None] = mapped_column(String(2), nullable=True)
    exp_year: Mapped[str | None] = mapped_column(String(4), nullable=True)
    cardholder_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
