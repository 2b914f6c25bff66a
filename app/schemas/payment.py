"""Schemas for payment entities."""
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.payment import PaymentMethod, PaymentStatus

from .booking import ParticipantDetail


class CheckoutRequest(BaseModel):
    payer_id: int
    payer_name: str | None = Field(default=None, max_length=200)
    trip_id: int | None = None
    manager_id: int | None = None
    participant_count: int | None = Field(default=None, ge=1)
    participant_details: list[ParticipantDetail] = Field(default_factory=list)
    amount: Decimal = Field(gt=Decimal("0"))
    currency: str = Field(default="USD", min_length=3, max_length=3)
    method: PaymentMethod
    payment_method_token: str | None = None
    saved_payment_method_id: int | None = None
    save_payment_method: bool = False
    cardholder_name: str | None = Field(default=None, max_length=100)
    booking_id: int | None = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class PaymentRead(BaseModel):
    id: int
    transaction_id: str
    payer_id: int
    trip_id: int | None
    manager_id: int | None
    booking_id: int | None
    amount: Decimal
    fee: Decimal
    net_amount: Decimal
    refund_amount: Decimal | None
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    psp_intent_ref: str | None
    psp_session_ref: str | None
    psp_ref: str | None
    failure_reason: str | None
    awaiting_booking: bool
    paid_at: datetime | None
    refunded_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CheckoutRead(BaseModel):
    payment: PaymentRead
    continuation: Literal["CLIENT_SECRET", "REDIRECT"] | None = None
    client_secret: str | None = None
    redirect_url: str | None = None


class RefundRequest(BaseModel):
    amount: Decimal | None = None
    reason: str | None = Field(default=None, max_length=255)
