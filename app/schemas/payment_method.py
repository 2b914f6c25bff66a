"""Saved payment method schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.payment import PaymentMethod


class SavedPaymentMethodCreate(BaseModel):
    user_id: int
    provider_method_id: str = Field(..., min_length=1, max_length=128)
    method_type: PaymentMethod = PaymentMethod.CARD
    cardholder_name: str | None = Field(default=None, max_length=100)
    is_default: bool = False


class SavedPaymentMethodRead(BaseModel):
    id: int
    user_id: int
    method_type: PaymentMethod
    provider_method_id: str
    brand: str | None
    last4: str | None
    exp_month: str | None
    exp_year: str | None
    cardholder_name: str | None
    is_default: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
