"""Booking parameters kept on a payment until the booking exists."""
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.utils.errors import ValidationError


class ParticipantDetail(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    date_of_birth: date | None = None
    passport_number: str | None = Field(default=None, max_length=50)
    phone_number: str | None = Field(default=None, max_length=30)
    email: EmailStr | None = None

    model_config = ConfigDict(extra="ignore")


class PendingBookingDetails(BaseModel):
    """Versioned snapshot of what the booking service needs later.

    Snapshots written before the ``version`` field existed read as version 1.
    Unknown keys are dropped so older readers tolerate newer writers.
    """

    version: Literal[1] = 1
    trip_id: int
    participant_count: int = Field(..., ge=1)
    payer_name: str | None = None
    participants: list[ParticipantDetail] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_snapshot(cls, snapshot: dict[str, Any] | None) -> "PendingBookingDetails":
        if not snapshot:
            raise ValidationError("Pending booking details are missing", code="BOOKING_DETAILS_MISSING")
        data = dict(snapshot)
        data.setdefault("version", 1)
        return cls.model_validate(data)

    def to_snapshot(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


__all__ = ["ParticipantDetail", "PendingBookingDetails"]
