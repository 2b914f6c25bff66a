"""Client for the booking subsystem that owns trip subscriptions."""
from __future__ import annotations

import logging
from typing import Protocol

import httpx

from app.config import Settings, get_settings
from app.schemas.booking import ParticipantDetail

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_PATH = "/api/v1/subscriptions"


class BookingError(Exception):
    """The booking subsystem could not create the reservation."""


class BookingDelegate(Protocol):
    def create_booking(
        self,
        *,
        trip_id: int,
        participant_count: int,
        participant_details: list[ParticipantDetail],
        payer_id: int,
        payer_name: str | None,
        auth: str | None,
    ) -> int:
        ...


def _participant_payload(detail: ParticipantDetail) -> dict[str, str | None]:
    return {
        "firstName": detail.first_name,
        "lastName": detail.last_name,
        "dateOfBirth": detail.date_of_birth.isoformat() if detail.date_of_birth else None,
        "passportNumber": detail.passport_number,
        "phoneNumber": detail.phone_number,
        "email": str(detail.email) if detail.email else None,
    }


class HttpBookingDelegate:
    """Creates subscriptions through the booking service's REST API.

    The caller's bearer token is forwarded; calls that originate from a
    provider webhook have none and fall back to ``BOOKING_SERVICE_TOKEN``.
    """

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        self.settings = settings
        self._client = client or httpx.Client(
            base_url=settings.BOOKING_SERVICE_URL,
            timeout=settings.BOOKING_TIMEOUT_SECONDS,
        )

    @classmethod
    def from_env(cls) -> "HttpBookingDelegate":
        return cls(get_settings())

    def _authorization(self, auth: str | None) -> dict[str, str]:
        if auth:
            value = auth if auth.lower().startswith("bearer ") else f"Bearer {auth}"
            return {"Authorization": value}
        if self.settings.BOOKING_SERVICE_TOKEN:
            return {"Authorization": f"Bearer {self.settings.BOOKING_SERVICE_TOKEN}"}
        return {}

    def create_booking(
        self,
        *,
        trip_id: int,
        participant_count: int,
        participant_details: list[ParticipantDetail],
        payer_id: int,
        payer_name: str | None,
        auth: str | None,
    ) -> int:
        body = {
            "travelId": trip_id,
            "numberOfParticipants": participant_count,
            "passengerDetails": [_participant_payload(detail) for detail in participant_details],
        }
        try:
            response = self._client.post(
                SUBSCRIPTIONS_PATH,
                json=body,
                headers=self._authorization(auth),
            )
            response.raise_for_status()
            booking_id = int(response.json()["id"])
        except httpx.HTTPStatusError as exc:
            raise BookingError(
                f"booking service returned {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise BookingError(f"booking service unreachable: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise BookingError("booking service returned an unreadable response") from exc

        logger.info(
            "Booking created",
            extra={"booking_id": booking_id, "trip_id": trip_id, "payer_id": payer_id},
        )
        return booking_id


__all__ = ["BookingDelegate", "BookingError", "HttpBookingDelegate"]
