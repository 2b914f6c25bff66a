"""Service error taxonomy and the standardized error envelope."""
from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class ServiceError(Exception):
    """Base class for failures surfaced to API callers."""

    status_code = 400
    default_code = "SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details)


class ValidationError(ServiceError):
    status_code = 422
    default_code = "VALIDATION_ERROR"


class NotFoundError(ServiceError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(ServiceError):
    status_code = 409
    default_code = "CONFLICT"


class GatewayError(ServiceError):
    """A payment provider rejected or failed a call, or is not configured."""

    status_code = 502
    default_code = "GATEWAY_ERROR"


__all__ = [
    "ConflictError",
    "GatewayError",
    "NotFoundError",
    "ServiceError",
    "ValidationError",
    "error_response",
]
