"""Error taxonomy shared by the booking services and the HTTP layer."""

from __future__ import annotations

from typing import Any


class BookingError(Exception):
    code = "booking_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"success": False, "error": self.code, "detail": self.message}


class NotFoundError(BookingError):
    code = "not_found"


class UnauthorizedError(BookingError):
    code = "unauthorized"


class ValidationError(BookingError):
    code = "validation_error"


class CapacityExceededError(BookingError):
    """Raised when the requested spots exceed what is left on an instance."""

    code = "capacity_exceeded"

    def __init__(self, remaining: int, requested: int) -> None:
        if remaining <= 0:
            message = "This session is fully booked"
        else:
            message = f"Only {remaining} spot(s) left, {requested} requested"
        super().__init__(message)
        self.remaining = remaining
        self.requested = requested

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["remaining"] = self.remaining
        payload["waitlist_available"] = self.remaining == 0
        return payload


class ExternalSideEffectError(BookingError):
    """A refund or notification call failed after the primary write."""

    code = "side_effect_failed"


__all__ = [
    "BookingError",
    "NotFoundError",
    "UnauthorizedError",
    "ValidationError",
    "CapacityExceededError",
    "ExternalSideEffectError",
]
