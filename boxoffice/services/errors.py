"""Error taxonomy of the reservation core.

Every error carries a stable code, a user-safe message and the HTTP status the
API layer answers with.
"""

from enum import Enum


class ErrorCode(Enum):
    SEAT_UNAVAILABLE = "SEAT_UNAVAILABLE"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    UNIT_NOT_FOUND = "UNIT_NOT_FOUND"
    INVALID_RESERVATION = "INVALID_RESERVATION"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    RESERVATION_EXPIRED = "RESERVATION_EXPIRED"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"


class BookingError(Exception):
    """Base error with code and user-safe message."""

    code: ErrorCode
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


class SeatUnavailable(BookingError):
    """Raised when requested units are already held or sold."""

    code = ErrorCode.SEAT_UNAVAILABLE
    status_code = 409

    def __init__(self, units: list[str]) -> None:
        super().__init__("Some seats are no longer available")
        self.units = sorted(units)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "unavailableUnits": self.units}


class BookingNotFound(BookingError):
    code = ErrorCode.BOOKING_NOT_FOUND
    status_code = 404

    def __init__(self, booking_id: str) -> None:
        super().__init__("Booking not found")
        self.booking_id = booking_id


class EventNotFound(BookingError):
    code = ErrorCode.EVENT_NOT_FOUND
    status_code = 404

    def __init__(self, event_id: str) -> None:
        super().__init__("Event not found")
        self.event_id = event_id


class UnitNotFound(BookingError):
    code = ErrorCode.UNIT_NOT_FOUND
    status_code = 404

    def __init__(self, event_id: str, unit_id: str) -> None:
        super().__init__("Unit not found")
        self.event_id = event_id
        self.unit_id = unit_id


class InvalidReservation(BookingError):
    """Raised when a reserve request is malformed or names units the event does not have."""

    code = ErrorCode.INVALID_RESERVATION
    status_code = 400

    def __init__(self, message: str, units: list[str] | None = None) -> None:
        super().__init__(message)
        self.units = sorted(units or [])

    def to_dict(self) -> dict:
        out = super().to_dict()
        if self.units:
            out["units"] = self.units
        return out


class InvalidTransition(BookingError):
    """Raised when a booking is not in a status the requested transition can start from."""

    code = ErrorCode.INVALID_TRANSITION
    status_code = 409

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        super().__init__(message or f"Booking is {current}; cannot move to {target}")
        self.current = current
        self.target = target

    def to_dict(self) -> dict:
        return {**super().to_dict(), "status": self.current}


class ReservationExpired(BookingError):
    code = ErrorCode.RESERVATION_EXPIRED
    status_code = 410

    def __init__(self, booking_id: str) -> None:
        super().__init__("Reservation expired, please try again")
        self.booking_id = booking_id


class GatewayUnavailable(BookingError):
    """Payment gateway timed out or refused the call. Safe to retry."""

    code = ErrorCode.GATEWAY_UNAVAILABLE
    status_code = 503

    def __init__(self, message: str = "Payment gateway unavailable, please retry", booking_id: str | None = None) -> None:
        super().__init__(message)
        self.booking_id = booking_id

    def to_dict(self) -> dict:
        out = super().to_dict()
        if self.booking_id:
            out["bookingId"] = self.booking_id
        return out


class SignatureInvalid(BookingError):
    code = ErrorCode.SIGNATURE_INVALID
    status_code = 400

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(message)


class InvalidPayload(BookingError):
    """Webhook payload verified but unusable (missing metadata, mismatched reference)."""

    code = ErrorCode.INVALID_PAYLOAD
    status_code = 400
