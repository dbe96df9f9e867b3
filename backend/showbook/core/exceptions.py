"""
Domain errors for the reservation core.

Services raise these; the handlers in `showbook.api.errors` turn them into
structured JSON bodies, so a caller always gets `{"error", "detail", ...}`
rather than a bare status code.
"""

from typing import Any, Optional


class DomainError(Exception):
    status_code: int = 400
    code: str = "domain_error"

    def __init__(self, message: str, extra: Optional[dict[str, Any]] = None):
        self.message = message
        self.extra = extra or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message, **self.extra}


class ShowNotFound(DomainError):
    status_code = 404
    code = "show_not_found"

    def __init__(self, show_id: int):
        self.show_id = show_id
        super().__init__(f"Show {show_id} not found")


class MovieNotFound(DomainError):
    """No show of this movie was ever scheduled."""

    status_code = 404
    code = "movie_not_found"

    def __init__(self, movie_id: str):
        self.movie_id = movie_id
        super().__init__(f"Movie {movie_id} has no scheduled shows")


class BookingNotFound(DomainError):
    status_code = 404
    code = "booking_not_found"

    def __init__(self, booking_id: int):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class Forbidden(DomainError):
    status_code = 403
    code = "forbidden"


class InvalidRequest(DomainError):
    status_code = 400
    code = "invalid_request"


class SeatConflict(DomainError):
    """Some requested seats are already held. Carries current occupancy."""

    status_code = 409
    code = "seat_conflict"

    def __init__(self, show_id: int, conflicting_seats: list[str], occupied_seats: list[str]):
        self.show_id = show_id
        self.conflicting_seats = conflicting_seats
        self.occupied_seats = occupied_seats
        super().__init__(
            f"Seats no longer available: {', '.join(conflicting_seats)}",
            extra={
                "show_id": show_id,
                "conflicting_seats": conflicting_seats,
                "occupied_seats": occupied_seats,
            },
        )


class TransientStorageFailure(DomainError):
    """Storage could not evaluate the operation. Nothing was committed."""

    status_code = 503
    code = "transient_storage_failure"
    retry_after_seconds = 1


class PaymentGatewayError(DomainError):
    status_code = 502
    code = "payment_gateway_error"


class ReleaseTaskFailure(Exception):
    """An expiry task's evaluate/release step raised; the task is rescheduled."""

    def __init__(self, task_id: int, booking_id: int, cause: BaseException):
        self.task_id = task_id
        self.booking_id = booking_id
        self.cause = cause
        super().__init__(f"Expiry task {task_id} for booking {booking_id} failed: {cause}")
