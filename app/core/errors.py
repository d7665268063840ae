"""
Error taxonomy for the booking core.

Every failure a caller can act on is one of these types. The conversation
layer renders each of them as a scripted reply; the HTTP layer maps them to
status codes in app.main.
"""

from typing import Optional, Sequence


class BookingError(Exception):
    """Base class for booking errors."""

    code = "booking_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """Malformed booking input. Never retried."""

    code = "validation_error"

    def __init__(self, message: str, errors: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [message])


class NotFoundError(BookingError):
    """Requested booking does not exist (or is not visible to the caller)."""

    code = "not_found"

    def __init__(self, resource: str = "Booking"):
        super().__init__(f"{resource} not found")
        self.resource = resource


class ConflictError(BookingError):
    """Requested interval is taken at write time."""

    code = "conflict"

    def __init__(self, message: str = "The selected time slot is already booked", alternatives=None):
        super().__init__(message)
        self.alternatives = list(alternatives or [])


class FrequencyLimitExceeded(BookingError):
    """Requester already holds the maximum bookings for the rolling window."""

    code = "frequency_limit_exceeded"

    def __init__(self, limit: int, window_minutes: int, duration_minutes: int):
        super().__init__(
            f"Limit of {limit} bookings of {duration_minutes} minutes "
            f"per {window_minutes} minutes reached"
        )
        self.limit = limit
        self.window_minutes = window_minutes
        self.duration_minutes = duration_minutes


class StoreError(BookingError):
    """Durable write or read failed. Fatal to the operation."""

    code = "store_error"


class IntegrationError(BookingError):
    """External dependency (calendar, CRM, notifications) failed.

    Never propagated to the booking caller.
    """

    code = "integration_error"

    def __init__(self, dependency: str, message: str):
        super().__init__(f"{dependency}: {message}")
        self.dependency = dependency


class CircuitOpenError(IntegrationError):
    """Call rejected without reaching the dependency."""

    code = "circuit_open"

    def __init__(self, dependency: str):
        super().__init__(dependency, "circuit breaker is open")


class SessionBusyError(BookingError):
    """Another message for the same session is still being processed."""

    code = "session_busy"

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is busy")
        self.session_id = session_id
