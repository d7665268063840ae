"""Input validation for booking requests."""

import re
from datetime import datetime
from typing import Optional

from app.core.booking.types import ALLOWED_DURATIONS, BookingRequest
from app.core.errors import ValidationError


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?\d{10,15}$")


def is_valid_email(email: str) -> bool:
    return bool(email) and bool(EMAIL_PATTERN.match(email.strip()))


def normalize_phone(phone: str) -> str:
    """Strip spaces, dashes, dots and parentheses."""
    return re.sub(r"[\s\-().]", "", phone)


def is_valid_phone(phone: str) -> bool:
    return bool(PHONE_PATTERN.match(normalize_phone(phone)))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_start_time(start_time: datetime, now: datetime) -> list[str]:
    errors = []
    if start_time.tzinfo is None:
        errors.append("Start time must include a timezone")
    elif start_time <= now:
        errors.append("Cannot book appointments in the past")
    return errors


def validate_duration(duration_minutes: int) -> list[str]:
    if duration_minutes not in ALLOWED_DURATIONS:
        allowed = ", ".join(str(d) for d in ALLOWED_DURATIONS)
        return [f"Duration must be one of: {allowed} minutes"]
    return []


def validate_request(request: BookingRequest, now: datetime) -> None:
    """
    Validate a booking request, collecting every problem.

    Args:
        request: Incoming booking request
        now: Current time (timezone-aware)

    Raises:
        ValidationError: With one message per failed rule
    """
    errors: list[str] = []

    if not request.name or not request.name.strip():
        errors.append("Name is required")
    if not is_valid_email(request.email):
        errors.append("Valid email is required")
    if request.phone and not is_valid_phone(request.phone):
        errors.append("Invalid phone number format")
    errors.extend(validate_duration(request.duration_minutes))
    errors.extend(validate_start_time(request.start_time, now))

    if errors:
        raise ValidationError("; ".join(errors), errors)


def validate_reschedule(
    start_time: datetime,
    duration_minutes: int,
    now: datetime,
    email: Optional[str] = None,
) -> None:
    errors = validate_duration(duration_minutes) + validate_start_time(start_time, now)
    if email is not None and not is_valid_email(email):
        errors.append("Valid email is required")
    if errors:
        raise ValidationError("; ".join(errors), errors)
