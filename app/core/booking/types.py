"""Booking domain types."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4


ALLOWED_DURATIONS: tuple[int, ...] = (15, 30, 45, 60)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    """Lifecycle states of a booking."""

    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


TERMINAL_STATUSES = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW}
)


def overlaps(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """Half-open interval overlap: [a_start, a_end) and [b_start, b_end)."""
    return a_start < b_end and a_end > b_start


@dataclass(frozen=True)
class Interval:
    """A busy period, optionally tied to the record that occupies it."""

    start: datetime
    end: datetime
    booking_id: Optional[str] = None
    event_id: Optional[str] = None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return overlaps(self.start, self.end, start, end)


@dataclass(frozen=True)
class TimeSlot:
    """Candidate appointment slot. Produced on demand, never stored."""

    start_time: datetime
    end_time: datetime
    duration_minutes: int

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_minutes": self.duration_minutes,
        }


@dataclass(frozen=True)
class FrequencyRule:
    """At most ``max_bookings`` per requester inside ``window_minutes``."""

    max_bookings: int
    window_minutes: int

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)


@dataclass(frozen=True)
class BusinessHours:
    """Where and when bookings may be placed."""

    days: tuple[int, ...] = (1, 2, 3, 4, 5)  # ISO weekdays
    start_hour: int = 9
    end_hour: int = 17
    timezone: str = "Europe/London"
    buffer_minutes: int = 0
    min_advance_hours: int = 1
    max_advance_hours: int = 24


@dataclass
class BookingRequest:
    """Data needed to create a booking."""

    name: str
    email: str
    start_time: datetime
    duration_minutes: int
    phone: Optional[str] = None
    company: Optional[str] = None
    inquiry: str = ""


@dataclass
class Booking:
    """A booked appointment for the single bookable resource."""

    name: str
    email: str
    start_time: datetime
    duration_minutes: int
    id: str = field(default_factory=lambda: str(uuid4()))
    phone: Optional[str] = None
    company: Optional[str] = None
    inquiry: str = ""
    status: BookingStatus = BookingStatus.CONFIRMED

    # External sync state
    external_calendar_event_id: Optional[str] = None
    external_crm_contact_id: Optional[str] = None
    calendar_synced: bool = False
    crm_synced: bool = False
    requires_manual_calendar_sync: bool = False
    requires_manual_crm_sync: bool = False

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        """Active bookings occupy their interval."""
        return self.status != BookingStatus.CANCELLED

    def copy(self, **changes) -> "Booking":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "company": self.company,
            "inquiry": self.inquiry,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_minutes": self.duration_minutes,
            "status": self.status.value,
            "external_calendar_event_id": self.external_calendar_event_id,
            "external_crm_contact_id": self.external_crm_contact_id,
            "calendar_synced": self.calendar_synced,
            "crm_synced": self.crm_synced,
            "requires_manual_calendar_sync": self.requires_manual_calendar_sync,
            "requires_manual_crm_sync": self.requires_manual_crm_sync,
        }
