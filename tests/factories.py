"""Shared builders for unit tests."""

import asyncio
from datetime import datetime, timezone
from typing import Optional

from app.core.booking.availability import AvailabilityEngine, BusyIntervalSource
from app.core.booking.conflicts import ConflictResolver
from app.core.booking.frequency import FrequencyLimiter
from app.core.booking.lifecycle import BookingManager
from app.core.booking.store import BookingStore, InMemoryBookingStore
from app.core.booking.types import Booking, BusinessHours, Interval
from app.core.errors import IntegrationError


# Monday 9 December 2024, 09:00 in London (UTC+0 in winter)
NOW = datetime(2024, 12, 9, 9, 0, tzinfo=timezone.utc)

# Default hours, but with a two-week booking horizon
HOURS = BusinessHours(max_advance_hours=24 * 14)


def at(hour: int, minute: int = 0, day: int = 9) -> datetime:
    """An aware UTC datetime in December 2024."""
    return datetime(2024, 12, day, hour, minute, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


def make_booking(
    start: datetime,
    duration: int = 30,
    email: str = "someone@example.com",
    **kwargs,
) -> Booking:
    return Booking(
        name=kwargs.pop("name", "Someone Else"),
        email=email,
        start_time=start,
        duration_minutes=duration,
        **kwargs,
    )


class FakeCalendar:
    """In-process stand-in for CalendarClient."""

    def __init__(
        self,
        busy: Optional[list[Interval]] = None,
        fail: bool = False,
        latency: float = 0.0,
    ):
        self.busy = busy or []
        self.fail = fail
        self.latency = latency
        self.calls: list[tuple] = []
        self._next_id = 0

    def _check(self) -> None:
        if self.fail:
            raise IntegrationError("calendar", "unreachable")

    async def get_busy_intervals(self, start: datetime, end: datetime) -> list[Interval]:
        self._check()
        if self.latency:
            await asyncio.sleep(self.latency)
        return [i for i in self.busy if i.overlaps(start, end)]

    async def create_event(self, booking: Booking) -> str:
        self._check()
        self._next_id += 1
        self.calls.append(("create", booking.id))
        return f"evt-{self._next_id}"

    async def update_event(self, event_id: str, booking: Booking) -> str:
        self._check()
        self.calls.append(("update", event_id))
        return event_id

    async def delete_event(self, event_id: str) -> None:
        self._check()
        self.calls.append(("delete", event_id))


def build_manager(
    store: Optional[BookingStore] = None,
    calendar=None,
    outbox=None,
    hours: BusinessHours = HOURS,
    clock=fixed_clock,
) -> BookingManager:
    """A BookingManager wired the way app.core.services wires it."""
    store = store or InMemoryBookingStore()
    busy_source = BusyIntervalSource(store, calendar)
    return BookingManager(
        store,
        AvailabilityEngine(busy_source, hours, clock=clock),
        ConflictResolver(busy_source),
        FrequencyLimiter(store),
        outbox=outbox,
        clock=clock,
    )
