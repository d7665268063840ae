"""
Availability Engine

Lays out candidate slots for a range and drops the ones that are outside
business hours, outside the advance window, or overlapping a busy interval.

All slot arithmetic happens in the configured reference timezone. Callers
pass and receive timezone-aware datetimes; conversion happens here at the
boundary only.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Iterator, Optional, Sequence
from zoneinfo import ZoneInfo

from app.core.booking.store import BookingStore
from app.core.booking.types import BusinessHours, Interval, TimeSlot
from app.core.errors import IntegrationError


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BusySnapshot:
    """Busy intervals for a range, and whether the calendar contributed."""

    intervals: tuple[Interval, ...]
    calendar_checked: bool


class BusyIntervalSource:
    """
    Busy intervals from the booking store and, when reachable, the calendar.

    The calendar is advisory: if it fails (or its breaker is open) only the
    store's intervals are returned and ``calendar_checked`` is False.
    """

    def __init__(self, store: BookingStore, calendar=None):
        self.store = store
        self.calendar = calendar

    async def busy(
        self,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
        exclude_event_id: Optional[str] = None,
    ) -> BusySnapshot:
        bookings = await self.store.find_overlapping(start, end, exclude_id=exclude_booking_id)
        intervals = [
            Interval(b.start_time, b.end_time, booking_id=b.id, event_id=b.external_calendar_event_id)
            for b in bookings
        ]

        calendar_checked = False
        if self.calendar is not None:
            try:
                events = await self.calendar.get_busy_intervals(start, end)
            except IntegrationError as e:
                logger.warning(f"Calendar busy lookup skipped: {e}")
            else:
                calendar_checked = True
                intervals.extend(
                    event for event in events
                    if exclude_event_id is None or event.event_id != exclude_event_id
                )

        intervals.sort(key=lambda i: i.start)
        return BusySnapshot(tuple(intervals), calendar_checked)


def generate_slots(
    range_start: datetime,
    range_end: datetime,
    duration_minutes: int,
    hours: BusinessHours,
    busy: Sequence[Interval],
    now: datetime,
) -> Iterator[TimeSlot]:
    """
    Yield free slots in [range_start, range_end), earliest first.

    For each business day, candidates start at the opening hour and advance
    by duration + buffer. A candidate whose end passes the closing hour is
    dropped, never shortened. Buffer minutes pad the candidate on both sides
    when testing it against busy intervals.
    """
    tz = ZoneInfo(hours.timezone)
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=duration_minutes + hours.buffer_minutes)
    buffer = timedelta(minutes=hours.buffer_minutes)
    earliest = now + timedelta(hours=hours.min_advance_hours)
    latest = now + timedelta(hours=hours.max_advance_hours)

    day: date = range_start.astimezone(tz).date()
    last_day: date = range_end.astimezone(tz).date()

    while day <= last_day:
        if day.isoweekday() in hours.days:
            # Local wall-clock arithmetic, converted to UTC per candidate
            opening = datetime.combine(day, time(0), tzinfo=tz) + timedelta(hours=hours.start_hour)
            closing = datetime.combine(day, time(0), tzinfo=tz) + timedelta(hours=hours.end_hour)

            current = opening
            while current + duration <= closing:
                start = current.astimezone(timezone.utc)
                end = (current + duration).astimezone(timezone.utc)
                current = current + step

                if start < range_start or end > range_end:
                    continue
                if start < earliest or start > latest:
                    continue
                padded_start, padded_end = start - buffer, end + buffer
                if any(b.overlaps(padded_start, padded_end) for b in busy):
                    continue

                yield TimeSlot(start_time=start, end_time=end, duration_minutes=duration_minutes)

        day += timedelta(days=1)


class SlotSequence:
    """
    Lazy, finite, restartable sequence of free slots.

    Busy intervals are captured once; every iteration re-runs the generator
    over the same snapshot.
    """

    def __init__(
        self,
        range_start: datetime,
        range_end: datetime,
        duration_minutes: int,
        hours: BusinessHours,
        busy: Sequence[Interval],
        now: datetime,
        calendar_checked: bool = True,
    ):
        self.range_start = range_start
        self.range_end = range_end
        self.duration_minutes = duration_minutes
        self.hours = hours
        self.busy = tuple(busy)
        self.now = now
        self.calendar_checked = calendar_checked

    def __iter__(self) -> Iterator[TimeSlot]:
        return generate_slots(
            self.range_start,
            self.range_end,
            self.duration_minutes,
            self.hours,
            self.busy,
            self.now,
        )

    def first(self, count: int) -> list[TimeSlot]:
        slots = []
        for slot in self:
            if len(slots) >= count:
                break
            slots.append(slot)
        return slots


class AvailabilityEngine:
    """
    Free-slot listing for the single bookable resource.

    Usage:
        engine = AvailabilityEngine(busy_source, settings.business_hours)
        for slot in await engine.slots(start, end, 30):
            ...
    """

    def __init__(
        self,
        busy_source: BusyIntervalSource,
        hours: BusinessHours,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.busy_source = busy_source
        self.hours = hours
        self.clock = clock

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.hours.timezone)

    async def slots(
        self,
        range_start: datetime,
        range_end: datetime,
        duration_minutes: int,
        hours: Optional[BusinessHours] = None,
        exclude_booking_id: Optional[str] = None,
        exclude_event_id: Optional[str] = None,
    ) -> SlotSequence:
        """
        Free slots in a range.

        Args:
            range_start: Range start (aware)
            range_end: Range end (aware, exclusive)
            duration_minutes: Slot length
            hours: Override the configured business hours
            exclude_booking_id: Booking treated as free (being moved)
            exclude_event_id: Calendar event treated as free (being moved)

        Returns:
            Restartable SlotSequence
        """
        hours = hours or self.hours
        snapshot = await self.busy_source.busy(
            range_start - timedelta(minutes=hours.buffer_minutes),
            range_end + timedelta(minutes=hours.buffer_minutes),
            exclude_booking_id=exclude_booking_id,
            exclude_event_id=exclude_event_id,
        )
        return SlotSequence(
            range_start,
            range_end,
            duration_minutes,
            hours,
            snapshot.intervals,
            now=self.clock(),
            calendar_checked=snapshot.calendar_checked,
        )

    async def slots_for_day(self, day: date, duration_minutes: int) -> SlotSequence:
        """Free slots on one local calendar day."""
        start = datetime.combine(day, time(0), tzinfo=self.timezone)
        end = datetime.combine(day + timedelta(days=1), time(0), tzinfo=self.timezone)
        return await self.slots(
            start.astimezone(timezone.utc), end.astimezone(timezone.utc), duration_minutes
        )

    async def alternatives(
        self,
        near: datetime,
        duration_minutes: int,
        count: int = 3,
        search_days: int = 3,
        exclude_booking_id: Optional[str] = None,
        exclude_event_id: Optional[str] = None,
    ) -> list[TimeSlot]:
        """
        Free slots closest to a requested start, for conflict replies.

        Searches from the start of the requested local day through
        ``search_days`` further days and returns the ``count`` slots nearest
        in time to ``near``, in chronological order.
        """
        local_day = near.astimezone(self.timezone).date()
        start = datetime.combine(local_day, time(0), tzinfo=self.timezone)
        end = start + timedelta(days=search_days + 1)
        sequence = await self.slots(
            start.astimezone(timezone.utc),
            end.astimezone(timezone.utc),
            duration_minutes,
            exclude_booking_id=exclude_booking_id,
            exclude_event_id=exclude_event_id,
        )
        candidates = sorted(sequence, key=lambda s: abs((s.start_time - near).total_seconds()))
        return sorted(candidates[:count], key=lambda s: s.start_time)
