"""
Conflict Resolver

Answers "is [start, start + duration) free?" for a write.

The booking store decides. The calendar is consulted too, but only as an
extra source of busy time: when it is unreachable the check proceeds on the
store alone and the outcome says so, so the caller can flag the booking for
manual calendar sync. The store write re-validates the interval anyway.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from app.core.booking.availability import BusyIntervalSource
from app.core.booking.types import Interval


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityCheck:
    """Result of a conflict check."""

    available: bool
    calendar_checked: bool
    conflicts: tuple[Interval, ...] = ()

    def __bool__(self) -> bool:
        return self.available


class ConflictResolver:
    """Overlap check against bookings and calendar busy time."""

    def __init__(self, busy_source: BusyIntervalSource):
        self.busy_source = busy_source

    async def check(
        self,
        start: datetime,
        duration_minutes: int,
        exclude_booking_id: Optional[str] = None,
        exclude_event_id: Optional[str] = None,
    ) -> AvailabilityCheck:
        """
        Check an interval.

        Args:
            start: Requested start (aware)
            duration_minutes: Requested length
            exclude_booking_id: Booking ignored (the one being moved)
            exclude_event_id: Calendar event ignored (the moved booking's)

        Returns:
            AvailabilityCheck; falsy when the interval is taken
        """
        end = start + timedelta(minutes=duration_minutes)
        snapshot = await self.busy_source.busy(
            start,
            end,
            exclude_booking_id=exclude_booking_id,
            exclude_event_id=exclude_event_id,
        )
        conflicts = tuple(i for i in snapshot.intervals if i.overlaps(start, end))
        if conflicts:
            logger.debug(f"{len(conflicts)} busy interval(s) overlap {start.isoformat()}")
        return AvailabilityCheck(
            available=not conflicts,
            calendar_checked=snapshot.calendar_checked,
            conflicts=conflicts,
        )

    async def is_available(
        self,
        start: datetime,
        duration_minutes: int,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        return (await self.check(start, duration_minutes, exclude_booking_id)).available
