"""
Booking Lifecycle Manager

Create, reschedule and cancel bookings.

    (none) -> CONFIRMED -> CANCELLED | COMPLETED | NO_SHOW

Order for writes: validation -> frequency limit -> conflict check ->
durable write -> sync tasks queued. Returning success only requires the
durable write; everything after it is best-effort.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.core.booking.availability import AvailabilityEngine, SlotSequence
from app.core.booking.conflicts import ConflictResolver
from app.core.booking.frequency import FrequencyLimiter
from app.core.booking.outbox import SyncKind, SyncOutbox
from app.core.booking.store import BookingStore
from app.core.booking.types import (
    TERMINAL_STATUSES,
    Booking,
    BookingRequest,
    BookingStatus,
    TimeSlot,
)
from app.core.booking.validation import normalize_email, normalize_phone, validate_request, validate_reschedule
from app.core.errors import ConflictError, NotFoundError, ValidationError


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


VALID_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.CONFIRMED: {
        BookingStatus.CANCELLED,
        BookingStatus.COMPLETED,
        BookingStatus.NO_SHOW,
    },
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
    BookingStatus.NO_SHOW: set(),
}


def can_transition(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    """Check if a status transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, set())


class BookingManager:
    """
    Orchestrates the booking lifecycle.

    Usage:
        manager = BookingManager(store, availability, conflicts, limiter, outbox)
        booking = await manager.create(BookingRequest(...))
        booking = await manager.reschedule(booking.id, new_start)
        booking = await manager.cancel(booking.id)
    """

    def __init__(
        self,
        store: BookingStore,
        availability: AvailabilityEngine,
        conflicts: ConflictResolver,
        limiter: FrequencyLimiter,
        outbox: Optional[SyncOutbox] = None,
        clock: Callable[[], datetime] = _utcnow,
        alternative_count: int = 3,
        alternative_search_days: int = 3,
    ):
        self.store = store
        self.availability = availability
        self.conflicts = conflicts
        self.limiter = limiter
        self.outbox = outbox
        self.clock = clock
        self.alternative_count = alternative_count
        self.alternative_search_days = alternative_search_days

    # === Queries ===

    async def get(self, booking_id: str, email: Optional[str] = None) -> Booking:
        """
        Load a booking.

        When ``email`` is given the booking must belong to it; a mismatch is
        reported as not found.

        Raises:
            NotFoundError
        """
        booking = await self.store.get(booking_id)
        if booking is None:
            raise NotFoundError()
        if email is not None and booking.email != normalize_email(email):
            raise NotFoundError()
        return booking

    async def find_upcoming(self, email: str) -> list[Booking]:
        """Confirmed bookings for an email that have not started yet."""
        bookings = await self.store.find_for_email(
            normalize_email(email), window_start=self.clock()
        )
        return [b for b in bookings if b.status == BookingStatus.CONFIRMED]

    async def available_slots(
        self,
        range_start: datetime,
        range_end: datetime,
        duration_minutes: int,
    ) -> SlotSequence:
        return await self.availability.slots(range_start, range_end, duration_minutes)

    async def suggest_alternatives(
        self,
        near: datetime,
        duration_minutes: int,
        exclude: Optional[Booking] = None,
    ) -> list[TimeSlot]:
        """Nearby free slots, used when a requested time is taken."""
        return await self.availability.alternatives(
            near,
            duration_minutes,
            count=self.alternative_count,
            search_days=self.alternative_search_days,
            exclude_booking_id=exclude.id if exclude else None,
            exclude_event_id=exclude.external_calendar_event_id if exclude else None,
        )

    async def _conflict(
        self,
        start: datetime,
        duration_minutes: int,
        exclude: Optional[Booking] = None,
    ) -> ConflictError:
        try:
            alternatives = await self.suggest_alternatives(start, duration_minutes, exclude)
        except Exception as e:
            logger.error(f"Could not compute alternatives: {e!r}")
            alternatives = []
        return ConflictError(alternatives=alternatives)

    # === Commands ===

    async def create(self, request: BookingRequest) -> Booking:
        """
        Create a booking.

        Raises:
            ValidationError: Bad input
            FrequencyLimitExceeded: Requester at capacity
            ConflictError: Slot taken (carries alternatives)
            StoreError: Durable write failed
        """
        validate_request(request, self.clock())
        email = normalize_email(request.email)
        start = request.start_time.astimezone(timezone.utc)

        rule = await self.limiter.check_limit(email, start, request.duration_minutes)

        check = await self.conflicts.check(start, request.duration_minutes)
        if not check:
            logger.warning(f"Conflict creating booking for {email} at {start.isoformat()}")
            raise await self._conflict(start, request.duration_minutes)

        booking = Booking(
            name=request.name.strip(),
            email=email,
            phone=normalize_phone(request.phone) if request.phone else None,
            company=request.company,
            inquiry=request.inquiry,
            start_time=start,
            duration_minutes=request.duration_minutes,
            requires_manual_calendar_sync=not check.calendar_checked and self._calendar_enabled,
        )

        try:
            booking = await self.store.insert(booking, rule=rule)
        except ConflictError:
            logger.warning(f"Write-time conflict for {email} at {start.isoformat()}")
            raise await self._conflict(start, request.duration_minutes)

        logger.info(
            f"Booking {booking.id} created for {email} "
            f"at {start.isoformat()} ({booking.duration_minutes} min)"
        )
        self._sync(booking, SyncKind.CALENDAR_CREATE, SyncKind.CRM_UPSERT, SyncKind.NOTIFY_CONFIRMATION)
        return booking

    async def reschedule(
        self,
        booking_id: str,
        new_start: datetime,
        new_duration_minutes: Optional[int] = None,
        email: Optional[str] = None,
    ) -> Booking:
        """
        Move a booking in place (same id, same calendar event).

        The booking being moved is excluded from both the frequency and the
        conflict check.

        Raises:
            NotFoundError, ValidationError, FrequencyLimitExceeded,
            ConflictError, StoreError
        """
        booking = await self.get(booking_id, email)
        if booking.status != BookingStatus.CONFIRMED:
            raise ValidationError(f"Cannot reschedule a {booking.status.value} booking")

        duration = new_duration_minutes or booking.duration_minutes
        validate_reschedule(new_start, duration, self.clock())
        start = new_start.astimezone(timezone.utc)

        rule = await self.limiter.check_limit(
            booking.email, start, duration, exclude_booking_id=booking.id
        )
        check = await self.conflicts.check(
            start,
            duration,
            exclude_booking_id=booking.id,
            exclude_event_id=booking.external_calendar_event_id,
        )
        if not check:
            logger.warning(f"Conflict rescheduling booking {booking.id} to {start.isoformat()}")
            raise await self._conflict(start, duration, exclude=booking)

        previous_start = booking.start_time
        # Only the interval and the raised manual flag are written; sync
        # columns stay whatever the outbox has stored meanwhile
        moved = booking.copy(
            start_time=start,
            duration_minutes=duration,
            requires_manual_calendar_sync=not check.calendar_checked and self._calendar_enabled,
        )
        try:
            moved = await self.store.update(moved, recheck_interval=True, rule=rule)
        except ConflictError:
            logger.warning(f"Write-time conflict rescheduling booking {booking.id}")
            raise await self._conflict(start, duration, exclude=booking)

        logger.info(
            f"Booking {moved.id} rescheduled from {previous_start.isoformat()} "
            f"to {start.isoformat()} ({duration} min)"
        )
        self._sync(
            moved,
            SyncKind.CALENDAR_UPDATE,
            SyncKind.CRM_STATUS,
            SyncKind.NOTIFY_UPDATE,
            previous_start=previous_start.isoformat(),
        )
        return moved

    async def cancel(self, booking_id: str, email: Optional[str] = None) -> Booking:
        """
        Cancel a booking. Cancelling a cancelled booking returns it unchanged.

        Raises:
            NotFoundError: Unknown booking
            ValidationError: Booking already completed or no-show
        """
        booking = await self.get(booking_id, email)
        if booking.status == BookingStatus.CANCELLED:
            logger.info(f"Booking {booking.id} already cancelled")
            return booking
        if not can_transition(booking.status, BookingStatus.CANCELLED):
            raise ValidationError(f"Cannot cancel a {booking.status.value} booking")

        cancelled = await self.store.update(
            booking.copy(status=BookingStatus.CANCELLED), recheck_interval=False
        )
        logger.info(f"Booking {cancelled.id} cancelled for {cancelled.email}")
        self._sync(
            cancelled,
            SyncKind.CALENDAR_DELETE,
            SyncKind.CRM_STATUS,
            SyncKind.NOTIFY_CANCELLATION,
        )
        return cancelled

    async def set_status(self, booking_id: str, status: BookingStatus) -> Booking:
        """Mark a booking COMPLETED or NO_SHOW (set by processes after the meeting)."""
        booking = await self.get(booking_id)
        if booking.status == status and status in TERMINAL_STATUSES:
            return booking
        if not can_transition(booking.status, status):
            raise ValidationError(
                f"Cannot move booking from {booking.status.value} to {status.value}"
            )
        if status == BookingStatus.CANCELLED:
            return await self.cancel(booking_id)
        updated = await self.store.update(booking.copy(status=status), recheck_interval=False)
        logger.info(f"Booking {updated.id} marked {status.value}")
        self._sync(updated, SyncKind.CRM_STATUS)
        return updated

    # === Sync ===

    @property
    def _calendar_enabled(self) -> bool:
        return self.outbox is not None and self.outbox.calendar is not None

    def _sync(self, booking: Booking, *kinds: SyncKind, **payload) -> None:
        if self.outbox is None:
            return
        for kind in kinds:
            self.outbox.enqueue(booking, kind, **payload)
