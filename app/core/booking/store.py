"""
Booking Store

Durable home of bookings and the correctness boundary for overlap and
per-requester capacity. Every write re-validates its interval while holding
an exclusive write lock, so stale advisory checks upstream can never produce
two overlapping active bookings.

Two implementations:
- InMemoryBookingStore: process-local dictionary (tests, local development)
- SqlBookingStore: SQLAlchemy async ORM over the ``bookings`` table
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.booking.types import Booking, BookingStatus, FrequencyRule, overlaps
from app.core.errors import ConflictError, FrequencyLimitExceeded, NotFoundError, StoreError
from app.models.database import BookingRecord


logger = logging.getLogger(__name__)

# Arbitrary constant shared by every writer of the bookings table
ADVISORY_LOCK_KEY = 72_410_001

SYNC_FIELDS = frozenset({
    "external_calendar_event_id",
    "external_crm_contact_id",
    "calendar_synced",
    "crm_synced",
    "requires_manual_calendar_sync",
    "requires_manual_crm_sync",
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _lifecycle_changes(current: Booking, booking: Booking) -> dict:
    """
    Columns a lifecycle write sets on the stored booking.

    Sync columns are owned by update_sync_state and are read from the stored
    row, not from the caller's copy. A move clears ``calendar_synced``; the
    manual calendar flag can only be raised here.
    """
    changes = {
        "start_time": booking.start_time,
        "duration_minutes": booking.duration_minutes,
        "status": booking.status,
    }
    if (booking.start_time, booking.duration_minutes) != (current.start_time, current.duration_minutes):
        changes["calendar_synced"] = False
    if booking.requires_manual_calendar_sync and not current.requires_manual_calendar_sync:
        changes["requires_manual_calendar_sync"] = True
    return changes


def _check_capacity(
    prior: list[Booking],
    rule: Optional[FrequencyRule],
    duration_minutes: int,
) -> None:
    if rule is not None and len(prior) >= rule.max_bookings:
        raise FrequencyLimitExceeded(
            limit=rule.max_bookings,
            window_minutes=rule.window_minutes,
            duration_minutes=duration_minutes,
        )


class BookingStore(ABC):
    """
    Storage contract the booking core relies on.

    Only two query shapes are needed: bookings overlapping an interval, and
    bookings for an email inside a time window. Both ignore cancelled rows.
    """

    @abstractmethod
    async def insert(self, booking: Booking, rule: Optional[FrequencyRule] = None) -> Booking:
        """
        Persist a new booking.

        Args:
            booking: Booking to store
            rule: Capacity rule re-checked inside the write, if given

        Raises:
            ConflictError: An active booking overlaps the interval
            FrequencyLimitExceeded: The requester is at capacity
            StoreError: The write failed
        """

    @abstractmethod
    async def update(
        self,
        booking: Booking,
        recheck_interval: bool = True,
        rule: Optional[FrequencyRule] = None,
    ) -> Booking:
        """
        Write the lifecycle fields (interval and status) of a booking.

        The booking's own row is excluded from both re-checks. External ids
        and sync flags keep their stored values; see ``_lifecycle_changes``.
        """

    @abstractmethod
    async def update_sync_state(self, booking_id: str, **fields) -> Booking:
        """Update only external sync columns."""

    @abstractmethod
    async def get(self, booking_id: str) -> Optional[Booking]:
        """Get booking by id."""

    @abstractmethod
    async def find_overlapping(
        self,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[Booking]:
        """Non-cancelled bookings overlapping [start, end)."""

    @abstractmethod
    async def find_for_email(
        self,
        email: str,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
        exclude_id: Optional[str] = None,
    ) -> list[Booking]:
        """Non-cancelled bookings for email with start in [window_start, window_end)."""

    async def close(self) -> None:
        pass


class InMemoryBookingStore(BookingStore):
    """Dictionary-backed store. Writes are serialized by one asyncio lock."""

    def __init__(self):
        self._bookings: dict[str, Booking] = {}
        self._lock = asyncio.Lock()

    def _overlapping(self, start, end, exclude_id=None) -> list[Booking]:
        return sorted(
            (
                b.copy() for b in self._bookings.values()
                if b.is_active
                and b.id != exclude_id
                and overlaps(b.start_time, b.end_time, start, end)
            ),
            key=lambda b: b.start_time,
        )

    def _for_email(self, email, window_start=None, window_end=None, exclude_id=None) -> list[Booking]:
        return sorted(
            (
                b.copy() for b in self._bookings.values()
                if b.is_active
                and b.email == email
                and b.id != exclude_id
                and (window_start is None or b.start_time >= window_start)
                and (window_end is None or b.start_time < window_end)
            ),
            key=lambda b: b.start_time,
        )

    def _recheck(self, booking: Booking, rule: Optional[FrequencyRule], exclude_id=None) -> None:
        if self._overlapping(booking.start_time, booking.end_time, exclude_id):
            raise ConflictError()
        if rule is not None:
            prior = self._for_email(
                booking.email,
                booking.start_time - rule.window,
                booking.start_time,
                exclude_id,
            )
            _check_capacity(prior, rule, booking.duration_minutes)

    async def insert(self, booking: Booking, rule: Optional[FrequencyRule] = None) -> Booking:
        async with self._lock:
            if booking.id in self._bookings:
                raise StoreError(f"Booking {booking.id} already exists")
            self._recheck(booking, rule)
            self._bookings[booking.id] = booking.copy()
        return booking.copy()

    async def update(
        self,
        booking: Booking,
        recheck_interval: bool = True,
        rule: Optional[FrequencyRule] = None,
    ) -> Booking:
        async with self._lock:
            current = self._bookings.get(booking.id)
            if current is None:
                raise NotFoundError()
            if recheck_interval and booking.is_active:
                self._recheck(booking, rule, exclude_id=booking.id)
            stored = current.copy(updated_at=_utcnow(), **_lifecycle_changes(current, booking))
            self._bookings[booking.id] = stored
        return stored.copy()

    async def update_sync_state(self, booking_id: str, **fields) -> Booking:
        unknown = set(fields) - SYNC_FIELDS
        if unknown:
            raise ValueError(f"Not sync fields: {sorted(unknown)}")
        async with self._lock:
            current = self._bookings.get(booking_id)
            if current is None:
                raise NotFoundError()
            stored = current.copy(updated_at=_utcnow(), **fields)
            self._bookings[booking_id] = stored
        return stored.copy()

    async def get(self, booking_id: str) -> Optional[Booking]:
        booking = self._bookings.get(booking_id)
        return booking.copy() if booking else None

    async def find_overlapping(self, start, end, exclude_id=None) -> list[Booking]:
        return self._overlapping(start, end, exclude_id)

    async def find_for_email(
        self,
        email,
        window_start=None,
        window_end=None,
        exclude_id=None,
    ) -> list[Booking]:
        return self._for_email(email, window_start, window_end, exclude_id)


class SqlBookingStore(BookingStore):
    """
    SQLAlchemy-backed store.

    Each write runs in one transaction. On PostgreSQL the transaction first
    takes a transaction-scoped advisory lock, making the overlap re-check and
    the write atomic across processes. Within a process writes are also
    serialized by an asyncio lock, which is what keeps SQLite correct.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | Callable[[], AsyncSession]):
        self._session_factory = session_factory
        self._write_lock = asyncio.Lock()

    @staticmethod
    def _uuid(booking_id: str) -> Optional[uuid.UUID]:
        try:
            return uuid.UUID(str(booking_id))
        except ValueError:
            return None

    async def _lock_table(self, session: AsyncSession) -> None:
        if session.bind is not None and session.bind.dialect.name == "postgresql":
            await session.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": ADVISORY_LOCK_KEY},
            )

    async def _select_overlapping(self, session, start, end, exclude_id=None) -> list[BookingRecord]:
        stmt = (
            select(BookingRecord)
            .where(
                BookingRecord.status != BookingStatus.CANCELLED,
                BookingRecord.start_time < end,
                BookingRecord.end_time > start,
            )
            .order_by(BookingRecord.start_time)
        )
        if exclude_id is not None:
            stmt = stmt.where(BookingRecord.id != self._uuid(exclude_id))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def _select_for_email(
        self, session, email, window_start=None, window_end=None, exclude_id=None,
    ) -> list[BookingRecord]:
        stmt = (
            select(BookingRecord)
            .where(
                BookingRecord.status != BookingStatus.CANCELLED,
                BookingRecord.email == email,
            )
            .order_by(BookingRecord.start_time)
        )
        if window_start is not None:
            stmt = stmt.where(BookingRecord.start_time >= window_start)
        if window_end is not None:
            stmt = stmt.where(BookingRecord.start_time < window_end)
        if exclude_id is not None:
            stmt = stmt.where(BookingRecord.id != self._uuid(exclude_id))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def _recheck(self, session, booking: Booking, rule, exclude_id=None) -> None:
        if await self._select_overlapping(
            session, booking.start_time, booking.end_time, exclude_id
        ):
            raise ConflictError()
        if rule is not None:
            count = await session.scalar(
                select(func.count())
                .select_from(BookingRecord)
                .where(
                    BookingRecord.status != BookingStatus.CANCELLED,
                    BookingRecord.email == booking.email,
                    BookingRecord.start_time >= booking.start_time - rule.window,
                    BookingRecord.start_time < booking.start_time,
                    *(
                        [BookingRecord.id != self._uuid(exclude_id)]
                        if exclude_id is not None else []
                    ),
                )
            )
            if (count or 0) >= rule.max_bookings:
                raise FrequencyLimitExceeded(
                    limit=rule.max_bookings,
                    window_minutes=rule.window_minutes,
                    duration_minutes=booking.duration_minutes,
                )

    async def insert(self, booking: Booking, rule: Optional[FrequencyRule] = None) -> Booking:
        try:
            async with self._write_lock:
                async with self._session_factory() as session:
                    async with session.begin():
                        await self._lock_table(session)
                        await self._recheck(session, booking, rule)
                        record = BookingRecord.from_domain(booking)
                        session.add(record)
                    return record.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Failed to insert booking {booking.id}: {e}")
            raise StoreError("Failed to save booking") from e

    async def update(
        self,
        booking: Booking,
        recheck_interval: bool = True,
        rule: Optional[FrequencyRule] = None,
    ) -> Booking:
        record_id = self._uuid(booking.id)
        if record_id is None:
            raise NotFoundError()
        try:
            async with self._write_lock:
                async with self._session_factory() as session:
                    async with session.begin():
                        await self._lock_table(session)
                        record = await session.get(
                            BookingRecord, record_id, with_for_update=True
                        )
                        if record is None:
                            raise NotFoundError()
                        if recheck_interval and booking.is_active:
                            await self._recheck(session, booking, rule, exclude_id=booking.id)
                        record.apply_changes(_lifecycle_changes(record.to_domain(), booking))
                        record.updated_at = _utcnow()
                    return record.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Failed to update booking {booking.id}: {e}")
            raise StoreError("Failed to update booking") from e

    async def update_sync_state(self, booking_id: str, **fields) -> Booking:
        unknown = set(fields) - SYNC_FIELDS
        if unknown:
            raise ValueError(f"Not sync fields: {sorted(unknown)}")
        record_id = self._uuid(booking_id)
        if record_id is None:
            raise NotFoundError()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    record = await session.get(
                        BookingRecord, record_id, with_for_update=True
                    )
                    if record is None:
                        raise NotFoundError()
                    record.apply_changes(fields)
                    record.updated_at = _utcnow()
                return record.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Failed to update sync state for {booking_id}: {e}")
            raise StoreError("Failed to update booking") from e

    async def get(self, booking_id: str) -> Optional[Booking]:
        record_id = self._uuid(booking_id)
        if record_id is None:
            return None
        try:
            async with self._session_factory() as session:
                record = await session.get(BookingRecord, record_id)
                return record.to_domain() if record else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to load booking {booking_id}: {e}")
            raise StoreError("Failed to load booking") from e

    async def find_overlapping(self, start, end, exclude_id=None) -> list[Booking]:
        try:
            async with self._session_factory() as session:
                records = await self._select_overlapping(session, start, end, exclude_id)
                return [r.to_domain() for r in records]
        except SQLAlchemyError as e:
            logger.error(f"Overlap query failed: {e}")
            raise StoreError("Failed to query bookings") from e

    async def find_for_email(
        self,
        email,
        window_start=None,
        window_end=None,
        exclude_id=None,
    ) -> list[Booking]:
        try:
            async with self._session_factory() as session:
                records = await self._select_for_email(
                    session, email, window_start, window_end, exclude_id
                )
                return [r.to_domain() for r in records]
        except SQLAlchemyError as e:
            logger.error(f"Email query failed: {e}")
            raise StoreError("Failed to query bookings") from e
