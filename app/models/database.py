"""
Database Models

SQLAlchemy ORM models for the booking assistant.

Only one table matters for correctness: ``bookings``. Interval overlap is
re-checked against it inside every write transaction.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import (
    Boolean, DateTime, Index, Integer, String, Text, TypeDecorator, Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.core.booking.types import Booking, BookingStatus


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC.

    PostgreSQL keeps the offset natively; SQLite drops it, so values read
    back without tzinfo are re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes cannot be stored")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=_utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )


class BookingRecord(Base, TimestampMixin):
    """
    Booking row.

    Start and end are both stored so overlap queries stay index friendly.
    Cancelled rows are kept; they no longer occupy their interval.
    """

    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    inquiry: Mapped[str] = mapped_column(Text, default="", nullable=False)

    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus, values_callable=lambda e: [m.value for m in e]),
        default=BookingStatus.CONFIRMED,
        nullable=False
    )

    # External sync state
    external_calendar_event_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    external_crm_contact_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    calendar_synced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    crm_synced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requires_manual_calendar_sync: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    requires_manual_crm_sync: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    __table_args__ = (
        Index("idx_bookings_time", "start_time", "end_time"),
        Index("idx_bookings_email_start", "email", "start_time"),
        Index("idx_bookings_status", "status"),
    )

    def to_domain(self) -> Booking:
        """Convert row to domain object."""
        return Booking(
            id=str(self.id),
            name=self.name,
            email=self.email,
            phone=self.phone,
            company=self.company,
            inquiry=self.inquiry or "",
            start_time=self.start_time,
            duration_minutes=self.duration_minutes,
            status=self.status,
            external_calendar_event_id=self.external_calendar_event_id,
            external_crm_contact_id=self.external_crm_contact_id,
            calendar_synced=self.calendar_synced,
            crm_synced=self.crm_synced,
            requires_manual_calendar_sync=self.requires_manual_calendar_sync,
            requires_manual_crm_sync=self.requires_manual_crm_sync,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def apply(self, booking: Booking) -> None:
        """Copy every field from a domain object. Used for new rows."""
        self.name = booking.name
        self.email = booking.email
        self.phone = booking.phone
        self.company = booking.company
        self.inquiry = booking.inquiry
        self.start_time = booking.start_time
        self.end_time = booking.end_time
        self.duration_minutes = booking.duration_minutes
        self.status = booking.status
        self.external_calendar_event_id = booking.external_calendar_event_id
        self.external_crm_contact_id = booking.external_crm_contact_id
        self.calendar_synced = booking.calendar_synced
        self.crm_synced = booking.crm_synced
        self.requires_manual_calendar_sync = booking.requires_manual_calendar_sync
        self.requires_manual_crm_sync = booking.requires_manual_crm_sync

    def apply_changes(self, changes: dict) -> None:
        """Set the given columns, keeping end_time in step with the interval."""
        for name, value in changes.items():
            setattr(self, name, value)
        if "start_time" in changes or "duration_minutes" in changes:
            self.end_time = self.start_time + timedelta(minutes=self.duration_minutes)

    @classmethod
    def from_domain(cls, booking: Booking) -> "BookingRecord":
        record = cls(id=uuid.UUID(booking.id), created_at=booking.created_at)
        record.apply(booking)
        record.updated_at = booking.updated_at
        return record
