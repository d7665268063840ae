"""Tests for the booking stores (in-memory and SQL on SQLite)."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.booking.frequency import rule_for
from app.core.booking.store import InMemoryBookingStore, SqlBookingStore
from app.core.booking.types import BookingStatus
from app.core.errors import ConflictError, FrequencyLimitExceeded, NotFoundError, StoreError
from app.models.database import Base
from tests.factories import at, make_booking


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryBookingStore()
        return

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SqlBookingStore(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


class TestBookingStore:
    """Behaviour shared by every store."""

    @pytest.mark.asyncio
    async def test_insert_and_get(self, store):
        booking = make_booking(at(14), 45, email="jane@example.com", phone="+442079460958")

        saved = await store.insert(booking)
        loaded = await store.get(booking.id)

        assert saved.id == booking.id
        assert loaded.email == "jane@example.com"
        assert loaded.phone == "+442079460958"
        assert loaded.start_time == at(14)
        assert loaded.start_time.tzinfo is not None
        assert loaded.end_time == at(14, 45)
        assert loaded.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("2c1b7a52-5a0f-4c55-9d8e-6b1f0c5c2d10") is None
        assert await store.get("not-a-uuid") is None

    @pytest.mark.asyncio
    async def test_insert_rejects_overlap(self, store):
        await store.insert(make_booking(at(14), 60))

        with pytest.raises(ConflictError):
            await store.insert(make_booking(at(14, 30), 30))

    @pytest.mark.asyncio
    async def test_touching_bookings_allowed(self, store):
        await store.insert(make_booking(at(14), 60))

        await store.insert(make_booking(at(15), 30))
        await store.insert(make_booking(at(13, 30), 30))

        assert len(await store.find_overlapping(at(13), at(16))) == 3

    @pytest.mark.asyncio
    async def test_cancelled_rows_do_not_occupy(self, store):
        await store.insert(make_booking(at(14), 60, status=BookingStatus.CANCELLED))

        await store.insert(make_booking(at(14), 60))

        assert len(await store.find_overlapping(at(14), at(15))) == 1

    @pytest.mark.asyncio
    async def test_insert_rechecks_frequency(self, store):
        await store.insert(make_booking(at(10), email="jane@example.com"))
        await store.insert(make_booking(at(11), email="jane@example.com"))

        with pytest.raises(FrequencyLimitExceeded):
            await store.insert(make_booking(at(12), email="jane@example.com"), rule=rule_for(30))

    @pytest.mark.asyncio
    async def test_update_excludes_itself(self, store):
        booking = await store.insert(make_booking(at(14), 60))

        moved = await store.update(booking.copy(start_time=at(14, 30)))

        assert moved.start_time == at(14, 30)
        assert (await store.get(booking.id)).end_time == at(15, 30)

    @pytest.mark.asyncio
    async def test_update_rejects_overlap(self, store):
        booking = await store.insert(make_booking(at(14)))
        await store.insert(make_booking(at(16)))

        with pytest.raises(ConflictError):
            await store.update(booking.copy(start_time=at(16)))

        assert (await store.get(booking.id)).start_time == at(14)

    @pytest.mark.asyncio
    async def test_status_update_skips_recheck(self, store):
        booking = await store.insert(make_booking(at(14)))

        cancelled = await store.update(
            booking.copy(status=BookingStatus.CANCELLED), recheck_interval=False
        )

        assert cancelled.status == BookingStatus.CANCELLED
        assert await store.find_overlapping(at(14), at(15)) == []

    @pytest.mark.asyncio
    async def test_update_keeps_stored_sync_state(self, store):
        booking = await store.insert(make_booking(at(14)))
        await store.update_sync_state(
            booking.id,
            external_calendar_event_id="evt-1",
            external_crm_contact_id="c-1",
            calendar_synced=True,
        )

        # booking is the copy taken before the sync columns were written
        moved = await store.update(booking.copy(start_time=at(16)))

        assert moved.external_calendar_event_id == "evt-1"
        assert moved.external_crm_contact_id == "c-1"
        assert moved.calendar_synced is False
        assert (await store.get(booking.id)).external_calendar_event_id == "evt-1"

    @pytest.mark.asyncio
    async def test_status_update_keeps_sync_state(self, store):
        booking = await store.insert(make_booking(at(14)))
        await store.update_sync_state(
            booking.id,
            external_calendar_event_id="evt-1",
            calendar_synced=True,
            requires_manual_crm_sync=True,
        )

        cancelled = await store.update(
            booking.copy(status=BookingStatus.CANCELLED), recheck_interval=False
        )

        assert cancelled.external_calendar_event_id == "evt-1"
        assert cancelled.calendar_synced is True
        assert cancelled.requires_manual_crm_sync is True

    @pytest.mark.asyncio
    async def test_update_only_raises_manual_calendar_flag(self, store):
        booking = await store.insert(make_booking(at(14)))
        await store.update_sync_state(booking.id, requires_manual_calendar_sync=True)

        moved = await store.update(booking.copy(start_time=at(16)))
        assert moved.requires_manual_calendar_sync is True

        await store.update_sync_state(booking.id, requires_manual_calendar_sync=False)
        flagged = await store.update(moved.copy(requires_manual_calendar_sync=True, start_time=at(15)))
        assert flagged.requires_manual_calendar_sync is True

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.update(make_booking(at(14)))

    @pytest.mark.asyncio
    async def test_update_sync_state(self, store):
        booking = await store.insert(make_booking(at(14)))

        updated = await store.update_sync_state(
            booking.id,
            external_calendar_event_id="evt-1",
            calendar_synced=True,
        )

        assert updated.external_calendar_event_id == "evt-1"
        assert (await store.get(booking.id)).calendar_synced is True

    @pytest.mark.asyncio
    async def test_update_sync_state_rejects_other_fields(self, store):
        booking = await store.insert(make_booking(at(14)))

        with pytest.raises(ValueError):
            await store.update_sync_state(booking.id, start_time=at(15))

    @pytest.mark.asyncio
    async def test_find_for_email_window(self, store):
        await store.insert(make_booking(at(10), email="jane@example.com"))
        await store.insert(make_booking(at(12), email="jane@example.com"))
        await store.insert(make_booking(at(14), email="jane@example.com"))
        await store.insert(make_booking(at(11), email="john@example.com"))

        found = await store.find_for_email("jane@example.com", window_start=at(10), window_end=at(14))

        assert [b.start_time for b in found] == [at(10), at(12)]

    @pytest.mark.asyncio
    async def test_find_overlapping_exclude(self, store):
        booking = await store.insert(make_booking(at(14)))

        assert await store.find_overlapping(at(14), at(15), exclude_id=booking.id) == []


class TestInMemoryBookingStore:
    """In-memory specifics."""

    @pytest.mark.asyncio
    async def test_duplicate_id(self):
        store = InMemoryBookingStore()
        booking = await store.insert(make_booking(at(14)))

        with pytest.raises(StoreError):
            await store.insert(booking.copy(start_time=at(16)))

    @pytest.mark.asyncio
    async def test_returns_copies(self):
        store = InMemoryBookingStore()
        booking = await store.insert(make_booking(at(14)))

        loaded = await store.get(booking.id)
        loaded.status = BookingStatus.CANCELLED

        assert (await store.get(booking.id)).status == BookingStatus.CONFIRMED
