"""Tests for the availability engine and conflict resolver."""

from dataclasses import replace
from datetime import date, datetime, time, timezone

import pytest

from app.core.booking.availability import (
    AvailabilityEngine,
    BusyIntervalSource,
    SlotSequence,
    generate_slots,
)
from app.core.booking.conflicts import ConflictResolver
from app.core.booking.store import InMemoryBookingStore
from app.core.booking.types import BookingStatus, BusinessHours, Interval
from tests.factories import HOURS, NOW, FakeCalendar, at, fixed_clock, make_booking


# A Sunday well before the week under test, so advance limits don't bite
EARLY = datetime(2024, 12, 1, 0, 0, tzinfo=timezone.utc)
OPEN_HOURS = BusinessHours(min_advance_hours=0, max_advance_hours=24 * 60)


def _starts(slots):
    return [s.start_time.astimezone(timezone.utc).time() for s in slots]


def _day(day: int = 9):
    return at(0, day=day), at(0, day=day + 1)


class TestGenerateSlots:
    """Test the slot generator."""

    def test_full_day_of_hour_slots(self):
        slots = list(generate_slots(*_day(), 60, OPEN_HOURS, [], EARLY))

        assert len(slots) == 8
        assert slots[0].start_time == at(9)
        assert slots[-1].end_time == at(17)
        assert all(s.duration_minutes == 60 for s in slots)

    def test_weekend_is_closed(self):
        # 14 December 2024 is a Saturday
        assert list(generate_slots(*_day(14), 30, OPEN_HOURS, [], EARLY)) == []

    def test_slot_never_runs_past_closing(self):
        slots = list(generate_slots(*_day(), 45, OPEN_HOURS, [], EARLY))

        assert len(slots) == 10
        assert slots[-1].start_time == at(15, 45)
        assert all(s.end_time <= at(17) for s in slots)

    def test_busy_interval_removes_overlapping_slots(self):
        busy = [Interval(at(10), at(11))]

        slots = list(generate_slots(*_day(), 30, OPEN_HOURS, busy, EARLY))

        assert len(slots) == 14
        assert time(10, 0) not in _starts(slots)
        assert time(10, 30) not in _starts(slots)
        assert time(11, 0) in _starts(slots)

    def test_adjacent_busy_interval_does_not_block(self):
        busy = [Interval(at(9, 30), at(10))]

        starts = _starts(generate_slots(*_day(), 30, OPEN_HOURS, busy, EARLY))

        assert time(9, 0) in starts
        assert time(10, 0) in starts

    def test_buffer_spaces_candidates_and_pads_busy_time(self):
        hours = replace(OPEN_HOURS, buffer_minutes=15)
        busy = [Interval(at(11, 50), at(12))]

        starts = _starts(generate_slots(*_day(), 30, hours, busy, EARLY))

        # Candidates every 45 minutes: 9:00, 9:45, 10:30, 11:15, 12:00, ...
        assert starts[:3] == [time(9, 0), time(9, 45), time(10, 30)]
        # 11:15-11:45 plus buffer reaches into 11:50-12:00
        assert time(11, 15) not in starts

    def test_min_advance(self):
        hours = replace(OPEN_HOURS, min_advance_hours=1)

        slots = list(generate_slots(*_day(), 60, hours, [], NOW))

        assert slots[0].start_time == at(10)

    def test_max_advance(self):
        hours = replace(OPEN_HOURS, max_advance_hours=24)

        slots = list(generate_slots(at(0, day=10), at(0, day=11), 60, hours, [], NOW))

        assert [s.start_time for s in slots] == [at(9, day=10)]

    def test_range_bounds(self):
        slots = list(generate_slots(at(12), at(14), 30, OPEN_HOURS, [], EARLY))

        assert _starts(slots) == [time(12, 0), time(12, 30), time(13, 0), time(13, 30)]

    def test_reference_timezone(self):
        hours = replace(OPEN_HOURS, timezone="America/New_York")

        slots = list(generate_slots(at(0), at(0, day=10), 60, hours, [], EARLY))

        # 09:00 EST is 14:00 UTC
        assert slots[0].start_time == at(14)
        assert slots[-1].end_time <= at(0, day=10)

    def test_returned_times_are_aware(self):
        slot = next(generate_slots(*_day(), 30, OPEN_HOURS, [], EARLY))

        assert slot.start_time.tzinfo is not None
        assert slot.to_dict()["start_time"] == "2024-12-09T09:00:00+00:00"


class TestSlotSequence:
    """Test lazy restartable slot sequences."""

    def test_restartable(self):
        sequence = SlotSequence(*_day(), 60, OPEN_HOURS, [], EARLY)

        assert list(sequence) == list(sequence)

    def test_first(self):
        sequence = SlotSequence(*_day(), 60, OPEN_HOURS, [], EARLY)

        assert [s.start_time for s in sequence.first(2)] == [at(9), at(10)]
        assert sequence.first(0) == []


class TestAvailabilityEngine:
    """Test AvailabilityEngine against store and calendar busy time."""

    @pytest.fixture
    def store(self):
        return InMemoryBookingStore()

    def _engine(self, store, calendar=None):
        return AvailabilityEngine(BusyIntervalSource(store, calendar), HOURS, clock=fixed_clock)

    @pytest.mark.asyncio
    async def test_booked_slots_excluded(self, store):
        await store.insert(make_booking(at(14), 60))

        sequence = await self._engine(store).slots(*_day(), 60)

        assert [s.start_time for s in sequence] == [at(10), at(11), at(12), at(13), at(15), at(16)]

    @pytest.mark.asyncio
    async def test_cancelled_booking_frees_slot(self, store):
        await store.insert(make_booking(at(14), 60, status=BookingStatus.CANCELLED))

        sequence = await self._engine(store).slots(*_day(), 60)

        assert at(14) in [s.start_time for s in sequence]

    @pytest.mark.asyncio
    async def test_calendar_busy_time_excluded(self, store):
        calendar = FakeCalendar(busy=[Interval(at(11), at(12), event_id="evt-9")])

        sequence = await self._engine(store, calendar).slots(*_day(), 60)

        assert at(11) not in [s.start_time for s in sequence]
        assert sequence.calendar_checked

    @pytest.mark.asyncio
    async def test_calendar_outage_falls_back_to_store(self, store):
        await store.insert(make_booking(at(14), 60))

        sequence = await self._engine(store, FakeCalendar(fail=True)).slots(*_day(), 60)

        assert not sequence.calendar_checked
        assert at(14) not in [s.start_time for s in sequence]
        assert at(15) in [s.start_time for s in sequence]

    @pytest.mark.asyncio
    async def test_slots_for_day(self, store):
        sequence = await self._engine(store).slots_for_day(date(2024, 12, 10), 30)

        assert len(list(sequence)) == 16

    @pytest.mark.asyncio
    async def test_alternatives_are_nearest_in_time(self, store):
        await store.insert(make_booking(at(14), 60))

        alternatives = await self._engine(store).alternatives(at(14), 60, count=3)

        assert [s.start_time for s in alternatives] == [at(12), at(13), at(15)]

    @pytest.mark.asyncio
    async def test_alternatives_ignore_excluded_booking(self, store):
        booking = await store.insert(make_booking(at(14), 60))

        alternatives = await self._engine(store).alternatives(
            at(14), 60, count=1, exclude_booking_id=booking.id
        )

        assert [s.start_time for s in alternatives] == [at(14)]


class TestConflictResolver:
    """Test write-time overlap checks."""

    @pytest.fixture
    def store(self):
        return InMemoryBookingStore()

    @pytest.mark.asyncio
    async def test_free_interval(self, store):
        resolver = ConflictResolver(BusyIntervalSource(store))

        check = await resolver.check(at(14), 30)

        assert check
        assert check.available
        assert check.conflicts == ()

    @pytest.mark.asyncio
    async def test_overlap_is_conflict(self, store):
        booking = await store.insert(make_booking(at(14), 60))
        resolver = ConflictResolver(BusyIntervalSource(store))

        check = await resolver.check(at(14, 30), 30)

        assert not check
        assert check.conflicts[0].booking_id == booking.id

    @pytest.mark.asyncio
    async def test_touching_intervals_do_not_conflict(self, store):
        await store.insert(make_booking(at(14), 60))
        resolver = ConflictResolver(BusyIntervalSource(store))

        assert await resolver.is_available(at(15), 30)
        assert await resolver.is_available(at(13, 30), 30)

    @pytest.mark.asyncio
    async def test_excluded_booking_is_ignored(self, store):
        booking = await store.insert(make_booking(at(14), 60))
        resolver = ConflictResolver(BusyIntervalSource(store))

        assert await resolver.is_available(at(14, 30), 60, exclude_booking_id=booking.id)

    @pytest.mark.asyncio
    async def test_calendar_event_conflicts(self, store):
        calendar = FakeCalendar(busy=[Interval(at(10), at(10, 30), event_id="evt-1")])
        resolver = ConflictResolver(BusyIntervalSource(store, calendar))

        check = await resolver.check(at(10), 30)

        assert not check
        assert check.calendar_checked

    @pytest.mark.asyncio
    async def test_moved_booking_event_is_ignored(self, store):
        calendar = FakeCalendar(busy=[Interval(at(10), at(10, 30), event_id="evt-1")])
        resolver = ConflictResolver(BusyIntervalSource(store, calendar))

        check = await resolver.check(at(10), 30, exclude_event_id="evt-1")

        assert check

    @pytest.mark.asyncio
    async def test_calendar_down_checks_store_only(self, store):
        resolver = ConflictResolver(BusyIntervalSource(store, FakeCalendar(fail=True)))

        check = await resolver.check(at(10), 30)

        assert check.available
        assert check.calendar_checked is False
