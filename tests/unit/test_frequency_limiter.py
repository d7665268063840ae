"""Tests for the duration-scaled frequency limiter."""

import pytest

from app.core.booking.frequency import DURATION_RULES, FrequencyLimiter, rule_for
from app.core.booking.store import InMemoryBookingStore
from app.core.booking.types import BookingStatus
from app.core.errors import FrequencyLimitExceeded, ValidationError
from tests.factories import at, make_booking

EMAIL = "jane@example.com"


class TestRules:
    """Test the duration -> rule table."""

    @pytest.mark.parametrize("duration,limit,window", [
        (15, 2, 90),
        (30, 2, 180),
        (45, 2, 300),
        (60, 2, 720),
    ])
    def test_rule_table(self, duration, limit, window):
        rule = rule_for(duration)

        assert rule.max_bookings == limit
        assert rule.window_minutes == window

    def test_every_rule_has_a_duration(self):
        assert sorted(DURATION_RULES) == [15, 30, 45, 60]

    def test_unknown_duration(self):
        with pytest.raises(ValidationError):
            rule_for(20)


class TestFrequencyLimiter:
    """Test rolling-window counting."""

    @pytest.fixture
    def store(self):
        return InMemoryBookingStore()

    @pytest.fixture
    def limiter(self, store):
        return FrequencyLimiter(store)

    @pytest.mark.asyncio
    async def test_empty_history_allowed(self, limiter):
        check = await limiter.check(EMAIL, at(14), 30)

        assert check
        assert check.count == 0

    @pytest.mark.asyncio
    async def test_two_short_bookings_block_a_third(self, store, limiter):
        await store.insert(make_booking(at(10), 30, email=EMAIL))
        await store.insert(make_booking(at(11), 30, email=EMAIL))

        check = await limiter.check(EMAIL, at(12), 30)

        assert not check
        assert check.count == 2
        with pytest.raises(FrequencyLimitExceeded) as exc_info:
            await limiter.check_limit(EMAIL, at(12), 30)
        assert exc_info.value.limit == 2
        assert exc_info.value.window_minutes == 180
        assert exc_info.value.duration_minutes == 30

    @pytest.mark.asyncio
    async def test_bookings_before_window_do_not_count(self, store, limiter):
        await store.insert(make_booking(at(10), 30, email=EMAIL))
        await store.insert(make_booking(at(11), 30, email=EMAIL))

        # Window for 13:30 is [10:30, 13:30): only the 11:00 booking
        rule = await limiter.check_limit(EMAIL, at(13, 30), 30)

        assert rule == DURATION_RULES[30]

    @pytest.mark.asyncio
    async def test_window_start_is_inclusive(self, store, limiter):
        await store.insert(make_booking(at(9), 30, email=EMAIL))
        await store.insert(make_booking(at(10), 30, email=EMAIL))

        check = await limiter.check(EMAIL, at(12), 30)

        assert not check

    @pytest.mark.asyncio
    async def test_requested_start_is_exclusive(self, store, limiter):
        await store.insert(make_booking(at(11), 30, email=EMAIL))
        await store.insert(make_booking(at(12), 30, email=EMAIL))

        check = await limiter.check(EMAIL, at(12), 30)

        assert check.count == 1

    @pytest.mark.asyncio
    async def test_long_meetings_use_long_window(self, store, limiter):
        await store.insert(make_booking(at(10), 60, email=EMAIL))
        await store.insert(make_booking(at(11), 60, email=EMAIL))

        # 60-minute requests look back twelve hours
        assert not await limiter.check(EMAIL, at(16), 60)
        assert await limiter.check(EMAIL, at(12, day=10), 60)

    @pytest.mark.asyncio
    async def test_all_durations_count(self, store, limiter):
        await store.insert(make_booking(at(10), 15, email=EMAIL))
        await store.insert(make_booking(at(11), 60, email=EMAIL))

        assert not await limiter.check(EMAIL, at(12), 30)

    @pytest.mark.asyncio
    async def test_cancelled_bookings_do_not_count(self, store, limiter):
        await store.insert(make_booking(at(10), 30, email=EMAIL, status=BookingStatus.CANCELLED))
        await store.insert(make_booking(at(11), 30, email=EMAIL))

        assert await limiter.check(EMAIL, at(12), 30)

    @pytest.mark.asyncio
    async def test_other_requesters_do_not_count(self, store, limiter):
        await store.insert(make_booking(at(10), 30, email="other@example.com"))
        await store.insert(make_booking(at(11), 30, email="other@example.com"))

        assert await limiter.check(EMAIL, at(12), 30)

    @pytest.mark.asyncio
    async def test_excluded_booking(self, store, limiter):
        await store.insert(make_booking(at(10), 30, email=EMAIL))
        moving = await store.insert(make_booking(at(11), 30, email=EMAIL))

        check = await limiter.check(EMAIL, at(12), 30, exclude_booking_id=moving.id)

        assert check
        assert check.count == 1
