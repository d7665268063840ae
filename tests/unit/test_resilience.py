"""Tests for circuit breaker, retry policy and dependency guard."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from app.core.errors import CircuitOpenError, IntegrationError
from app.core.resilience.breaker import BreakerConfig, BreakerState, CircuitBreaker
from app.core.resilience.guard import DependencyGuard
from app.core.resilience.retry import RetryPolicy, is_retryable


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "http://calendar.test/events")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


class TestCircuitBreaker:
    """Test CircuitBreaker state machine."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        config = BreakerConfig(failure_threshold=3, reset_timeout=60.0, monitoring_period=120.0)
        return CircuitBreaker("calendar", config, clock=clock)

    def _fail(self, breaker, times):
        for _ in range(times):
            assert breaker.allow_request()
            breaker.record_failure()

    def test_starts_closed(self, breaker):
        assert breaker.state == BreakerState.CLOSED
        assert breaker.allow_request()

    def test_opens_after_threshold(self, breaker):
        self._fail(breaker, 3)

        assert breaker.state == BreakerState.OPEN
        assert breaker.is_open
        assert breaker.allow_request() is False
        assert breaker.total_rejections == 1

    def test_below_threshold_stays_closed(self, breaker):
        self._fail(breaker, 2)

        assert breaker.state == BreakerState.CLOSED
        assert breaker.failure_count == 2

    def test_success_resets_streak(self, breaker):
        self._fail(breaker, 2)
        breaker.allow_request()
        breaker.record_success()
        self._fail(breaker, 2)

        assert breaker.state == BreakerState.CLOSED

    def test_old_streak_restarts(self, breaker, clock):
        """Failures spread over more than the monitoring period don't trip."""
        self._fail(breaker, 2)
        clock.now = 200.0
        self._fail(breaker, 1)

        assert breaker.state == BreakerState.CLOSED
        assert breaker.failure_count == 1

    def test_half_open_admits_single_trial(self, breaker, clock):
        self._fail(breaker, 3)
        clock.now = 61.0

        assert breaker.allow_request() is True
        assert breaker.state == BreakerState.HALF_OPEN
        assert breaker.allow_request() is False

    def test_half_open_success_closes(self, breaker, clock):
        self._fail(breaker, 3)
        clock.now = 61.0
        breaker.allow_request()
        breaker.record_success()

        assert breaker.state == BreakerState.CLOSED
        assert breaker.failure_count == 0

    def test_half_open_failure_reopens(self, breaker, clock):
        self._fail(breaker, 3)
        clock.now = 61.0
        breaker.allow_request()
        breaker.record_failure()

        assert breaker.state == BreakerState.OPEN
        clock.now = 100.0
        assert breaker.allow_request() is False

    def test_release_frees_trial(self, breaker, clock):
        self._fail(breaker, 3)
        clock.now = 61.0
        breaker.allow_request()
        breaker.release()

        assert breaker.allow_request() is True

    def test_reset(self, breaker):
        self._fail(breaker, 3)
        breaker.reset()

        assert breaker.state == BreakerState.CLOSED
        assert breaker.allow_request()

    def test_stats(self, breaker):
        self._fail(breaker, 3)
        breaker.allow_request()

        stats = breaker.stats()

        assert stats["name"] == "calendar"
        assert stats["state"] == "open"
        assert stats["total_calls"] == 3
        assert stats["total_failures"] == 3
        assert stats["total_rejections"] == 1
        assert stats["failure_threshold"] == 3


class TestRetryPolicy:
    """Test bounded fixed-delay retry."""

    @pytest.fixture
    def sleep(self):
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self, sleep):
        policy = RetryPolicy(attempts=3, delay=0.5, sleep=sleep)
        func = AsyncMock(side_effect=[httpx.ConnectError("down"), httpx.ConnectError("down"), "ok"])

        result = await policy.run(func, name="calendar.get")

        assert result == "ok"
        assert func.await_count == 3
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.5)

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, sleep):
        policy = RetryPolicy(attempts=3, delay=0.5, sleep=sleep)
        func = AsyncMock(side_effect=_status_error(400))

        with pytest.raises(httpx.HTTPStatusError):
            await policy.run(func)

        assert func.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self, sleep):
        policy = RetryPolicy(attempts=2, delay=0, sleep=sleep)
        func = AsyncMock(side_effect=_status_error(503))

        with pytest.raises(httpx.HTTPStatusError):
            await policy.run(func)

        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_on_retry_callback(self, sleep):
        seen = []
        policy = RetryPolicy(attempts=2, delay=0, sleep=sleep)
        func = AsyncMock(side_effect=[asyncio.TimeoutError(), "ok"])

        await policy.run(func, on_retry=lambda attempt, error: seen.append(attempt))

        assert seen == [1]

    @pytest.mark.parametrize("code,expected", [
        (500, True),
        (503, True),
        (408, True),
        (429, True),
        (400, False),
        (404, False),
        (422, False),
    ])
    def test_is_retryable_status(self, code, expected):
        assert is_retryable(_status_error(code)) is expected

    def test_is_retryable_other_errors(self):
        assert is_retryable(httpx.ReadTimeout("slow"))
        assert is_retryable(ConnectionError())
        assert not is_retryable(ValueError("bad"))


class TestDependencyGuard:
    """Test breaker + retry + timeout composition."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def guard(self, clock):
        breaker = CircuitBreaker(
            "crm",
            BreakerConfig(failure_threshold=2, reset_timeout=30.0),
            clock=clock,
        )
        retry = RetryPolicy(attempts=3, delay=0, sleep=AsyncMock())
        return DependencyGuard("crm", breaker=breaker, retry=retry, timeout=1.0)

    @pytest.mark.asyncio
    async def test_success(self, guard):
        func = AsyncMock(return_value="contact-1")

        result = await guard.call(func, "upsert_contact")

        assert result == "contact-1"
        assert guard.breaker.total_calls == 1
        assert guard.available

    @pytest.mark.asyncio
    async def test_retry_absorbs_blip(self, guard):
        """A failure retried into success never reaches the breaker."""
        func = AsyncMock(side_effect=[httpx.ConnectError("blip"), "ok"])

        assert await guard.call(func) == "ok"
        assert guard.breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_exhausted_retries_count_once(self, guard):
        func = AsyncMock(side_effect=httpx.ConnectError("down"))

        with pytest.raises(IntegrationError) as exc_info:
            await guard.call(func, "upsert_contact")

        assert exc_info.value.dependency == "crm"
        assert func.await_count == 3
        assert guard.breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_open_breaker_rejects_without_calling(self, guard):
        failing = AsyncMock(side_effect=httpx.ConnectError("down"))
        for _ in range(2):
            with pytest.raises(IntegrationError):
                await guard.call(failing)

        func = AsyncMock(return_value="ok")
        with pytest.raises(CircuitOpenError):
            await guard.call(func)

        func.assert_not_awaited()
        assert not guard.available

    @pytest.mark.asyncio
    async def test_recovers_after_reset_timeout(self, guard, clock):
        failing = AsyncMock(side_effect=httpx.ConnectError("down"))
        for _ in range(2):
            with pytest.raises(IntegrationError):
                await guard.call(failing)

        clock.now = 31.0
        assert await guard.call(AsyncMock(return_value="ok")) == "ok"
        assert guard.breaker.state == BreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_timeout_is_a_failure(self, clock):
        async def slow():
            await asyncio.sleep(1)

        guard = DependencyGuard(
            "calendar",
            breaker=CircuitBreaker("calendar", clock=clock),
            retry=RetryPolicy(attempts=1, delay=0),
            timeout=0.01,
        )

        with pytest.raises(IntegrationError):
            await guard.call(slow, "get_busy_intervals")

        assert guard.breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_cancellation_releases_trial(self, guard, clock):
        failing = AsyncMock(side_effect=httpx.ConnectError("down"))
        for _ in range(2):
            with pytest.raises(IntegrationError):
                await guard.call(failing)
        clock.now = 31.0

        with pytest.raises(asyncio.CancelledError):
            await guard.call(AsyncMock(side_effect=asyncio.CancelledError()))

        assert guard.breaker.state == BreakerState.HALF_OPEN
        assert guard.breaker.allow_request() is True

    def test_stats_include_retry_settings(self, guard):
        stats = guard.stats()

        assert stats["state"] == "closed"
        assert stats["retry_attempts"] == 3
        assert stats["timeout"] == 1.0
