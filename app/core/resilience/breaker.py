"""
Circuit Breaker

One breaker per external dependency. Owned by the integration adapter that
talks to that dependency and injected from there; never global.

States:
    CLOSED     calls pass through; consecutive failures are counted
    OPEN       calls are rejected without reaching the dependency
    HALF_OPEN  after reset_timeout, exactly one trial call is admitted
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerConfig:
    """Breaker thresholds. Times are in seconds."""

    failure_threshold: int = 5
    reset_timeout: float = 60.0
    monitoring_period: float = 120.0


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Failures only trip the breaker when ``failure_threshold`` of them happen
    within ``monitoring_period`` of the first failure in the streak; an older
    streak is restarted instead.

    Usage:
        breaker = CircuitBreaker("calendar")
        if breaker.allow_request():
            try:
                result = await call()
            except Exception:
                breaker.record_failure()
                raise
            breaker.record_success()
    """

    def __init__(
        self,
        name: str,
        config: Optional[BreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or BreakerConfig()
        self._clock = clock

        self.state = BreakerState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self._streak_started: Optional[float] = None
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

        self.total_calls = 0
        self.total_failures = 0
        self.total_rejections = 0

    def _transition(self, new_state: BreakerState) -> None:
        if new_state == self.state:
            return
        old_state = self.state
        self.state = new_state
        if new_state == BreakerState.OPEN:
            logger.warning(
                f"Circuit breaker '{self.name}' {old_state.value} -> open "
                f"after {self.failure_count} failures"
            )
        else:
            logger.info(f"Circuit breaker '{self.name}' {old_state.value} -> {new_state.value}")

    def _trip(self) -> None:
        self._opened_at = self._clock()
        self._trial_in_flight = False
        self._transition(BreakerState.OPEN)

    def allow_request(self) -> bool:
        """
        Decide whether a call may proceed.

        An admitted call must be followed by exactly one record_success()
        or record_failure().
        """
        if self.state == BreakerState.OPEN:
            if self._clock() - self._opened_at >= self.config.reset_timeout:
                self._transition(BreakerState.HALF_OPEN)
            else:
                self.total_rejections += 1
                return False

        if self.state == BreakerState.HALF_OPEN:
            if self._trial_in_flight:
                self.total_rejections += 1
                return False
            self._trial_in_flight = True

        self.total_calls += 1
        return True

    def record_success(self) -> None:
        self.failure_count = 0
        self._streak_started = None
        self._trial_in_flight = False
        if self.state == BreakerState.HALF_OPEN:
            self._transition(BreakerState.CLOSED)

    def record_failure(self) -> None:
        now = self._clock()
        self.total_failures += 1
        self.last_failure_time = now

        if self.state == BreakerState.HALF_OPEN:
            self.failure_count += 1
            self._trip()
            return

        if (
            self._streak_started is None
            or now - self._streak_started > self.config.monitoring_period
        ):
            self._streak_started = now
            self.failure_count = 0

        self.failure_count += 1
        if self.failure_count >= self.config.failure_threshold:
            self._trip()

    def release(self) -> None:
        """Give back an admitted call whose outcome is unknown."""
        self._trial_in_flight = False

    def reset(self) -> None:
        """Force the breaker closed and forget the current streak."""
        self.failure_count = 0
        self._streak_started = None
        self._opened_at = None
        self._trial_in_flight = False
        self._transition(BreakerState.CLOSED)

    @property
    def is_open(self) -> bool:
        return self.state == BreakerState.OPEN

    def stats(self) -> dict:
        """Snapshot for health reporting."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "failure_threshold": self.config.failure_threshold,
            "reset_timeout": self.config.reset_timeout,
            "monitoring_period": self.config.monitoring_period,
        }
