"""
Dependency Guard

Single entry point for calling an external dependency:

    breaker admission -> retried call (each attempt time-bounded)
                      -> one outcome recorded on the breaker

Only the final result of the retry loop counts toward the breaker, so a
blip absorbed by retry never moves it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from app.core.errors import CircuitOpenError, IntegrationError
from app.core.resilience.breaker import CircuitBreaker
from app.core.resilience.retry import RetryPolicy


logger = logging.getLogger(__name__)

T = TypeVar("T")


class DependencyGuard:
    """Breaker + retry + timeout for one dependency."""

    def __init__(
        self,
        name: str,
        breaker: Optional[CircuitBreaker] = None,
        retry: Optional[RetryPolicy] = None,
        timeout: float = 10.0,
    ):
        self.name = name
        self.breaker = breaker or CircuitBreaker(name)
        self.retry = retry or RetryPolicy()
        self.timeout = timeout

    async def call(self, func: Callable[[], Awaitable[T]], operation: str = "call") -> T:
        """
        Call the dependency.

        Args:
            func: Zero-argument coroutine factory (called once per attempt)
            operation: Label for logs

        Returns:
            Whatever func returns

        Raises:
            CircuitOpenError: Breaker rejected the call
            IntegrationError: Every attempt failed
        """
        if not self.breaker.allow_request():
            logger.info(f"{self.name}.{operation} skipped: circuit open")
            raise CircuitOpenError(self.name)

        async def attempt() -> T:
            return await asyncio.wait_for(func(), timeout=self.timeout)

        try:
            result = await self.retry.run(attempt, name=f"{self.name}.{operation}")
        except asyncio.CancelledError:
            # Outcome unknown; release the half-open trial without counting it
            self.breaker.release()
            raise
        except Exception as e:
            self.breaker.record_failure()
            logger.error(f"{self.name}.{operation} failed: {e!r}")
            raise IntegrationError(self.name, f"{operation} failed: {e!r}") from e

        self.breaker.record_success()
        return result

    @property
    def available(self) -> bool:
        """False while the breaker is rejecting calls."""
        return not self.breaker.is_open

    def stats(self) -> dict:
        return {
            **self.breaker.stats(),
            "retry_attempts": self.retry.attempts,
            "retry_delay": self.retry.delay,
            "timeout": self.timeout,
        }
