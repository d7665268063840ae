"""Bounded retry with a fixed delay."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

import httpx


logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429})


def is_retryable(error: BaseException) -> bool:
    """
    Transient errors are worth another attempt; client errors are not.

    HTTP 4xx responses are final except 408 (timeout) and 429 (throttled).
    """
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status >= 500 or status in RETRYABLE_STATUS_CODES
    return isinstance(error, (httpx.TransportError, asyncio.TimeoutError, ConnectionError, OSError))


@dataclass
class RetryPolicy:
    """
    Fixed attempt count, fixed delay between attempts.

    Attributes:
        attempts: Total tries including the first
        delay: Seconds slept between tries
        retryable: Predicate deciding whether an error is worth retrying
    """

    attempts: int = 3
    delay: float = 1.0
    retryable: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    async def run(
        self,
        func: Callable[[], Awaitable[T]],
        name: str = "call",
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        """
        Run ``func`` until it succeeds, fails with a non-retryable error, or
        attempts run out. The last error is re-raised.
        """
        attempt = 1
        while True:
            try:
                return await func()
            except Exception as e:
                if attempt >= self.attempts or not self.retryable(e):
                    raise
                logger.warning(
                    f"{name} failed (attempt {attempt}/{self.attempts}): {e!r}; "
                    f"retrying in {self.delay}s"
                )
                if on_retry is not None:
                    on_retry(attempt, e)
                attempt += 1
                await self.sleep(self.delay)
