"""
Redis Connection Management

Shared Redis connection for conversation sessions and per-session locks.

Redis is optional: when it cannot be reached callers get None and keep
sessions in process memory. After a failed connect the next attempt waits
``redis_reconnect_interval_seconds``, so an outage does not add a connect
timeout to every chat message.
"""

import logging
import time
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError

from app.config import settings

logger = logging.getLogger(__name__)

# Namespace for every key this service writes
APP_PREFIX = "booking-assistant:v1:"


class RedisClient:
    """Process-wide Redis connection with reconnect throttling."""

    _client: Optional[Redis] = None
    _last_failure: Optional[float] = None

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create Redis client.

        Returns:
            Connected client, or None while Redis is unreachable
        """
        if cls._client is not None:
            return cls._client

        if cls._last_failure is not None:
            elapsed = time.monotonic() - cls._last_failure
            if elapsed < settings.redis_reconnect_interval_seconds:
                return None

        client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=settings.redis_socket_timeout_seconds,
            socket_timeout=settings.redis_socket_timeout_seconds,
            retry_on_timeout=True,
            retry=Retry(ExponentialBackoff(), retries=2),
        )
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis at {settings.redis_url}: {e}")
            cls._last_failure = time.monotonic()
            await client.aclose()
            return None

        cls._client = client
        cls._last_failure = None
        logger.info("Redis connection established")
        return client

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is not None:
            try:
                await cls._client.aclose()
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                cls._client = None
        cls._last_failure = None

    @classmethod
    def is_connected(cls) -> bool:
        return cls._client is not None


async def get_redis() -> Optional[Redis]:
    """Shared Redis client, or None if Redis is unavailable."""
    return await RedisClient.get_client()


async def check_redis_health() -> bool:
    """
    Ping Redis for the readiness probe.

    A False result degrades sessions to process memory; it never makes the
    service unready.
    """
    client = await get_redis()
    if client is None:
        return False
    try:
        await client.ping()
        return True
    except (RedisError, OSError) as e:
        logger.error(f"Redis health check failed: {e}")
        return False
