"""
Session storage for the conversation layer.

Key pattern: booking-assistant:v1:session:{session_id}

Sessions expire after ``session_ttl_seconds`` of inactivity. Every message
for a session is handled under that session's lock so turns never
interleave.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import LockError, RedisError

from app.config import settings
from app.core.errors import SessionBusyError
from app.infra.redis import APP_PREFIX, get_redis
from .models import SessionData

logger = logging.getLogger(__name__)

SESSION_PREFIX = f"{APP_PREFIX}session:"


class SessionStore(ABC):
    """Pluggable session storage with expiry and per-session locking."""

    def __init__(self, ttl_seconds: int, lock_timeout: float):
        self.ttl_seconds = ttl_seconds
        self.lock_timeout = lock_timeout

    @abstractmethod
    async def get(self, session_id: str) -> Optional[SessionData]:
        """Get a live session, or None if missing or expired."""

    @abstractmethod
    async def set(self, session: SessionData) -> None:
        """Store a session and restart its TTL."""

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Delete a session. Returns True if it existed."""

    @abstractmethod
    async def expire(self, session_id: str, ttl_seconds: Optional[int] = None) -> bool:
        """Reset a session's TTL without rewriting it."""

    @abstractmethod
    def lock(self, session_id: str):
        """
        Async context manager giving exclusive access to one session.

        Raises:
            SessionBusyError: Lock not acquired within lock_timeout
        """


class InMemorySessionStore(SessionStore):
    """
    Process-local store.

    Sessions are kept serialized so callers never share mutable state.
    Expired entries are dropped on read and by purge_expired().
    """

    def __init__(
        self,
        ttl_seconds: int = 1800,
        lock_timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(ttl_seconds, lock_timeout)
        self._clock = clock
        self._sessions: dict[str, tuple[str, float]] = {}
        # A lock lives only while some turn holds or waits on it
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def get(self, session_id: str) -> Optional[SessionData]:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        data, expires_at = entry
        if self._clock() >= expires_at:
            del self._sessions[session_id]
            logger.debug(f"Session expired: {session_id}")
            return None
        return SessionData.from_json(data)

    async def set(self, session: SessionData) -> None:
        self._sessions[session.session_id] = (
            session.to_json(),
            self._clock() + self.ttl_seconds,
        )

    async def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def expire(self, session_id: str, ttl_seconds: Optional[int] = None) -> bool:
        entry = self._sessions.get(session_id)
        if entry is None:
            return False
        self._sessions[session_id] = (entry[0], self._clock() + (ttl_seconds or self.ttl_seconds))
        return True

    def purge_expired(self) -> int:
        """Drop expired sessions. Returns how many were removed."""
        now = self._clock()
        expired = [sid for sid, (_, expires_at) in self._sessions.items() if now >= expires_at]
        for session_id in expired:
            del self._sessions[session_id]
        return len(expired)

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Session {session_id} busy, lock wait timed out")
                raise SessionBusyError(session_id) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._locks[session_id]


class RedisSessionStore(SessionStore):
    """
    Redis-backed store, shared by every worker process.

    Locks are redis-py distributed locks with their own expiry, so a crashed
    worker cannot hold a session forever.
    """

    def __init__(
        self,
        redis_client: Redis,
        ttl_seconds: int = 1800,
        lock_timeout: float = 10.0,
        lock_expiry: float = 60.0,
    ):
        super().__init__(ttl_seconds, lock_timeout)
        self.redis = redis_client
        self.lock_expiry = lock_expiry

    def _key(self, session_id: str) -> str:
        """Generate session key with namespace."""
        return f"{SESSION_PREFIX}{session_id}"

    async def get(self, session_id: str) -> Optional[SessionData]:
        try:
            data = await self.redis.get(self._key(session_id))
        except RedisError as e:
            logger.error(f"Failed to get session {session_id}: {e}")
            return None
        return SessionData.from_json(data) if data else None

    async def set(self, session: SessionData) -> None:
        try:
            await self.redis.setex(self._key(session.session_id), self.ttl_seconds, session.to_json())
            logger.debug(f"Session saved: {session.session_id}")
        except RedisError as e:
            logger.error(f"Failed to save session {session.session_id}: {e}")

    async def delete(self, session_id: str) -> bool:
        try:
            deleted = await self.redis.delete(self._key(session_id))
        except RedisError as e:
            logger.error(f"Failed to delete session {session_id}: {e}")
            return False
        if deleted:
            logger.debug(f"Session deleted: {session_id}")
        return bool(deleted)

    async def expire(self, session_id: str, ttl_seconds: Optional[int] = None) -> bool:
        try:
            return bool(await self.redis.expire(self._key(session_id), ttl_seconds or self.ttl_seconds))
        except RedisError as e:
            logger.error(f"Failed to refresh TTL for session {session_id}: {e}")
            return False

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            f"{self._key(session_id)}:lock",
            timeout=self.lock_expiry,
            blocking_timeout=self.lock_timeout,
        )
        if not await lock.acquire():
            logger.warning(f"Session {session_id} busy, lock wait timed out")
            raise SessionBusyError(session_id)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning(f"Session lock for {session_id} expired before release")


# Singleton
_store: Optional[SessionStore] = None


async def get_session_store() -> SessionStore:
    """
    Get the session store.

    Uses Redis when reachable at first use, otherwise process memory.
    """
    global _store
    if _store is None:
        client = await get_redis()
        if client is not None:
            _store = RedisSessionStore(
                client,
                ttl_seconds=settings.session_ttl_seconds,
                lock_timeout=settings.session_lock_timeout_seconds,
            )
        else:
            logger.warning("Redis unavailable, using in-memory session store")
            _store = InMemorySessionStore(
                ttl_seconds=settings.session_ttl_seconds,
                lock_timeout=settings.session_lock_timeout_seconds,
            )
    return _store


def reset_session_store() -> None:
    """Forget the chosen store (tests, shutdown)."""
    global _store
    _store = None
