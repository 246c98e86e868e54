"""Calendar write locks.

Every mutation of a business day runs while holding the lock for
(business, day). Operations that touch two days (a reschedule across
midnight or to another date) take both keys in sorted order so two writers
can never wait on each other.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Iterable, Optional

import structlog
from redis.exceptions import LockError, RedisError

from agenda.core.config import settings
from agenda.core.errors import TransientError
from agenda.core.redis import RedisClient, redis_client, redis_enabled

logger = structlog.get_logger(__name__)


def calendar_lock_key(business_id: int, day: date) -> str:
    return f"calendar_lock:{business_id}:{day.isoformat()}"


class CalendarLockProvider:
    """Interface: hold the locks for a set of business days."""

    def hold(self, business_id: int, days: Iterable[date]):
        """Async context manager holding every (business, day) key."""
        raise NotImplementedError


class LocalCalendarLockProvider(CalendarLockProvider):
    """asyncio locks, valid for a single process.

    A key's lock lives only while some writer holds or waits for it.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = (
            timeout if timeout is not None else settings.CALENDAR_LOCK_TIMEOUT_SECONDS
        )
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        self._users[key] -= 1
        if not self._users[key]:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, business_id: int, days: Iterable[date]) -> AsyncIterator[None]:
        keys = sorted({calendar_lock_key(business_id, d) for d in days})
        used: list[str] = []
        acquired: list[asyncio.Lock] = []
        try:
            for key in keys:
                lock = self._checkout(key)
                used.append(key)
                try:
                    # Awaited in this task, so a late acquire is never lost
                    async with asyncio.timeout(self.timeout):
                        await lock.acquire()
                except TimeoutError:
                    logger.warning("Calendar lock timeout", key=key)
                    raise TransientError(
                        "Calendar is busy, please retry", details={"lock": key}
                    )
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in used:
                self._checkin(key)


class RedisCalendarLockProvider(CalendarLockProvider):
    """Distributed locks for deployments with several API workers."""

    def __init__(
        self,
        client: RedisClient = None,
        timeout: Optional[float] = None,
        ttl: Optional[int] = None,
    ):
        self.client = client or redis_client
        self.timeout = (
            timeout if timeout is not None else settings.CALENDAR_LOCK_TIMEOUT_SECONDS
        )
        self.ttl = ttl if ttl is not None else settings.CALENDAR_LOCK_TTL_SECONDS

    @asynccontextmanager
    async def hold(self, business_id: int, days: Iterable[date]) -> AsyncIterator[None]:
        keys = sorted({calendar_lock_key(business_id, d) for d in days})
        acquired = []
        try:
            conn = await self.client.get_redis()
            for key in keys:
                lock = conn.lock(key, timeout=self.ttl, blocking_timeout=self.timeout)
                if not await lock.acquire():
                    logger.warning("Calendar lock timeout", key=key)
                    raise TransientError(
                        "Calendar is busy, please retry", details={"lock": key}
                    )
                acquired.append(lock)
        except RedisError as e:
            await self._release(acquired)
            logger.error("Calendar lock unavailable", exc_info=e)
            raise TransientError("Calendar lock service unavailable") from e
        except TransientError:
            await self._release(acquired)
            raise

        try:
            yield
        finally:
            await self._release(acquired)

    async def _release(self, locks) -> None:
        for lock in reversed(locks):
            try:
                await lock.release()
            except (LockError, RedisError) as e:
                # Expired under us; the TTL already freed it
                logger.warning("Calendar lock release failed", error=str(e))


_default_provider: Optional[CalendarLockProvider] = None


def get_lock_provider() -> CalendarLockProvider:
    global _default_provider
    if _default_provider is None:
        if redis_enabled():
            _default_provider = RedisCalendarLockProvider()
        else:
            _default_provider = LocalCalendarLockProvider()
    return _default_provider
