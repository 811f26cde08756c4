"""Time-windowed usage counters for manual refresh quotas.

A window opens on the first counted operation for a subject and lasts
``window`` from then. At exactly ``reset_at`` the old window is over and a
request starts a fresh one. ``allowed`` means one more operation fits
(``count < limit``); bulk callers check ``fits(k)`` instead.

``check`` never mutates. Callers that check and later increment wrap the
sequence in ``hold(subject)`` so two concurrent requests for one subject
cannot both observe spare quota.
"""

from __future__ import annotations

import asyncio
import weakref
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog

from drtrack.config import Settings

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger()


@dataclass(frozen=True)
class UsageWindow:
    """Snapshot of one subject's current window."""

    count: int
    reset_at: datetime
    limit: int

    @property
    def allowed(self) -> bool:
        return self.count < self.limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    def fits(self, amount: int) -> bool:
        """True if ``amount`` more operations stay within the limit."""
        return self.count + amount <= self.limit


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsageCounter(ABC):
    """At most ``limit`` operations per subject per ``window``."""

    def __init__(self, name: str, limit: int, window: timedelta) -> None:
        if limit < 0:
            msg = f"limit must be >= 0, got {limit}"
            raise ValueError(msg)
        if window <= timedelta(0):
            msg = "window must be positive"
            raise ValueError(msg)
        self.name = name
        self.limit = limit
        self.window = window

    def _fresh(self, now: datetime) -> UsageWindow:
        return UsageWindow(count=0, reset_at=now + self.window, limit=self.limit)

    @abstractmethod
    async def check(self, subject: str, now: datetime | None = None) -> UsageWindow:
        """Return the current window without mutating it."""

    @abstractmethod
    async def increment(self, subject: str, amount: int = 1, now: datetime | None = None) -> UsageWindow:
        """Count ``amount`` performed operations and return the updated window."""

    @abstractmethod
    def hold(self, subject: str) -> AbstractAsyncContextManager[object]:
        """Serialize check/increment sequences for one subject."""


class InMemoryUsageCounter(UsageCounter):
    """Per-process counter. Suitable for single-instance deployments and tests."""

    def __init__(self, name: str, limit: int, window: timedelta) -> None:
        super().__init__(name, limit, window)
        self._records: dict[str, tuple[int, datetime]] = {}
        # Entries vanish once no caller holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def check(self, subject: str, now: datetime | None = None) -> UsageWindow:
        now = now or _utcnow()
        record = self._records.get(subject)
        if record is None or now >= record[1]:
            return self._fresh(now)
        count, reset_at = record
        return UsageWindow(count=count, reset_at=reset_at, limit=self.limit)

    async def increment(self, subject: str, amount: int = 1, now: datetime | None = None) -> UsageWindow:
        if amount < 0:
            msg = f"amount must be >= 0, got {amount}"
            raise ValueError(msg)
        now = now or _utcnow()
        record = self._records.get(subject)
        if record is None or now >= record[1]:
            self._prune(now)
            self._records[subject] = (amount, now + self.window)
        else:
            self._records[subject] = (record[0] + amount, record[1])
        count, reset_at = self._records[subject]
        return UsageWindow(count=count, reset_at=reset_at, limit=self.limit)

    def hold(self, subject: str) -> AbstractAsyncContextManager[object]:
        lock = self._locks.get(subject)
        if lock is None:
            lock = self._locks[subject] = asyncio.Lock()
        return lock

    def _prune(self, now: datetime) -> None:
        expired = [subject for subject, (_, reset_at) in self._records.items() if now >= reset_at]
        for subject in expired:
            del self._records[subject]


# Atomic "reset if expired, else add" on a hash {count, reset_at(ms)}.
_INCREMENT_SCRIPT = """
local reset_at = redis.call('HGET', KEYS[1], 'reset_at')
local now_ms = tonumber(ARGV[1])
local amount = tonumber(ARGV[2])
if (not reset_at) or now_ms >= tonumber(reset_at) then
    local new_reset = now_ms + tonumber(ARGV[3])
    redis.call('HSET', KEYS[1], 'count', amount, 'reset_at', new_reset)
    redis.call('PEXPIREAT', KEYS[1], new_reset)
    return {amount, new_reset}
end
local count = redis.call('HINCRBY', KEYS[1], 'count', amount)
return {count, tonumber(reset_at)}
"""


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MS = timedelta(milliseconds=1)


def _to_ms(dt: datetime) -> int:
    return (dt - _EPOCH) // _MS


def _from_ms(ms: int) -> datetime:
    return _EPOCH + ms * _MS


class RedisUsageCounter(UsageCounter):
    """Counter shared across instances through Redis."""

    LOCK_TIMEOUT_SECONDS = 120
    LOCK_WAIT_SECONDS = 10

    def __init__(self, redis: Redis, name: str, limit: int, window: timedelta) -> None:
        super().__init__(name, limit, window)
        self._redis = redis
        self._increment = redis.register_script(_INCREMENT_SCRIPT)

    def _key(self, subject: str) -> str:
        return f"usage:{self.name}:{subject}"

    async def check(self, subject: str, now: datetime | None = None) -> UsageWindow:
        now = now or _utcnow()
        data: dict[str, str] = await self._redis.hgetall(self._key(subject))  # type: ignore[misc]
        if not data or "reset_at" not in data:
            return self._fresh(now)
        reset_at_ms = int(data["reset_at"])
        if _to_ms(now) >= reset_at_ms:
            return self._fresh(now)
        return UsageWindow(count=int(data.get("count", 0)), reset_at=_from_ms(reset_at_ms), limit=self.limit)

    async def increment(self, subject: str, amount: int = 1, now: datetime | None = None) -> UsageWindow:
        if amount < 0:
            msg = f"amount must be >= 0, got {amount}"
            raise ValueError(msg)
        now = now or _utcnow()
        window_ms = int(self.window.total_seconds() * 1000)
        count, reset_at_ms = await self._increment(
            keys=[self._key(subject)],
            args=[_to_ms(now), amount, window_ms],
        )
        return UsageWindow(count=int(count), reset_at=_from_ms(int(reset_at_ms)), limit=self.limit)

    def hold(self, subject: str) -> AbstractAsyncContextManager[object]:
        return self._redis.lock(
            f"usage_lock:{self.name}:{subject}",
            timeout=self.LOCK_TIMEOUT_SECONDS,
            blocking_timeout=self.LOCK_WAIT_SECONDS,
        )


def create_usage_counters(settings: Settings, redis: Redis | None = None) -> tuple[UsageCounter, UsageCounter]:
    """Build the (single refresh, bulk refresh) counter pair from settings."""
    single_window = timedelta(seconds=settings.single_refresh_window_seconds)
    bulk_window = timedelta(seconds=settings.bulk_refresh_window_seconds)
    single_limit: int = settings.single_refresh_limit
    bulk_limit: int = settings.bulk_refresh_limit

    if settings.usage_backend == "redis":
        if redis is None:
            msg = "Redis usage backend requires a Redis client"
            raise RuntimeError(msg)
        return (
            RedisUsageCounter(redis, "refresh", single_limit, single_window),
            RedisUsageCounter(redis, "bulk_refresh", bulk_limit, bulk_window),
        )

    logger.debug("usage_counters_in_memory")
    return (
        InMemoryUsageCounter("refresh", single_limit, single_window),
        InMemoryUsageCounter("bulk_refresh", bulk_limit, bulk_window),
    )
