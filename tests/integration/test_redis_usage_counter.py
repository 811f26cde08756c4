"""Redis-backed usage counter against a live Redis (skipped when none is reachable)."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from drtrack.config import get_settings
from drtrack.usage.counter import RedisUsageCounter


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[aioredis.Redis, None]:
    client = aioredis.from_url(get_settings().redis_url, decode_responses=True)
    try:
        await client.ping()
    except (RedisConnectionError, OSError):
        await client.aclose()
        pytest.skip("Redis not reachable")
    yield client
    await client.aclose()


@pytest.fixture
def subject() -> str:
    return f"test-{uuid.uuid4().hex}"


async def test_window_counts_and_expires(redis_client: aioredis.Redis, subject: str) -> None:
    counter = RedisUsageCounter(redis_client, "refresh", 2, timedelta(hours=1))
    now = datetime.now(timezone.utc)

    first = await counter.increment(subject, 1, now=now)
    second = await counter.increment(subject, 1, now=now + timedelta(minutes=5))
    assert second.count == 2
    assert second.reset_at == first.reset_at
    assert (await counter.check(subject, now=now + timedelta(minutes=10))).allowed is False

    # At exactly reset_at the old window is over.
    expired = await counter.check(subject, now=first.reset_at)
    assert expired.count == 0
    assert expired.allowed is True

    await redis_client.delete(f"usage:refresh:{subject}")


async def test_check_does_not_mutate(redis_client: aioredis.Redis, subject: str) -> None:
    counter = RedisUsageCounter(redis_client, "bulk_refresh", 50, timedelta(minutes=30))
    await counter.check(subject)
    assert await redis_client.exists(f"usage:bulk_refresh:{subject}") == 0


async def test_hold_serializes_check_then_increment(redis_client: aioredis.Redis, subject: str) -> None:
    counter = RedisUsageCounter(redis_client, "refresh", 1, timedelta(hours=1))
    admitted: list[bool] = []

    async def attempt() -> None:
        async with counter.hold(subject):
            window = await counter.check(subject)
            if window.allowed:
                await asyncio.sleep(0.05)
                await counter.increment(subject, 1)
            admitted.append(window.allowed)

    await asyncio.gather(attempt(), attempt())
    assert sorted(admitted) == [False, True]

    await redis_client.delete(f"usage:refresh:{subject}")
