"""Redis client behind the shared usage counters.

Opened only when ``usage_backend`` is ``"redis"``. With the in-memory
backend nothing in the process talks to Redis.
"""

from __future__ import annotations

import redis.asyncio as redis

from drtrack.config import Settings

_client: redis.Redis | None = None


def redis_enabled(settings: Settings) -> bool:
    return settings.usage_backend == "redis"


async def init_redis(settings: Settings) -> None:
    """Connect if the Redis usage backend is configured; otherwise do nothing."""
    global _client  # noqa: PLW0603
    if not redis_enabled(settings):
        return
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
    _client = None


def get_redis() -> redis.Redis:
    if _client is None:
        msg = "Redis not initialized. Set DRT_USAGE_BACKEND=redis and call init_redis() first."
        raise RuntimeError(msg)
    return _client
