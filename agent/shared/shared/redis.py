"""Redis connection helper."""

from __future__ import annotations

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shared.config import get_settings

_redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get or create a Redis client.

    Retries transient connection failures a few times with exponential
    backoff before surfacing them to the caller.
    """
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            retry=Retry(ExponentialBackoff(cap=3, base=1), retries=3),
            retry_on_error=[RedisConnectionError, RedisTimeoutError],
        )
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
