"""Remote key-value store contract used for cross-instance coordination.

Locks and rate-limit counters only ever touch the store through the atomic
primitives below. Two implementations exist:

* ``RedisStore``: the production store. Every instance talks to the same
  Redis, so mutual exclusion and throttling hold across instances.
* ``LocalDevStore``: an in-process dictionary for single-process local
  development and tests. It does **not** share state between processes and
  therefore provides no real mutual exclusion or rate limiting in a
  multi-instance deployment. It is never selected implicitly: callers must
  construct it by name (``cli.py serve --local-store``).
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from shared.config import get_settings
from shared.redis import get_redis

logger = structlog.get_logger()

# Deletes KEYS[1] only when it still holds ARGV[1]; returns 1 when deleted.
_DELETE_IF_EQUALS_LUA = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class StoreError(Exception):
    """Base error for store operations."""


class StoreUnavailableError(StoreError):
    """The store could not be reached or rejected the command."""


class StoreNotConfiguredError(StoreError):
    """No store connection settings were provided."""


class KeyValueStore(Protocol):
    """Atomic primitives the coordination layer relies on."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, expiry_seconds: int | None = None) -> None: ...

    async def set_if_absent(
        self, key: str, value: str, expiry_seconds: int | None = None
    ) -> bool: ...

    async def increment(self, key: str) -> int: ...

    async def expire(self, key: str, seconds: int) -> bool: ...

    async def ttl(self, key: str) -> int | None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_if_equals(self, key: str, value: str) -> bool: ...

    async def ping(self) -> bool: ...


@contextmanager
def _translate_errors(operation: str, key: str | None = None) -> Iterator[None]:
    try:
        yield
    except (RedisError, OSError) as e:
        raise StoreUnavailableError(f"{operation} failed for {key!r}: {e}") from e


def _decode(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class RedisStore:
    """KeyValueStore backed by a ``redis.asyncio`` client."""

    def __init__(self, client: aioredis.Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> RedisStore:
        return cls(aioredis.from_url(url, encoding="utf-8", decode_responses=True))

    async def get(self, key: str) -> str | None:
        with _translate_errors("get", key):
            return _decode(await self._redis.get(key))

    async def set(self, key: str, value: str, expiry_seconds: int | None = None) -> None:
        with _translate_errors("set", key):
            await self._redis.set(key, value, ex=expiry_seconds)

    async def set_if_absent(
        self, key: str, value: str, expiry_seconds: int | None = None
    ) -> bool:
        """SET NX (with EX when given); value and expiry land atomically."""
        with _translate_errors("set_if_absent", key):
            result = await self._redis.set(key, value, nx=True, ex=expiry_seconds)
        return bool(result)

    async def increment(self, key: str) -> int:
        with _translate_errors("increment", key):
            return int(await self._redis.incr(key))

    async def expire(self, key: str, seconds: int) -> bool:
        with _translate_errors("expire", key):
            return bool(await self._redis.expire(key, seconds))

    async def ttl(self, key: str) -> int | None:
        """Seconds remaining, -1 when the key never expires, None when absent."""
        with _translate_errors("ttl", key):
            remaining = int(await self._redis.ttl(key))
        if remaining == -2:
            return None
        return remaining

    async def delete(self, key: str) -> None:
        with _translate_errors("delete", key):
            await self._redis.delete(key)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        with _translate_errors("delete_if_equals", key):
            deleted = await self._redis.eval(_DELETE_IF_EQUALS_LUA, 1, key, value)
        return bool(deleted)

    async def ping(self) -> bool:
        with _translate_errors("ping"):
            return bool(await self._redis.ping())


class LocalDevStore:
    """Single-process, in-memory store for local development and tests.

    Not shared between processes: running more than one instance against
    it silently loses mutual exclusion and rate limiting.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}
        logger.warning(
            "local_dev_store_in_use",
            hint="Locks and rate limits are not shared across processes",
        )

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def _expiry(self, seconds: int | None) -> float | None:
        return None if seconds is None else self._clock() + seconds

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, expiry_seconds: int | None = None) -> None:
        self._data[key] = (str(value), self._expiry(expiry_seconds))

    async def set_if_absent(
        self, key: str, value: str, expiry_seconds: int | None = None
    ) -> bool:
        if self._live(key) is not None:
            return False
        self._data[key] = (str(value), self._expiry(expiry_seconds))
        return True

    async def increment(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            self._data[key] = ("1", None)
            return 1
        value, expires_at = entry
        try:
            count = int(value) + 1
        except ValueError:
            raise StoreError(f"value at {key!r} is not an integer")
        self._data[key] = (str(count), expires_at)
        return count

    async def expire(self, key: str, seconds: int) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        self._data[key] = (entry[0], self._expiry(seconds))
        return True

    async def ttl(self, key: str) -> int | None:
        entry = self._live(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is None:
            return -1
        return math.ceil(expires_at - self._clock())

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        entry = self._live(key)
        if entry is None or entry[0] != value:
            return False
        del self._data[key]
        return True

    async def ping(self) -> bool:
        return True


async def create_store() -> RedisStore:
    """Build the production store from settings.

    Raises StoreNotConfiguredError instead of degrading to an in-process
    store when ``REDIS_URL`` is empty.
    """
    settings = get_settings()
    if not settings.redis_url:
        raise StoreNotConfiguredError(
            "REDIS_URL is not set; distributed locks and rate limits need a shared store"
        )
    return RedisStore(await get_redis())
