"""Fixed-window rate limiting shared across instances through the store.

Each ``(identifier, route)`` pair owns one integer counter that the store
increments atomically and expires at the end of the window. This is a
fixed window, not a sliding log: a client can get up to twice the limit
through by bursting on both sides of a window boundary.

When the store is unreachable ``check`` fails open and lets the request
through.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel

from shared.store import KeyValueStore, StoreError

logger = structlog.get_logger()

RATE_LIMIT_PREFIX = "ratelimit:"
DEFAULT_ROUTE = "default"


class RateLimitPolicy(BaseModel):
    """How many requests are allowed per window."""

    limit: int
    window_ms: int

    @property
    def window_seconds(self) -> int:
        return math.ceil(self.window_ms / 1000)


class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    reset_at_ms: int  # epoch milliseconds
    count: int
    limit: int


# Policy table per route class
RATE_LIMITS: dict[str, RateLimitPolicy] = {
    "api": RateLimitPolicy(limit=100, window_ms=60 * 1000),
    "auth": RateLimitPolicy(limit=5, window_ms=15 * 60 * 1000),
    "push": RateLimitPolicy(limit=10, window_ms=60 * 60 * 1000),
    "email": RateLimitPolicy(limit=20, window_ms=60 * 60 * 1000),
    "calendar": RateLimitPolicy(limit=50, window_ms=60 * 60 * 1000),
}


def _now_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


class RateLimiter:
    """Per-identifier request counters with fixed windows."""

    def __init__(
        self,
        store: KeyValueStore,
        key_prefix: str = RATE_LIMIT_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._prefix = key_prefix
        self._clock = clock

    def _key(self, identifier: str, route_tag: str) -> str:
        return f"{self._prefix}{identifier}:{route_tag or DEFAULT_ROUTE}"

    async def check(
        self,
        identifier: str,
        policy: RateLimitPolicy,
        route_tag: str = DEFAULT_ROUTE,
    ) -> RateLimitResult:
        """Count one request and decide whether it is allowed."""
        now = _now_ms(self._clock)
        key = self._key(identifier, route_tag)

        try:
            count = await self._store.increment(key)
            if count == 1:
                await self._store.expire(key, policy.window_seconds)
            ttl = await self._store.ttl(key)
            if ttl == -1:
                # A counter without expiry would never open a new window
                logger.warning("rate_limit_counter_missing_expiry", key=key)
                await self._store.expire(key, policy.window_seconds)
                ttl = policy.window_seconds
        except StoreError as e:
            logger.error("rate_limit_store_error", key=key, error=str(e))
            return RateLimitResult(
                allowed=True,
                remaining=policy.limit,
                reset_at_ms=now + policy.window_ms,
                count=0,
                limit=policy.limit,
            )

        reset_at = now + ttl * 1000 if ttl and ttl > 0 else now + policy.window_ms
        allowed = count <= policy.limit
        if not allowed:
            logger.info("rate_limit_exceeded", key=key, count=count, limit=policy.limit)

        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, policy.limit - count),
            reset_at_ms=reset_at,
            count=count,
            limit=policy.limit,
        )

    async def status(
        self,
        identifier: str,
        policy: RateLimitPolicy,
        route_tag: str = DEFAULT_ROUTE,
    ) -> RateLimitResult:
        """Inspect a counter without counting a request."""
        now = _now_ms(self._clock)
        key = self._key(identifier, route_tag)

        raw = await self._store.get(key)
        try:
            count = int(raw) if raw is not None else 0
        except ValueError:
            raise StoreError(f"value at {key!r} is not an integer")
        ttl = await self._store.ttl(key)
        reset_at = now + ttl * 1000 if ttl and ttl > 0 else now + policy.window_ms

        return RateLimitResult(
            allowed=count < policy.limit,
            remaining=max(0, policy.limit - count),
            reset_at_ms=reset_at,
            count=count,
            limit=policy.limit,
        )

    async def reset(self, identifier: str, route_tag: str = DEFAULT_ROUTE) -> None:
        """Drop a counter (administrative override)."""
        key = self._key(identifier, route_tag)
        try:
            await self._store.delete(key)
            logger.info("rate_limit_reset", key=key)
        except StoreError as e:
            logger.error("rate_limit_reset_error", key=key, error=str(e))


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """HTTP headers describing the caller's budget."""
    reset_at = datetime.fromtimestamp(result.reset_at_ms / 1000, tz=timezone.utc)
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": reset_at.isoformat().replace("+00:00", "Z"),
    }


def retry_after_seconds(result: RateLimitResult, now_ms: int | None = None) -> int:
    """Whole seconds until the window resets, at least 1."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return max(1, math.ceil((result.reset_at_ms - now_ms) / 1000))
