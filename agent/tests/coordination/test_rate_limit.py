"""Tests for the fixed-window rate limiter."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from shared.rate_limit import (
    RATE_LIMITS,
    RateLimitPolicy,
    RateLimitResult,
    RateLimiter,
    rate_limit_headers,
    retry_after_seconds,
)
from shared.store import StoreError, StoreUnavailableError

POLICY = RateLimitPolicy(limit=3, window_ms=60_000)


@pytest.fixture
def limiter(store, clock):
    return RateLimiter(store, clock=clock)


class TestCheck:
    @pytest.mark.asyncio
    async def test_counts_down_then_denies(self, limiter):
        results = [await limiter.check("1.2.3.4", POLICY, route_tag="/api/tasks") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert [r.count for r in results] == [1, 2, 3, 4]
        assert all(r.limit == 3 for r in results)

    @pytest.mark.asyncio
    async def test_first_request_sets_window_expiry(self, limiter, store, clock):
        result = await limiter.check("1.2.3.4", POLICY)

        assert await store.ttl("ratelimit:1.2.3.4:default") == 60
        assert result.reset_at_ms == int(clock() * 1000) + 60_000

    @pytest.mark.asyncio
    async def test_new_window_after_expiry(self, limiter, clock):
        for _ in range(4):
            await limiter.check("1.2.3.4", POLICY)

        clock.advance(61)
        result = await limiter.check("1.2.3.4", POLICY)

        assert result.allowed is True
        assert result.count == 1
        assert result.remaining == 2

    @pytest.mark.asyncio
    async def test_window_does_not_slide(self, limiter, store, clock):
        await limiter.check("1.2.3.4", POLICY)
        clock.advance(30)
        await limiter.check("1.2.3.4", POLICY)

        # Later requests in the window leave the original expiry alone
        assert await store.ttl("ratelimit:1.2.3.4:default") == 30

    @pytest.mark.asyncio
    async def test_identifiers_and_routes_are_isolated(self, limiter):
        for _ in range(3):
            await limiter.check("a", POLICY, route_tag="/api/x")

        assert (await limiter.check("a", POLICY, route_tag="/api/x")).allowed is False
        assert (await limiter.check("a", POLICY, route_tag="/api/y")).allowed is True
        assert (await limiter.check("b", POLICY, route_tag="/api/x")).allowed is True

    @pytest.mark.asyncio
    async def test_empty_route_tag_uses_default_key(self, limiter, store):
        await limiter.check("a", POLICY, route_tag="")
        assert await store.get("ratelimit:a:default") == "1"

    @pytest.mark.asyncio
    async def test_counter_without_expiry_is_repaired(self, limiter, store):
        # Simulates a crash between the increment and the expire call
        await store.set("ratelimit:a:default", "5")

        result = await limiter.check("a", POLICY)

        assert result.count == 6
        assert await store.ttl("ratelimit:a:default") == 60

    @pytest.mark.asyncio
    async def test_fails_open_when_store_down(self, failing_store, clock):
        limiter = RateLimiter(failing_store, clock=clock)

        result = await limiter.check("a", POLICY)

        assert result.allowed is True
        assert result.remaining == 3
        assert result.count == 0
        assert result.reset_at_ms == int(clock() * 1000) + 60_000

    @pytest.mark.asyncio
    async def test_fails_open_when_expire_fails(self, clock):
        store = AsyncMock()
        store.increment.return_value = 1
        store.expire.side_effect = StoreUnavailableError("timeout")

        result = await RateLimiter(store, clock=clock).check("a", POLICY)
        assert result.allowed is True


class TestStatus:
    @pytest.mark.asyncio
    async def test_does_not_count(self, limiter):
        await limiter.check("a", POLICY)

        first = await limiter.status("a", POLICY)
        second = await limiter.status("a", POLICY)

        assert first.count == second.count == 1
        assert first.remaining == 2
        assert first.allowed is True

    @pytest.mark.asyncio
    async def test_exhausted_budget_reports_not_allowed(self, limiter):
        for _ in range(3):
            await limiter.check("a", POLICY)
        assert (await limiter.status("a", POLICY)).allowed is False

    @pytest.mark.asyncio
    async def test_unknown_identifier(self, limiter, clock):
        result = await limiter.status("nobody", POLICY)
        assert result.count == 0
        assert result.remaining == 3
        assert result.reset_at_ms == int(clock() * 1000) + 60_000

    @pytest.mark.asyncio
    async def test_propagates_store_errors(self, failing_store):
        with pytest.raises(StoreUnavailableError):
            await RateLimiter(failing_store).status("a", POLICY)


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_restores_budget(self, limiter):
        for _ in range(4):
            await limiter.check("a", POLICY)

        await limiter.reset("a")

        assert (await limiter.check("a", POLICY)).count == 1

    @pytest.mark.asyncio
    async def test_reset_swallows_store_errors(self, failing_store):
        await RateLimiter(failing_store).reset("a")


def test_presets():
    assert RATE_LIMITS["api"] == RateLimitPolicy(limit=100, window_ms=60_000)
    assert RATE_LIMITS["auth"] == RateLimitPolicy(limit=5, window_ms=900_000)
    assert RATE_LIMITS["push"].limit == 10
    assert RATE_LIMITS["email"].limit == 20
    assert RATE_LIMITS["calendar"].limit == 50
    assert RATE_LIMITS["auth"].window_seconds == 900


def test_headers_report_policy_limit():
    result = RateLimitResult(
        allowed=True, remaining=7, reset_at_ms=1_700_000_060_000, count=3, limit=10
    )

    headers = rate_limit_headers(result)

    assert headers["X-RateLimit-Limit"] == "10"
    assert headers["X-RateLimit-Remaining"] == "7"
    assert headers["X-RateLimit-Reset"] == "2023-11-14T22:14:20Z"


def test_retry_after_rounds_up_with_floor_of_one():
    result = RateLimitResult(
        allowed=False, remaining=0, reset_at_ms=1_000_500, count=4, limit=3
    )
    assert retry_after_seconds(result, now_ms=1_000_000) == 1
    assert retry_after_seconds(result, now_ms=990_000) == 11
    assert retry_after_seconds(result, now_ms=2_000_000) == 1


@pytest.mark.asyncio
async def test_status_non_integer_counter_is_store_error(limiter, store):
    await store.set("ratelimit:a:default", "garbage")

    with pytest.raises(StoreError):
        await limiter.status("a", POLICY)
