"""Shared test fixtures for the notification services test suite.

Provides an in-process store with a controllable clock, mock database
sessions, a mock Redis client and task factories so tests run without
Redis or Postgres.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.schemas.tasks import Priority, TaskSnapshot
from shared.store import LocalDevStore


# ---------------------------------------------------------------------------
# Clock + store
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced clock returning seconds, like time.time()."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-process store driven by the fake clock."""
    return LocalDevStore(clock=clock)


@pytest.fixture
def failing_store():
    """A store whose every operation raises, as if Redis were unreachable."""
    from shared.store import StoreUnavailableError

    s = AsyncMock()
    error = StoreUnavailableError("connection refused")
    for name in (
        "get",
        "set",
        "set_if_absent",
        "increment",
        "expire",
        "ttl",
        "delete",
        "delete_if_equals",
        "ping",
    ):
        getattr(s, name).side_effect = error
    return s


# ---------------------------------------------------------------------------
# Database mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db_session():
    """Mock async SQLAlchemy session.

    Supports the common patterns used in job code:
        session.execute(stmt) -> result
        session.add(obj)
        session.commit()
    """
    session = AsyncMock()
    session.add = MagicMock()
    # Default: execute returns a result with no rows
    default_result = MagicMock()
    default_result.scalar_one_or_none.return_value = None
    default_result.scalars.return_value.all.return_value = []
    session.execute = AsyncMock(return_value=default_result)
    return session


@pytest.fixture
def mock_session_factory(mock_db_session):
    """Mock async session factory compatible with ``async with factory() as session:``."""

    @asynccontextmanager
    async def _session_ctx():
        yield mock_db_session

    factory = MagicMock(side_effect=lambda: _session_ctx())
    return factory


# ---------------------------------------------------------------------------
# Redis mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_redis():
    """Mock async Redis client with common operations."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock()
    redis.delete = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_task():
    """Factory for TaskSnapshot instances."""

    def _make(
        due_date: datetime | None = None,
        due_time: str | None = None,
        title: str = "Write report",
        priority: Priority = Priority.MEDIUM,
        user_id: uuid.UUID | None = None,
        estimated_time: int | None = None,
    ) -> TaskSnapshot:
        return TaskSnapshot(
            id=uuid.uuid4(),
            user_id=user_id or uuid.uuid4(),
            title=title,
            due_date=due_date or datetime.now(timezone.utc),
            due_time=due_time,
            priority=priority,
            estimated_time=estimated_time,
        )

    return _make


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_execute_side_effect(*results):
    """Create an execute side_effect that returns different results per call.

    Usage::

        session.execute = AsyncMock(
            side_effect=make_execute_side_effect(result1, result2)
        )
    """
    call_idx = 0

    async def _side_effect(stmt, *args, **kwargs):
        nonlocal call_idx
        if call_idx < len(results):
            r = results[call_idx]
            call_idx += 1
            return r
        fallback = MagicMock()
        fallback.scalar_one_or_none.return_value = None
        fallback.scalars.return_value.all.return_value = []
        return fallback

    return _side_effect


def scalars_result(rows):
    """A mock execute() result whose scalars().all() returns ``rows``."""
    result = MagicMock()
    result.scalars.return_value.all.return_value = list(rows)
    result.scalar_one_or_none.return_value = rows[0] if rows else None
    return result
