"""Tests for recurring-task generation."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from modules.notifier.recurring import (
    GENERATE_RECURRING_LOCK,
    generate_recurring_tasks,
    next_recurring_date,
    run_generate_recurring,
)
from shared.config import Settings
from shared.locks import LockManager
from shared.models.task import Task

UTC = timezone.utc
NOW = datetime(2024, 3, 15, 10, 0, tzinfo=UTC)


def _completed(pattern: str, due: datetime, title: str = "Water plants") -> Task:
    return Task(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        title=title,
        description="Balcony too",
        due_date=due,
        due_time="18:00",
        priority="HIGH",
        status="COMPLETED",
        estimated_time=15,
        is_recurring=True,
        recurring_pattern=pattern,
        completed_at=due,
    )


# ---------------------------------------------------------------------------
# next_recurring_date
# ---------------------------------------------------------------------------


class TestNextRecurringDate:
    def test_daily(self):
        assert next_recurring_date(datetime(2024, 3, 15, tzinfo=UTC), "DAILY") == datetime(
            2024, 3, 16, tzinfo=UTC
        )

    def test_weekly(self):
        assert next_recurring_date(datetime(2024, 3, 15, tzinfo=UTC), "WEEKLY") == datetime(
            2024, 3, 22, tzinfo=UTC
        )

    def test_monthly(self):
        assert next_recurring_date(datetime(2024, 3, 15, 9, 30, tzinfo=UTC), "MONTHLY") == datetime(
            2024, 4, 15, 9, 30, tzinfo=UTC
        )

    @pytest.mark.parametrize(
        "current,expected",
        [
            (datetime(2024, 1, 31, tzinfo=UTC), datetime(2024, 2, 29, tzinfo=UTC)),
            (datetime(2023, 1, 31, tzinfo=UTC), datetime(2023, 2, 28, tzinfo=UTC)),
            (datetime(2024, 12, 31, tzinfo=UTC), datetime(2025, 1, 31, tzinfo=UTC)),
        ],
    )
    def test_monthly_clamps_to_month_end(self, current, expected):
        assert next_recurring_date(current, "MONTHLY") == expected

    def test_unknown_pattern(self):
        with pytest.raises(ValueError, match="Unknown recurring pattern"):
            next_recurring_date(datetime(2024, 3, 15, tzinfo=UTC), "YEARLY")


# ---------------------------------------------------------------------------
# generate_recurring_tasks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_generates_due_instance(mock_session_factory, mock_db_session):
    original = _completed("DAILY", datetime(2024, 3, 14, tzinfo=UTC))

    with patch(
        "modules.notifier.recurring.repository.load_completed_recurring_tasks",
        new=AsyncMock(return_value=[original]),
    ), patch(
        "modules.notifier.recurring.repository.find_pending_instance",
        new=AsyncMock(return_value=None),
    ):
        summary = await generate_recurring_tasks(mock_session_factory, Settings(), NOW)

    assert summary.total_completed == 1
    assert summary.generated == 1
    mock_db_session.add.assert_called_once()
    mock_db_session.commit.assert_awaited_once()

    new_task = mock_db_session.add.call_args.args[0]
    assert new_task.due_date == datetime(2024, 3, 15, tzinfo=UTC)
    assert new_task.status == "PENDING"
    assert new_task.title == original.title
    assert new_task.due_time == "18:00"
    assert new_task.priority == "HIGH"
    assert new_task.recurring_pattern == "DAILY"
    assert new_task.is_recurring is True


@pytest.mark.asyncio
async def test_skips_when_instance_exists(mock_session_factory, mock_db_session):
    original = _completed("DAILY", datetime(2024, 3, 14, tzinfo=UTC))
    existing = _completed("DAILY", datetime(2024, 3, 15, tzinfo=UTC))

    with patch(
        "modules.notifier.recurring.repository.load_completed_recurring_tasks",
        new=AsyncMock(return_value=[original]),
    ), patch(
        "modules.notifier.recurring.repository.find_pending_instance",
        new=AsyncMock(return_value=existing),
    ):
        summary = await generate_recurring_tasks(mock_session_factory, Settings(), NOW)

    assert summary.skipped == 1
    assert summary.generated == 0
    mock_db_session.add.assert_not_called()


@pytest.mark.asyncio
async def test_skips_future_instance(mock_session_factory, mock_db_session):
    original = _completed("WEEKLY", datetime(2024, 3, 14, tzinfo=UTC))

    with patch(
        "modules.notifier.recurring.repository.load_completed_recurring_tasks",
        new=AsyncMock(return_value=[original]),
    ), patch(
        "modules.notifier.recurring.repository.find_pending_instance",
        new=AsyncMock(return_value=None),
    ):
        summary = await generate_recurring_tasks(mock_session_factory, Settings(), NOW)

    assert summary.skipped == 1
    mock_db_session.add.assert_not_called()


@pytest.mark.asyncio
async def test_bad_pattern_counted_and_others_continue(mock_session_factory, mock_db_session):
    broken = _completed("YEARLY", datetime(2024, 3, 14, tzinfo=UTC))
    good = _completed("DAILY", datetime(2024, 3, 14, tzinfo=UTC))

    with patch(
        "modules.notifier.recurring.repository.load_completed_recurring_tasks",
        new=AsyncMock(return_value=[broken, good]),
    ), patch(
        "modules.notifier.recurring.repository.find_pending_instance",
        new=AsyncMock(return_value=None),
    ):
        summary = await generate_recurring_tasks(mock_session_factory, Settings(), NOW)

    assert summary.errors == 1
    assert summary.generated == 1
    assert summary.to_json_dict() == {
        "totalCompleted": 2,
        "generated": 1,
        "skipped": 0,
        "errors": 1,
    }


@pytest.mark.asyncio
async def test_run_skipped_when_lock_held(store, mock_session_factory):
    locks = LockManager(store)
    await locks.acquire(GENERATE_RECURRING_LOCK)

    with patch(
        "modules.notifier.recurring.repository.load_completed_recurring_tasks", new=AsyncMock()
    ) as load:
        outcome = await run_generate_recurring(
            locks, mock_session_factory, Settings(), clock=lambda: NOW
        )

    assert outcome.skipped is True
    load.assert_not_called()


@pytest.mark.asyncio
async def test_run_returns_summary(store, mock_session_factory):
    with patch(
        "modules.notifier.recurring.repository.load_completed_recurring_tasks",
        new=AsyncMock(return_value=[]),
    ):
        outcome = await run_generate_recurring(
            LockManager(store), mock_session_factory, Settings(), clock=lambda: NOW
        )

    assert outcome.skipped is False
    assert outcome.summary.total_completed == 0


@pytest.mark.asyncio
async def test_task_error_logged_with_traceback(mock_session_factory):
    broken = _completed("YEARLY", datetime(2024, 3, 14, tzinfo=UTC))

    with patch(
        "modules.notifier.recurring.repository.load_completed_recurring_tasks",
        new=AsyncMock(return_value=[broken]),
    ), patch("modules.notifier.recurring.logger") as logger:
        await generate_recurring_tasks(mock_session_factory, Settings(), NOW)

    logger.error.assert_called_once()
    assert logger.error.call_args.args[0] == "recurring_generation_error"
    assert logger.error.call_args.kwargs["exc_info"] is True
