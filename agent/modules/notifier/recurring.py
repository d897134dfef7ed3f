"""Recurring-task generation job.

For each completed recurring task, create its next pending instance once
that instance's due date has arrived, unless one already exists.
"""

from __future__ import annotations

import calendar
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.notifier import repository
from modules.notifier.dispatcher import JobOutcome, run_locked
from shared.config import Settings
from shared.locks import LockManager
from shared.models.task import Task
from shared.schemas.notifications import RecurringSummary
from shared.schemas.tasks import RecurringPattern, TaskStatus

logger = structlog.get_logger()

GENERATE_RECURRING_LOCK = "cron:generate-recurring"


def _add_months(value: datetime, months: int) -> datetime:
    """Add months, clamping to the last day (Jan 31 + 1 month = Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_recurring_date(current_due: datetime, pattern: str | RecurringPattern) -> datetime:
    try:
        pattern = RecurringPattern(pattern)
    except ValueError:
        raise ValueError(f"Unknown recurring pattern: {pattern}")

    if pattern == RecurringPattern.DAILY:
        return current_due + timedelta(days=1)
    if pattern == RecurringPattern.WEEKLY:
        return current_due + timedelta(weeks=1)
    return _add_months(current_due, 1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def generate_recurring_tasks(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    now: datetime,
) -> RecurringSummary:
    """The locked body of the job. One task failing never stops the rest."""
    tz = ZoneInfo(settings.timezone)
    today = now.astimezone(tz).date()

    async with session_factory() as session:
        completed = await repository.load_completed_recurring_tasks(session)

    summary = RecurringSummary(total_completed=len(completed))
    logger.info("recurring_generation_started", completed=len(completed))

    for task in completed:
        try:
            next_due = next_recurring_date(task.due_date, task.recurring_pattern)

            async with session_factory() as session:
                existing = await repository.find_pending_instance(session, task, next_due)
                if existing is not None:
                    summary.skipped += 1
                    logger.debug(
                        "recurring_instance_exists",
                        task_id=str(task.id),
                        existing_task_id=str(existing.id),
                    )
                    continue

                if next_due.astimezone(tz).date() > today:
                    summary.skipped += 1
                    logger.debug(
                        "recurring_next_due_in_future",
                        task_id=str(task.id),
                        next_due=next_due.isoformat(),
                    )
                    continue

                # Tags are intentionally not copied
                new_task = Task(
                    user_id=task.user_id,
                    title=task.title,
                    description=task.description,
                    due_date=next_due,
                    due_time=task.due_time,
                    priority=task.priority,
                    category_id=task.category_id,
                    estimated_time=task.estimated_time,
                    is_recurring=True,
                    recurring_pattern=task.recurring_pattern,
                    status=TaskStatus.PENDING.value,
                )
                session.add(new_task)
                await session.commit()

            summary.generated += 1
            logger.info(
                "recurring_task_generated",
                original_task_id=str(task.id),
                title=task.title,
                pattern=task.recurring_pattern,
                due_date=next_due.isoformat(),
            )
        except Exception as e:
            summary.errors += 1
            logger.error(
                "recurring_generation_error", task_id=str(task.id), error=str(e), exc_info=True
            )

    logger.info("recurring_generation_completed", **summary.to_json_dict())
    return summary


async def run_generate_recurring(
    locks: LockManager,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    clock: Callable[[], datetime] = _utcnow,
) -> JobOutcome[RecurringSummary]:
    now = clock()

    async def _body() -> RecurringSummary:
        return await generate_recurring_tasks(session_factory, settings, now)

    return await run_locked(
        locks, GENERATE_RECURRING_LOCK, _body, timeout_seconds=settings.recurring_lock_timeout_seconds
    )
