"""Queries the notification jobs run against the task database."""

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.notification_preference import NotificationPreference
from shared.models.task import Task
from shared.models.user import User
from shared.schemas.notifications import PushRecipient
from shared.schemas.tasks import TaskSnapshot, TaskStatus


async def load_push_recipients(
    session: AsyncSession, now: datetime, lookahead_hours: int = 24
) -> list[PushRecipient]:
    """Users with push enabled and their pending tasks due before the horizon.

    Overdue tasks are included: everything due up to ``now + lookahead``.
    """
    result = await session.execute(
        select(NotificationPreference).where(
            NotificationPreference.push_notifications_enabled.is_(True),
            NotificationPreference.push_subscription.is_not(None),
        )
    )
    preferences = list(result.scalars().all())
    if not preferences:
        return []

    user_ids = [p.user_id for p in preferences]
    result = await session.execute(
        select(Task).where(
            Task.user_id.in_(user_ids),
            Task.status == TaskStatus.PENDING.value,
            Task.due_date <= now + timedelta(hours=lookahead_hours),
        )
    )
    tasks_by_user: dict[uuid.UUID, list[TaskSnapshot]] = defaultdict(list)
    for task in result.scalars().all():
        tasks_by_user[task.user_id].append(TaskSnapshot.model_validate(task))

    return [
        PushRecipient(
            user_id=p.user_id,
            reminder_minutes_before=list(p.reminder_minutes_before or []),
            tasks=tasks_by_user.get(p.user_id, []),
        )
        for p in preferences
    ]


async def get_preference(
    session: AsyncSession, user_id: uuid.UUID
) -> NotificationPreference | None:
    result = await session.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def load_completed_recurring_tasks(session: AsyncSession) -> list[Task]:
    result = await session.execute(
        select(Task)
        .where(
            Task.status == TaskStatus.COMPLETED.value,
            Task.is_recurring.is_(True),
            Task.recurring_pattern.is_not(None),
        )
        .order_by(Task.completed_at.desc())
    )
    return list(result.scalars().all())


async def find_pending_instance(
    session: AsyncSession, task: Task, next_due: datetime
) -> Task | None:
    """A pending copy of a recurring task already due on or after ``next_due``."""
    result = await session.execute(
        select(Task)
        .where(
            Task.user_id == task.user_id,
            Task.title == task.title,
            Task.is_recurring.is_(True),
            Task.recurring_pattern == task.recurring_pattern,
            Task.status == TaskStatus.PENDING.value,
            Task.due_date >= next_due,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def load_digest_preferences(session: AsyncSession) -> list[NotificationPreference]:
    result = await session.execute(
        select(NotificationPreference).where(
            or_(
                NotificationPreference.daily_email_enabled.is_(True),
                NotificationPreference.weekly_email_enabled.is_(True),
            )
        )
    )
    return list(result.scalars().all())


async def get_user(session: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def load_pending_tasks_between(
    session: AsyncSession, user_id: uuid.UUID, start: datetime, end: datetime
) -> list[TaskSnapshot]:
    result = await session.execute(
        select(Task)
        .where(
            Task.user_id == user_id,
            Task.status == TaskStatus.PENDING.value,
            Task.due_date >= start,
            Task.due_date <= end,
        )
        .order_by(Task.due_date, Task.due_time)
    )
    return [TaskSnapshot.model_validate(t) for t in result.scalars().all()]
