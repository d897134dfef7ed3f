"""Eligibility rules: which push notifications a run should send.

Everything here is a pure function of the current time, the tasks and the
users' preferences so the rules can be tested without a clock or a store.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from shared.schemas.notifications import (
    NotificationCandidate,
    NotificationKind,
    PushRecipient,
)
from shared.schemas.tasks import TaskSnapshot

DEFAULT_OVERDUE_HOUR = 9
DEFAULT_DUE_TODAY_HOUR = 8
DEFAULT_REMINDER_WINDOW_MINUTES = 15


def parse_hhmm(value: str) -> time:
    """Parse an "HH:MM" wall-clock time."""
    hours, minutes = value.split(":")[:2]
    return time(int(hours), int(minutes))


def task_due_at(task: TaskSnapshot, tz: ZoneInfo) -> datetime:
    """Moment a task falls due, in ``tz``, truncated to the minute.

    With a due time the task's calendar date is combined with that
    wall-clock time; without one the due date itself is the deadline.
    """
    due_date = task.due_date.astimezone(tz)
    if task.due_time:
        due = datetime.combine(due_date.date(), parse_hhmm(task.due_time), tzinfo=tz)
    else:
        due = due_date
    return due.replace(second=0, microsecond=0)


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Start and end of ``now``'s calendar day in its own timezone."""
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1) - timedelta(microseconds=1000)
    return start, end


def minutes_until(due: datetime, now: datetime) -> int:
    return math.floor((due - now).total_seconds() / 60)


def classify_task(
    task: TaskSnapshot,
    now: datetime,
    reminder_minutes_before: Iterable[int],
    *,
    overdue_hour: int = DEFAULT_OVERDUE_HOUR,
    due_today_hour: int = DEFAULT_DUE_TODAY_HOUR,
    window_minutes: int = DEFAULT_REMINDER_WINDOW_MINUTES,
) -> tuple[NotificationKind, int | None] | None:
    """Pick at most one notification for a task, or None.

    ``now`` must be timezone-aware; its timezone is the local one.
    """
    tz = now.tzinfo
    due = task_due_at(task, tz)  # type: ignore[arg-type]

    # Overdue: strictly in the past. Only nagged once a day, at overdue_hour.
    if due < now:
        if now.hour == overdue_hour:
            return NotificationKind.OVERDUE, None
        return None

    start, end = day_bounds(now)
    due_date = task.due_date.astimezone(tz)
    if start <= due_date <= end and now.hour == due_today_hour:
        return NotificationKind.DUE_TODAY, None

    diff = minutes_until(due, now)
    for minutes_before in reminder_minutes_before:
        if minutes_before - window_minutes < diff <= minutes_before:
            return NotificationKind.REMINDER, minutes_before
    return None


def build_candidates(
    recipients: Iterable[PushRecipient],
    now: datetime,
    *,
    overdue_hour: int = DEFAULT_OVERDUE_HOUR,
    due_today_hour: int = DEFAULT_DUE_TODAY_HOUR,
    window_minutes: int = DEFAULT_REMINDER_WINDOW_MINUTES,
) -> list[NotificationCandidate]:
    """Collect this run's notifications across all recipients."""
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")

    candidates: list[NotificationCandidate] = []
    for recipient in recipients:
        for task in recipient.tasks:
            picked = classify_task(
                task,
                now,
                recipient.reminder_minutes_before,
                overdue_hour=overdue_hour,
                due_today_hour=due_today_hour,
                window_minutes=window_minutes,
            )
            if picked is None:
                continue
            kind, minutes_before = picked
            candidates.append(
                NotificationCandidate(
                    kind=kind,
                    user_id=recipient.user_id,
                    task=task,
                    minutes_before=minutes_before,
                )
            )
    return candidates
