"""Wording of push notifications."""

from __future__ import annotations

import math
from datetime import datetime

from shared.schemas.notifications import NotificationKind, PushPayload
from shared.schemas.tasks import Priority, TaskSnapshot


def format_time_12h(value: str) -> str:
    """"14:05" -> "2:05 PM"."""
    hours, minutes = (int(p) for p in value.split(":")[:2])
    period = "PM" if hours >= 12 else "AM"
    display = hours % 12 or 12
    return f"{display}:{minutes:02d} {period}"


def relative_time(when: datetime, now: datetime) -> str:
    """Human description of ``when`` relative to ``now``."""
    diff_seconds = (when - now).total_seconds()
    diff_mins = math.floor(diff_seconds / 60)
    diff_hours = math.floor(diff_seconds / 3600)
    diff_days = math.floor(diff_seconds / 86400)

    if diff_mins < 0:
        ago = abs(diff_mins)
        if ago < 60:
            return f"{ago} minutes ago"
        if ago < 1440:
            return f"{ago // 60} hours ago"
        return f"{ago // 1440} days ago"

    if diff_mins < 60:
        return f"in {diff_mins} minutes"
    if diff_hours < 24:
        return f"in {diff_hours} hours"
    if diff_days == 1:
        return "tomorrow"
    if diff_days < 7:
        return f"in {diff_days} days"
    return when.strftime("%Y-%m-%d")


def reminder_body(task: TaskSnapshot, now: datetime) -> str:
    parts: list[str] = []
    if task.due_time:
        parts.append(f"Due at {format_time_12h(task.due_time)}")
    else:
        parts.append(f"Due {relative_time(task.due_date, now)}")

    if task.priority == Priority.HIGH:
        parts.append("• High Priority")

    if task.estimated_time:
        hours, minutes = divmod(task.estimated_time, 60)
        if hours > 0:
            parts.append(f"• {hours}h {minutes}m estimated")
        else:
            parts.append(f"• {minutes}m estimated")

    return " ".join(parts)


def build_payload(
    kind: NotificationKind, user_id: str, task: TaskSnapshot, now: datetime
) -> PushPayload:
    if kind == NotificationKind.REMINDER:
        title = f"Task Reminder: {task.title}"
        body = reminder_body(task, now)
        require_interaction = task.priority == Priority.HIGH
    elif kind == NotificationKind.OVERDUE:
        title = f"Overdue: {task.title}"
        body = (
            f"This task was due {relative_time(task.due_date, now)}. "
            "Don't forget to complete it!"
        )
        require_interaction = True
    else:
        title = f"Due Today: {task.title}"
        body = (
            f"This task is due today at {format_time_12h(task.due_time)}"
            if task.due_time
            else "This task is due today"
        )
        require_interaction = False

    return PushPayload(
        user_id=user_id,
        title=title,
        body=body,
        task_id=str(task.id),
        priority=task.priority.value,
        require_interaction=require_interaction,
    )
