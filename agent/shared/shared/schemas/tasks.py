"""Task snapshots handed from the persistence layer to notification jobs."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class RecurringPattern(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class TaskSnapshot(BaseModel):
    """Read-only copy of a task taken at the start of a job run."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    description: str | None = None
    due_date: datetime
    due_time: str | None = None  # "HH:MM"
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    estimated_time: int | None = None  # minutes
    is_recurring: bool = False
    recurring_pattern: RecurringPattern | None = None
