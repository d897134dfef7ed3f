"""Notification schemas: dispatch candidates, push payloads and run summaries."""

from __future__ import annotations

import uuid
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.schemas.tasks import TaskSnapshot


class NotificationKind(str, Enum):
    REMINDER = "reminder"
    OVERDUE = "overdue"
    DUE_TODAY = "due_today"


class NotificationCandidate(BaseModel):
    """A notification selected for one dispatch run. Never persisted."""

    kind: NotificationKind
    user_id: uuid.UUID
    task: TaskSnapshot
    minutes_before: int | None = None


class PushRecipient(BaseModel):
    """A user with push enabled and the pending tasks considered this run."""

    user_id: uuid.UUID
    reminder_minutes_before: list[int] = Field(default_factory=list)
    tasks: list[TaskSnapshot] = Field(default_factory=list)


class PushPayload(BaseModel):
    """Message published for the web-push gateway."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    title: str
    body: str
    task_id: str | None = None
    priority: str | None = None
    url: str = "/"
    require_interaction: bool = False


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class DispatchSummary(_CamelModel):
    """Aggregate outcome of one push-reminder run."""

    users_processed: int = 0
    notifications_collected: int = 0
    reminders_sent: int = 0
    overdue_sent: int = 0
    due_today_sent: int = 0
    not_sent: int = 0
    errors: int = 0

    @property
    def total_sent(self) -> int:
        return self.reminders_sent + self.overdue_sent + self.due_today_sent

    @property
    def success_rate(self) -> float:
        """Percentage of collected notifications that were sent (100 when none)."""
        if self.notifications_collected == 0:
            return 100.0
        return round(self.total_sent / self.notifications_collected * 100, 1)

    def to_json_dict(self) -> dict:
        data = super().to_json_dict()
        data["totalSent"] = self.total_sent
        data["successRate"] = self.success_rate
        return data


class RecurringSummary(_CamelModel):
    total_completed: int = 0
    generated: int = 0
    skipped: int = 0
    errors: int = 0


class DigestSummary(_CamelModel):
    total_users: int = 0
    daily_emails_sent: int = 0
    daily_emails_skipped: int = 0
    weekly_emails_sent: int = 0
    weekly_emails_skipped: int = 0
    errors: int = 0
