"""Pydantic schemas for the notification services."""

from shared.schemas.common import HealthResponse
from shared.schemas.notifications import (
    DigestSummary,
    DispatchSummary,
    NotificationCandidate,
    NotificationKind,
    PushPayload,
    PushRecipient,
    RecurringSummary,
)
from shared.schemas.tasks import Priority, RecurringPattern, TaskSnapshot, TaskStatus

__all__ = [
    "DigestSummary",
    "DispatchSummary",
    "HealthResponse",
    "NotificationCandidate",
    "NotificationKind",
    "Priority",
    "PushPayload",
    "PushRecipient",
    "RecurringPattern",
    "RecurringSummary",
    "TaskSnapshot",
    "TaskStatus",
]
