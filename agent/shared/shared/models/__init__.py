"""SQLAlchemy models."""

from shared.models.base import Base
from shared.models.notification_preference import NotificationPreference
from shared.models.task import Task
from shared.models.user import User

__all__ = [
    "Base",
    "NotificationPreference",
    "Task",
    "User",
]
