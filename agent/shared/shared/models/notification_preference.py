"""Per-user notification preferences (push reminders and email digests)."""

from __future__ import annotations

import uuid

from sqlalchemy import JSON, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.models.base import Base


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True
    )

    # Push
    push_notifications_enabled: Mapped[bool] = mapped_column(default=False)
    push_subscription: Mapped[dict | None] = mapped_column(JSON, default=None)
    # Lead times in minutes, checked in order
    reminder_minutes_before: Mapped[list] = mapped_column(JSON, default=lambda: [60])

    # Email digests; times are "HH:MM" in the service timezone
    daily_email_enabled: Mapped[bool] = mapped_column(default=False)
    daily_email_time: Mapped[str] = mapped_column(String(5), default="08:00")
    weekly_email_enabled: Mapped[bool] = mapped_column(default=False)
    weekly_email_day: Mapped[str] = mapped_column(String, default="MONDAY")
    weekly_email_time: Mapped[str] = mapped_column(String(5), default="08:00")

    user: Mapped["User"] = relationship(back_populates="notification_preference")  # noqa: F821
