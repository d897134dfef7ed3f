"""Task model: the user's to-do items."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.models.base import Base


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    category_id: Mapped[uuid.UUID | None] = mapped_column(default=None)

    title: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, default=None)

    # Calendar date of the deadline; due_time ("HH:MM") narrows it to a wall-clock time
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    due_time: Mapped[str | None] = mapped_column(String(5), default=None)

    priority: Mapped[str] = mapped_column(String, default="MEDIUM")  # LOW | MEDIUM | HIGH
    status: Mapped[str] = mapped_column(String, default="PENDING")  # PENDING | COMPLETED
    estimated_time: Mapped[int | None] = mapped_column(Integer, default=None)  # minutes

    is_recurring: Mapped[bool] = mapped_column(default=False)
    recurring_pattern: Mapped[str | None] = mapped_column(String, default=None)  # DAILY | WEEKLY | MONTHLY

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    user: Mapped["User"] = relationship(back_populates="tasks")  # noqa: F821
