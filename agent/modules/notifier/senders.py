"""Downstream senders for push notifications and email digests.

Each send returns whether something was actually delivered; a deliberate
non-send (push disabled, no subscription, nothing to report) returns
False, while transport errors raise so the caller can count them apart.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo

import httpx
import redis.asyncio as aioredis
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.notifier import repository
from modules.notifier.messages import build_payload, format_time_12h
from shared.config import Settings
from shared.schemas.notifications import NotificationKind
from shared.schemas.tasks import TaskSnapshot

logger = structlog.get_logger()


class PushSender(Protocol):
    async def send_reminder(self, user_id: uuid.UUID, task: TaskSnapshot) -> bool: ...

    async def send_overdue(self, user_id: uuid.UUID, task: TaskSnapshot) -> bool: ...

    async def send_due_today(self, user_id: uuid.UUID, task: TaskSnapshot) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RedisPushSender:
    """Publishes push payloads for the web-push gateway over Redis pub/sub."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: aioredis.Redis,
        channel: str = "notifications:push",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.channel = channel
        self._clock = clock

    async def _send(self, kind: NotificationKind, user_id: uuid.UUID, task: TaskSnapshot) -> bool:
        async with self.session_factory() as session:
            preference = await repository.get_preference(session, user_id)

        if preference is None or not preference.push_notifications_enabled:
            logger.info("push_skipped_disabled", user_id=str(user_id), task_id=str(task.id))
            return False
        if not preference.push_subscription:
            logger.info("push_skipped_no_subscription", user_id=str(user_id), task_id=str(task.id))
            return False

        payload = build_payload(kind, str(user_id), task, self._clock())
        receivers = await self.redis.publish(
            self.channel, payload.model_dump_json(by_alias=True)
        )
        if not receivers:
            logger.warning("push_no_gateway_listening", channel=self.channel, user_id=str(user_id))
            return False

        logger.info(
            "push_published",
            kind=kind.value,
            user_id=str(user_id),
            task_id=str(task.id),
            channel=self.channel,
        )
        return True

    async def send_reminder(self, user_id: uuid.UUID, task: TaskSnapshot) -> bool:
        return await self._send(NotificationKind.REMINDER, user_id, task)

    async def send_overdue(self, user_id: uuid.UUID, task: TaskSnapshot) -> bool:
        return await self._send(NotificationKind.OVERDUE, user_id, task)

    async def send_due_today(self, user_id: uuid.UUID, task: TaskSnapshot) -> bool:
        return await self._send(NotificationKind.DUE_TODAY, user_id, task)


# ---------------------------------------------------------------------------
# Email digests
# ---------------------------------------------------------------------------


@dataclass
class DigestResult:
    success: bool
    reason: str | None = None
    task_count: int = 0


class DigestSender(Protocol):
    async def send_daily(self, user_id: uuid.UUID) -> DigestResult: ...

    async def send_weekly(self, user_id: uuid.UUID) -> DigestResult: ...


def render_task_lines(tasks: list[TaskSnapshot]) -> str:
    lines = []
    for task in tasks:
        when = task.due_date.strftime("%a %d %b")
        if task.due_time:
            when = f"{when} {format_time_12h(task.due_time)}"
        lines.append(f"- [{task.priority.value}] {task.title} ({when})")
    return "\n".join(lines)


class ResendDigestSender:
    """Sends plain-text task digests through the Resend HTTP API."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.http_client = http_client
        self._clock = clock
        self._tz = ZoneInfo(settings.timezone)

    async def _post(self, to: str, subject: str, text: str) -> None:
        body = {
            "from": self.settings.resend_from_email,
            "to": [to],
            "subject": subject,
            "text": text,
        }
        headers = {"Authorization": f"Bearer {self.settings.resend_api_key}"}
        if self.http_client is not None:
            resp = await self.http_client.post(self.settings.resend_api_url, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                resp = await client.post(self.settings.resend_api_url, json=body, headers=headers)
        resp.raise_for_status()

    async def _send_digest(
        self, user_id: uuid.UUID, start: datetime, end: datetime, subject: str, heading: str
    ) -> DigestResult:
        async with self.session_factory() as session:
            user = await repository.get_user(session, user_id)
            if user is None or not user.email:
                return DigestResult(success=False, reason="no_email")
            preference = await repository.get_preference(session, user_id)
            if preference is None:
                return DigestResult(success=False, reason="disabled")
            tasks = await repository.load_pending_tasks_between(session, user_id, start, end)

        if not tasks:
            return DigestResult(success=False, reason="no_tasks")

        greeting = f"Hi {user.name}," if user.name else "Hi,"
        text = f"{greeting}\n\n{heading}\n\n{render_task_lines(tasks)}\n"
        await self._post(user.email, subject, text)
        logger.info("digest_email_sent", user_id=str(user_id), task_count=len(tasks), subject=subject)
        return DigestResult(success=True, task_count=len(tasks))

    async def send_daily(self, user_id: uuid.UUID) -> DigestResult:
        now = self._clock().astimezone(self._tz)
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1) - timedelta(microseconds=1)
        return await self._send_digest(
            user_id,
            start,
            end,
            subject=f"Your tasks for {now.strftime('%A, %B %d')}",
            heading="Here is what is due today:",
        )

    async def send_weekly(self, user_id: uuid.UUID) -> DigestResult:
        now = self._clock().astimezone(self._tz)
        # Monday to Sunday
        start = (now - timedelta(days=now.weekday())).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        end = start + timedelta(days=7) - timedelta(microseconds=1)
        return await self._send_digest(
            user_id,
            start,
            end,
            subject=f"Your week ahead: {start.strftime('%b %d')} - {end.strftime('%b %d')}",
            heading="Here is what is due this week:",
        )
