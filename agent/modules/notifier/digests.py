"""Daily and weekly email digest job (runs hourly)."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.notifier import repository
from modules.notifier.candidates import parse_hhmm
from modules.notifier.dispatcher import JobOutcome, run_locked
from modules.notifier.fanout import SendOutcome, fan_out
from modules.notifier.senders import DigestSender
from shared.config import Settings
from shared.locks import LockManager
from shared.models.notification_preference import NotificationPreference
from shared.schemas.notifications import DigestSummary

logger = structlog.get_logger()

SEND_NOTIFICATIONS_LOCK = "cron:send-notifications"

WEEKDAYS = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")


@dataclass(frozen=True)
class DigestJob:
    user_id: uuid.UUID
    kind: str  # "daily" | "weekly"


def _hour_of(value: str) -> int | None:
    try:
        return parse_hhmm(value).hour
    except (ValueError, AttributeError):
        return None


def select_digests(preferences: list[NotificationPreference], now: datetime) -> list[DigestJob]:
    """Digests due this hour. ``now`` is in the local timezone."""
    current_day = WEEKDAYS[now.weekday()]
    jobs: list[DigestJob] = []
    for pref in preferences:
        if pref.daily_email_enabled and _hour_of(pref.daily_email_time) == now.hour:
            jobs.append(DigestJob(user_id=pref.user_id, kind="daily"))
        if (
            pref.weekly_email_enabled
            and (pref.weekly_email_day or "").upper() == current_day
            and _hour_of(pref.weekly_email_time) == now.hour
        ):
            jobs.append(DigestJob(user_id=pref.user_id, kind="weekly"))
    return jobs


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def send_digests(
    session_factory: async_sessionmaker[AsyncSession],
    sender: DigestSender,
    settings: Settings,
    now: datetime,
) -> DigestSummary:
    local_now = now.astimezone(ZoneInfo(settings.timezone))

    async with session_factory() as session:
        preferences = await repository.load_digest_preferences(session)

    jobs = select_digests(preferences, local_now)
    logger.info("digest_check_started", users=len(preferences), due=len(jobs))

    async def _send(job: DigestJob) -> bool:
        if job.kind == "daily":
            result = await sender.send_daily(job.user_id)
        else:
            result = await sender.send_weekly(job.user_id)
        if not result.success:
            logger.info("digest_skipped", user_id=str(job.user_id), kind=job.kind, reason=result.reason)
        return result.success

    results = await fan_out(jobs, _send, concurrency=settings.notifier_max_concurrency)

    summary = DigestSummary(total_users=len(preferences))
    for r in results:
        if r.outcome == SendOutcome.FAILED:
            summary.errors += 1
            logger.error("digest_send_error", user_id=str(r.item.user_id), kind=r.item.kind, error=r.error)
        elif r.item.kind == "daily":
            if r.outcome == SendOutcome.SENT:
                summary.daily_emails_sent += 1
            else:
                summary.daily_emails_skipped += 1
        elif r.outcome == SendOutcome.SENT:
            summary.weekly_emails_sent += 1
        else:
            summary.weekly_emails_skipped += 1

    logger.info("digest_check_completed", **summary.to_json_dict())
    return summary


async def run_send_digests(
    locks: LockManager,
    session_factory: async_sessionmaker[AsyncSession],
    sender: DigestSender,
    settings: Settings,
    clock: Callable[[], datetime] = _utcnow,
) -> JobOutcome[DigestSummary]:
    now = clock()

    async def _body() -> DigestSummary:
        return await send_digests(session_factory, sender, settings, now)

    return await run_locked(
        locks, SEND_NOTIFICATIONS_LOCK, _body, timeout_seconds=settings.digest_lock_timeout_seconds
    )
