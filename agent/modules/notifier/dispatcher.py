"""Push-reminder job: one locked run per cron tick across all instances.

Per invocation::

    START -> LOCK_ATTEMPT -> SKIPPED            (another instance holds the lock)
                          -> RUNNING -> AGGREGATING -> DONE

RUNNING builds the candidate list and fans out one independent send per
candidate. A failed send is counted and never aborts the others.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Generic, TypeVar
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.notifier import repository
from modules.notifier.candidates import build_candidates
from modules.notifier.fanout import ItemResult, SendOutcome, fan_out
from modules.notifier.senders import PushSender
from shared.config import Settings
from shared.locks import LockManager
from shared.schemas.notifications import (
    DispatchSummary,
    NotificationCandidate,
    NotificationKind,
)

logger = structlog.get_logger()

PUSH_REMINDERS_LOCK = "cron:push-reminders"

S = TypeVar("S")


@dataclass
class JobOutcome(Generic[S]):
    """What a locked job run produced; ``summary`` is None when skipped."""

    skipped: bool
    summary: S | None = None
    reason: str | None = None  # why the run was skipped


SKIP_ALREADY_RUNNING = "already running"
SKIP_STORE_UNAVAILABLE = "store unavailable"


async def run_locked(
    locks: LockManager,
    name: str,
    body: Callable[[], Awaitable[S]],
    timeout_seconds: int,
) -> JobOutcome[S]:
    """Run ``body`` under the named lock, or report why it was skipped.

    A store outage is reported apart from a busy lock; either way the
    body does not run.
    """
    async with locks.hold(name, timeout_seconds=timeout_seconds) as lock:
        if not lock.acquired:
            if lock.error is not None:
                logger.warning("job_skipped_store_unavailable", job=name, error=lock.error)
                return JobOutcome(skipped=True, reason=SKIP_STORE_UNAVAILABLE)
            logger.info("job_skipped_already_running", job=name)
            return JobOutcome(skipped=True, reason=SKIP_ALREADY_RUNNING)
        return JobOutcome(skipped=False, summary=await body())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def summarize(
    results: list[ItemResult[NotificationCandidate]], users_processed: int
) -> DispatchSummary:
    summary = DispatchSummary(
        users_processed=users_processed,
        notifications_collected=len(results),
    )
    for r in results:
        if r.outcome == SendOutcome.FAILED:
            summary.errors += 1
        elif r.outcome == SendOutcome.NOT_SENT:
            summary.not_sent += 1
        elif r.item.kind == NotificationKind.REMINDER:
            summary.reminders_sent += 1
        elif r.item.kind == NotificationKind.OVERDUE:
            summary.overdue_sent += 1
        else:
            summary.due_today_sent += 1
    return summary


async def dispatch_candidates(
    candidates: list[NotificationCandidate],
    sender: PushSender,
    concurrency: int = 10,
) -> list[ItemResult[NotificationCandidate]]:
    """Send every candidate through the sender method for its kind."""
    senders = {
        NotificationKind.REMINDER: sender.send_reminder,
        NotificationKind.OVERDUE: sender.send_overdue,
        NotificationKind.DUE_TODAY: sender.send_due_today,
    }

    async def _send(candidate: NotificationCandidate) -> bool:
        return await senders[candidate.kind](candidate.user_id, candidate.task)

    return await fan_out(candidates, _send, concurrency=concurrency)


async def collect_and_send(
    session_factory: async_sessionmaker[AsyncSession],
    sender: PushSender,
    settings: Settings,
    now: datetime,
) -> DispatchSummary:
    """The locked body of the job."""
    local_now = now.astimezone(ZoneInfo(settings.timezone))

    async with session_factory() as session:
        recipients = await repository.load_push_recipients(
            session, now, settings.push_lookahead_hours
        )

    candidates = build_candidates(
        recipients,
        local_now,
        overdue_hour=settings.overdue_notification_hour,
        due_today_hour=settings.due_today_notification_hour,
        window_minutes=settings.reminder_window_minutes,
    )
    logger.info(
        "push_candidates_collected",
        users=len(recipients),
        candidates=len(candidates),
    )

    results = await dispatch_candidates(
        candidates, sender, concurrency=settings.notifier_max_concurrency
    )
    summary = summarize(results, users_processed=len(recipients))
    logger.info("push_reminders_completed", **summary.to_json_dict())
    return summary


async def run_push_reminders(
    locks: LockManager,
    session_factory: async_sessionmaker[AsyncSession],
    sender: PushSender,
    settings: Settings,
    clock: Callable[[], datetime] = _utcnow,
) -> JobOutcome[DispatchSummary]:
    """Run the push-reminder job unless another instance already is."""
    now = clock()

    async def _body() -> DispatchSummary:
        return await collect_and_send(session_factory, sender, settings, now)

    return await run_locked(
        locks, PUSH_REMINDERS_LOCK, _body, timeout_seconds=settings.push_lock_timeout_seconds
    )
