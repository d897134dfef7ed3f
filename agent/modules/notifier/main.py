"""Notifier module - FastAPI service hosting the cron-triggered jobs.

An external scheduler calls the ``/api/cron/*`` endpoints on a fixed
cadence, possibly from several redundant instances at once; the distributed
lock behind each job makes sure only one of them does the work per tick.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from modules.notifier.digests import run_send_digests
from modules.notifier.dispatcher import SKIP_ALREADY_RUNNING, JobOutcome, run_push_reminders
from modules.notifier.middleware import RateLimitMiddleware
from modules.notifier.recurring import run_generate_recurring
from modules.notifier.senders import RedisPushSender, ResendDigestSender
from shared.auth import require_cron_auth
from shared.config import get_settings
from shared.database import get_session_factory
from shared.locks import LockManager
from shared.rate_limit import RATE_LIMITS, RateLimiter
from shared.redis import close_redis, get_redis
from shared.schemas.common import HealthResponse
from shared.store import KeyValueStore, StoreError, create_store

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Notifier Module", version="1.0.0")
app.add_middleware(RateLimitMiddleware)


def install_store(target: FastAPI, store: KeyValueStore) -> None:
    """Wire the coordination primitives onto ``target.state``."""
    target.state.store = store
    target.state.locks = LockManager(store)
    target.state.rate_limiter = RateLimiter(store)


@app.on_event("startup")
async def startup():
    settings = get_settings()
    # A store installed before startup (cli.py serve --local-store, tests) wins
    if getattr(app.state, "store", None) is None:
        install_store(app, await create_store())
    if getattr(app.state, "session_factory", None) is None:
        app.state.session_factory = get_session_factory()
    if getattr(app.state, "push_sender", None) is None:
        app.state.push_sender = RedisPushSender(
            app.state.session_factory, await get_redis(), channel=settings.push_channel
        )
    if getattr(app.state, "digest_sender", None) is None:
        app.state.digest_sender = ResendDigestSender(app.state.session_factory, settings)
    logger.info("notifier_module_ready", store=type(app.state.store).__name__)


@app.on_event("shutdown")
async def shutdown():
    await close_redis()
    logger.info("notifier_module_shutdown")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _run_job(name: str, run: Callable[[], Awaitable[JobOutcome]]) -> JSONResponse:
    """Run a locked job and describe what happened as JSON.

    A skipped run (busy lock or store outage, named in ``reason``) is a
    successful outcome; only unexpected failures produce a 500.
    """
    logger.info("cron_job_triggered", job=name)
    try:
        outcome = await run()
    except Exception as e:
        logger.error("cron_job_failed", job=name, error=str(e), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": str(e) or f"Failed to run {name}",
                "timestamp": _timestamp(),
            },
        )

    if outcome.skipped:
        return JSONResponse(
            content={
                "success": True,
                "skipped": True,
                "reason": outcome.reason or SKIP_ALREADY_RUNNING,
                "timestamp": _timestamp(),
            }
        )
    return JSONResponse(
        content={
            "success": True,
            "timestamp": _timestamp(),
            "summary": outcome.summary.to_json_dict(),
        }
    )


@app.api_route("/api/cron/push-reminders", methods=["GET", "POST"])
async def push_reminders(request: Request, _=Depends(require_cron_auth)):
    """Send reminder / overdue / due-today pushes. Recommended cadence: every 15 minutes."""
    state = request.app.state
    return await _run_job(
        "push-reminders",
        lambda: run_push_reminders(
            state.locks, state.session_factory, state.push_sender, get_settings()
        ),
    )


@app.api_route("/api/cron/generate-recurring", methods=["GET", "POST"])
async def generate_recurring(request: Request, _=Depends(require_cron_auth)):
    """Create the next instances of completed recurring tasks. Hourly."""
    state = request.app.state
    return await _run_job(
        "generate-recurring",
        lambda: run_generate_recurring(state.locks, state.session_factory, get_settings()),
    )


@app.api_route("/api/cron/send-notifications", methods=["GET", "POST"])
async def send_notifications(request: Request, _=Depends(require_cron_auth)):
    """Send daily / weekly email digests. Hourly."""
    state = request.app.state
    return await _run_job(
        "send-notifications",
        lambda: run_send_digests(
            state.locks, state.session_factory, state.digest_sender, get_settings()
        ),
    )


@app.get("/health", response_model=HealthResponse)
async def health(request: Request):
    store: KeyValueStore | None = getattr(request.app.state, "store", None)
    try:
        ok = store is not None and await store.ping()
    except StoreError as e:
        logger.warning("health_store_unreachable", error=str(e))
        ok = False
    if not ok:
        return JSONResponse(status_code=503, content={"status": "degraded", "store": "down"})
    return HealthResponse(status="ok", store="up")


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@app.get("/api/admin/locks/{name:path}")
async def lock_status(name: str, request: Request, _=Depends(require_cron_auth)):
    locks: LockManager = request.app.state.locks
    return {
        "name": name,
        "locked": await locks.is_locked(name),
        "ttl": await locks.lock_ttl(name),
    }


@app.delete("/api/admin/locks/{name:path}")
async def force_release_lock(name: str, request: Request, _=Depends(require_cron_auth)):
    locks: LockManager = request.app.state.locks
    try:
        await locks.force_release(name)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")
    return {"name": name, "released": True}


@app.get("/api/admin/rate-limits/{identifier}")
async def rate_limit_status(
    identifier: str,
    request: Request,
    route: str = "default",
    policy: str = "api",
    _=Depends(require_cron_auth),
):
    if policy not in RATE_LIMITS:
        raise HTTPException(status_code=400, detail=f"Unknown policy: {policy}")
    limiter: RateLimiter = request.app.state.rate_limiter
    try:
        result = await limiter.status(identifier, RATE_LIMITS[policy], route_tag=route)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")
    return {"identifier": identifier, "route": route, "policy": policy, **result.model_dump()}


@app.delete("/api/admin/rate-limits/{identifier}")
async def reset_rate_limit(
    identifier: str,
    request: Request,
    route: str = "default",
    _=Depends(require_cron_auth),
):
    limiter: RateLimiter = request.app.state.rate_limiter
    await limiter.reset(identifier, route_tag=route)
    return {"identifier": identifier, "route": route, "reset": True}
