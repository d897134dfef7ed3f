"""Authentication for externally triggered cron endpoints.

The external scheduler must send ``Authorization: Bearer <CRON_SECRET>``.

Usage in a FastAPI app::

    from shared.auth import require_cron_auth

    @app.post("/api/cron/push-reminders")
    async def push_reminders(_=Depends(require_cron_auth)):
        ...
"""

from __future__ import annotations

import hmac

import structlog
from fastapi import HTTPException, Request

from shared.config import get_settings

logger = structlog.get_logger()

_LOCAL_HOSTS = ("localhost", "127.0.0.1")


def get_cron_auth_headers() -> dict[str, str]:
    """Return HTTP headers for calling the cron endpoints (CLI, scripts).

    Returns an empty dict when no secret is configured (dev mode).
    """
    secret = get_settings().cron_secret
    if not secret:
        return {}
    return {"Authorization": f"Bearer {secret}"}


async def require_cron_auth(request: Request) -> None:
    """FastAPI dependency that validates the cron shared secret.

    Raises 401 if the secret is missing or incorrect. When no secret is
    configured only requests addressed to localhost are accepted.
    """
    expected = get_settings().cron_secret
    if not expected:
        host = request.headers.get("host", "")
        if any(h in host for h in _LOCAL_HOSTS):
            logger.warning(
                "cron_auth_disabled",
                path=request.url.path,
                hint="Set CRON_SECRET in .env for production",
            )
            return
        raise HTTPException(status_code=401, detail="Unauthorized - cron secret not configured")

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized - missing cron secret")

    token = auth_header[7:]  # strip "Bearer "
    if not hmac.compare_digest(token.encode(), expected.encode()):
        logger.warning(
            "cron_auth_failed",
            path=request.url.path,
            remote=request.client.host if request.client else "unknown",
        )
        raise HTTPException(status_code=401, detail="Unauthorized - invalid cron secret")
