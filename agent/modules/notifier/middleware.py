"""Rate limiting middleware backed by the shared store."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from shared.config import get_settings, parse_list
from shared.rate_limit import (
    RATE_LIMITS,
    RateLimitPolicy,
    RateLimiter,
    rate_limit_headers,
    retry_after_seconds,
)

logger = structlog.get_logger()


def policy_for_path(path: str) -> RateLimitPolicy:
    """Pick the policy for a route class."""
    if path in ("/api/auth/signin", "/api/auth/signout"):
        return RATE_LIMITS["auth"]
    if path.startswith("/api/notifications/push"):
        return RATE_LIMITS["push"]
    if path.startswith("/api/notifications/email"):
        return RATE_LIMITS["email"]
    if "/calendar" in path:
        return RATE_LIMITS["calendar"]
    return RATE_LIMITS["api"]


def client_identifier(request: Request) -> str:
    """Client IP, preferring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Throttle ``/api/`` requests per client and route.

    The limiter is read from ``app.state.rate_limiter`` at request time;
    requests pass through untouched until one is installed.
    """

    def __init__(self, app, exclude_paths: list[str] | None = None):
        super().__init__(app)
        if exclude_paths is None:
            exclude_paths = parse_list(get_settings().rate_limit_exempt_paths)
        self.exclude_paths = exclude_paths

    def _is_exempt(self, path: str) -> bool:
        for p in self.exclude_paths:
            # Entries ending in "/" are prefixes; others match the path or its children
            if p.endswith("/"):
                if path.startswith(p):
                    return True
            elif path == p or path.startswith(p + "/") or path.startswith(p + "?"):
                return True
        return False

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
        if limiter is None or not path.startswith("/api/") or self._is_exempt(path):
            return await call_next(request)

        policy = policy_for_path(path)
        result = await limiter.check(client_identifier(request), policy, route_tag=path)
        headers = rate_limit_headers(result)

        if not result.allowed:
            reset_at = datetime.fromtimestamp(result.reset_at_ms / 1000, tz=timezone.utc)
            headers["Retry-After"] = str(retry_after_seconds(result))
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too Many Requests",
                    "message": "Rate limit exceeded. Please try again later.",
                    "retryAfter": reset_at.isoformat().replace("+00:00", "Z"),
                },
                headers=headers,
            )

        response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = value
        return response
