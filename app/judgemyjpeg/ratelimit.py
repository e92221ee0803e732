"""
In-memory fixed-window rate limiting.

One process-local map from identifier to (count, reset_at). Nothing is shared
between gunicorn workers or instances, so limits are per process.
"""
from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import current_app, g, request

from app.judgemyjpeg.constants import MSG_RATE_LIMITED
from app.judgemyjpeg.errors import TooManyRequests
from app.judgemyjpeg.utils import client_ip, user_agent

API_PREFIXES = ("/api/photos/", "/api/auth/", "/api/admin/")
API_WINDOW_SECONDS = 60
DEFAULT_API_LIMIT = 30
ENDPOINT_LIMITS = {
    "/api/photos/analyze": 5,
    "/api/auth/register": 3,
    "/api/auth/forgot-password": 3,
}


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def hit(self, identifier: str, max_requests: int, window_seconds: int, now: float | None = None) -> RateLimitResult:
        now = self._clock() if now is None else now
        with self._lock:
            self._purge(now)
            window = self._windows.get(identifier)
            if window is None:
                window = _Window(count=0, reset_at=now + window_seconds)
                self._windows[identifier] = window
            if window.count >= max_requests:
                return RateLimitResult(
                    success=False,
                    limit=max_requests,
                    remaining=0,
                    reset_at=window.reset_at,
                    retry_after=max(1, math.ceil(window.reset_at - now)),
                )
            window.count += 1
            return RateLimitResult(
                success=True,
                limit=max_requests,
                remaining=max_requests - window.count,
                reset_at=window.reset_at,
                retry_after=0,
            )

    def _purge(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if w.reset_at <= now]
        for k in expired:
            del self._windows[k]

    def reset(self, identifier: str | None = None) -> None:
        with self._lock:
            if identifier is None:
                self._windows.clear()
            else:
                self._windows.pop(identifier, None)

    def __len__(self) -> int:
        return len(self._windows)


def get_limiter() -> FixedWindowRateLimiter:
    return current_app.extensions["rate_limiter"]


def identifier_for_request() -> str:
    """Authenticated user id, else an IP + User-Agent fingerprint."""
    user = getattr(g, "current_user", None)
    if user is not None:
        return f"user:{user.id}"
    return f"{client_ip()}-{user_agent()[:50]}"


def limit_for_path(path: str) -> int | None:
    """Per-minute budget for an API path, or None when the path is not limited."""
    if not path.startswith(API_PREFIXES):
        return None
    return ENDPOINT_LIMITS.get(path.rstrip("/"), DEFAULT_API_LIMIT)


def check_api_rate_limit() -> None:
    """before_request hook: per-endpoint budgets for the photo/auth/admin APIs."""
    if not current_app.config.get("RATE_LIMIT_ENABLED", True):
        return None
    max_requests = limit_for_path(request.path)
    if max_requests is None:
        return None
    key = f"api:{request.path.rstrip('/')}:{identifier_for_request()}"
    result = get_limiter().hit(key, max_requests, API_WINDOW_SECONDS)
    g.rate_limit = result
    if not result.success:
        current_app.logger.warning(
            "SECURITY: rate limit exceeded path=%s identifier=%s", request.path, identifier_for_request()
        )
        raise TooManyRequests(MSG_RATE_LIMITED, retry_after=result.retry_after)
    return None


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_at)),
    }


def rate_limit(
    max_requests: int,
    window_seconds: int,
    *,
    scope: str,
    message: str = MSG_RATE_LIMITED,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Route decorator with its own bucket, independent of the API-wide guard."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            if current_app.config.get("RATE_LIMIT_ENABLED", True):
                result = get_limiter().hit(f"{scope}:{identifier_for_request()}", max_requests, window_seconds)
                if not result.success:
                    raise TooManyRequests(message, retry_after=result.retry_after)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
