from __future__ import annotations

import hmac
import secrets
import threading
import time
from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g, request

from app.judgemyjpeg.constants import PERM_ADMIN_VIEW
from app.judgemyjpeg.errors import Forbidden, TooManyRequests, Unauthorized
from app.judgemyjpeg.models import User
from app.judgemyjpeg.utils import client_ip

ADMIN_TOKEN_TTL_SECONDS = 4 * 3600
ADMIN_MAX_FAILED_ATTEMPTS = 5
ADMIN_BLOCK_SECONDS = 30 * 60
ADMIN_ATTEMPT_RESET_SECONDS = 3600


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def is_admin(user: User | None) -> bool:
    return user_has_permission(user, PERM_ADMIN_VIEW)


class AdminTokenStore:
    """
    Short-lived bearer tokens issued by the shared-secret admin login, plus the
    per-IP failure counter that locks the login out after repeated bad secrets.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._tokens: dict[str, float] = {}
        self._failures: dict[str, tuple[int, float]] = {}  # ip -> (count, first failure at)
        self._blocked_until: dict[str, float] = {}
        self._lock = threading.Lock()

    def issue(self) -> tuple[str, float]:
        token = secrets.token_hex(32)
        expires_at = self._clock() + ADMIN_TOKEN_TTL_SECONDS
        with self._lock:
            self._tokens[token] = expires_at
        return token, expires_at

    def is_valid(self, token: str | None) -> bool:
        if not token:
            return False
        now = self._clock()
        with self._lock:
            expires_at = self._tokens.get(token)
            if expires_at is None:
                return False
            if expires_at <= now:
                del self._tokens[token]
                return False
            return True

    def revoke(self, token: str) -> None:
        with self._lock:
            self._tokens.pop(token, None)

    def blocked_for(self, ip: str) -> int:
        """Seconds left on an IP lockout (0 when not blocked)."""
        now = self._clock()
        with self._lock:
            until = self._blocked_until.get(ip)
            if until is None:
                return 0
            if until <= now:
                del self._blocked_until[ip]
                return 0
            return int(until - now) + 1

    def record_failure(self, ip: str) -> int:
        now = self._clock()
        with self._lock:
            count, first_at = self._failures.get(ip, (0, now))
            if now - first_at > ADMIN_ATTEMPT_RESET_SECONDS:
                count, first_at = 0, now
            count += 1
            self._failures[ip] = (count, first_at)
            if count >= ADMIN_MAX_FAILED_ATTEMPTS:
                self._blocked_until[ip] = now + ADMIN_BLOCK_SECONDS
                self._failures.pop(ip, None)
            return count

    def clear_failures(self, ip: str) -> None:
        with self._lock:
            self._failures.pop(ip, None)


def admin_secret_matches(candidate: str | None) -> bool:
    expected = current_app.config.get("ADMIN_SECRET") or ""
    if not expected or not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def has_admin_credentials() -> bool:
    """
    Shared secret header or a live admin bearer token.

    The header shares the admin login's per-IP lockout: a blocked IP gets 429
    even with the right secret, and a wrong secret counts as a failed attempt.
    """
    store: AdminTokenStore = current_app.extensions["admin_tokens"]
    candidate = request.headers.get("X-Admin-Secret")
    token = bearer_token()
    if not candidate and not token:
        return False
    ip = client_ip()
    blocked = store.blocked_for(ip)
    if blocked:
        raise TooManyRequests("Trop de tentatives. Réessayez plus tard.", retry_after=blocked)
    if candidate:
        if admin_secret_matches(candidate):
            store.clear_failures(ip)
            return True
        attempts = store.record_failure(ip)
        current_app.logger.warning("SECURITY: bad admin secret header ip=%s attempts=%s", ip, attempts)
        blocked = store.blocked_for(ip)
        if blocked:
            raise TooManyRequests("Trop de tentatives. Réessayez plus tard.", retry_after=blocked)
    return store.is_valid(token)


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            raise Unauthorized()
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                raise Unauthorized()
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                raise Forbidden()
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_admin(permission_key: str = PERM_ADMIN_VIEW) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Admin gate: the shared secret (header or bearer token) grants full access;
    otherwise the session user needs `permission_key`.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            if has_admin_credentials():
                g.admin_via_secret = True
                return fn(*args, **kwargs)
            g.admin_via_secret = False
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                current_app.logger.warning("SECURITY: anonymous admin access attempt path=%s", request.path)
                raise Unauthorized()
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                current_app.logger.warning(
                    "SECURITY: admin access denied user_id=%s permission=%s path=%s", user.id, permission_key, request.path
                )
                raise Forbidden()
            return fn(*args, **kwargs)

        return wrapped

    return decorator
