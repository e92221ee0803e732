"""
Cloudflare Turnstile server-side verification.
"""
from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, request

from app.judgemyjpeg.errors import BadRequest
from app.judgemyjpeg.utils import client_ip

logger = logging.getLogger(__name__)

SITEVERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
DEV_BYPASS_TOKEN = "dev-bypass-token"
DEFAULT_ALLOWED_HOSTNAMES = ("judgemyjpeg.fr", "www.judgemyjpeg.fr", "localhost")

MSG_TOKEN_MISSING = "Token de vérification manquant"
MSG_VERIFICATION_FAILED = "Vérification anti-bot échouée"


class TurnstileError(RuntimeError):
    pass


def siteverify(secret: str, token: str, remote_ip: str | None = None, *, timeout_seconds: int = 10) -> dict[str, Any]:
    form = {"secret": secret, "response": token}
    if remote_ip and remote_ip != "unknown":
        form["remoteip"] = remote_ip
    req = urllib.request.Request(
        SITEVERIFY_URL,
        data=urllib.parse.urlencode(form).encode("utf-8"),
        method="POST",
    )
    req.add_header("Content-Type", "application/x-www-form-urlencoded")
    try:
        with urllib.request.urlopen(req, timeout=timeout_seconds) as resp:
            raw = resp.read()
    except (urllib.error.URLError, TimeoutError, OSError) as e:
        raise TurnstileError(f"Turnstile siteverify unreachable: {e}") from e
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise TurnstileError("Invalid JSON from Turnstile") from e
    if not isinstance(payload, dict):
        raise TurnstileError("Unexpected Turnstile payload")
    return payload


def verify_turnstile_token(
    token: str | None,
    remote_ip: str | None = None,
    *,
    secret: str,
    allowed_hostnames: tuple[str, ...] = DEFAULT_ALLOWED_HOSTNAMES,
    env: str = "production",
) -> bool:
    if not token:
        return False
    if token == DEV_BYPASS_TOKEN:
        if env == "development":
            logger.info("Turnstile dev bypass accepted")
            return True
        logger.warning("SECURITY: Turnstile dev bypass token rejected outside development")
        return False
    if not secret:
        logger.error("TURNSTILE_SECRET_KEY not configured; rejecting token")
        return False

    try:
        result = siteverify(secret, token, remote_ip)
    except TurnstileError as e:
        logger.error("Turnstile verification error: %s", e)
        return False

    if not result.get("success"):
        logger.warning("SECURITY: Turnstile rejected token errors=%s", result.get("error-codes"))
        return False
    hostname = (result.get("hostname") or "").lower()
    if not hostname or not result.get("challenge_ts"):
        logger.warning("SECURITY: Turnstile response missing hostname/challenge_ts")
        return False
    if hostname not in allowed_hostnames:
        logger.warning("SECURITY: Turnstile hostname not allowed hostname=%s", hostname)
        return False
    return True


def require_turnstile(token: str | None, remote_ip: str | None = None) -> tuple[bool, str | None]:
    """Verify against the current app's config. Returns (ok, error_message)."""
    if not token:
        return False, MSG_TOKEN_MISSING
    ok = verify_turnstile_token(
        token,
        remote_ip,
        secret=current_app.config.get("TURNSTILE_SECRET_KEY") or "",
        allowed_hostnames=tuple(current_app.config.get("TURNSTILE_ALLOWED_HOSTNAMES") or DEFAULT_ALLOWED_HOSTNAMES),
        env=current_app.config.get("ENV") or "production",
    )
    if not ok:
        return False, MSG_VERIFICATION_FAILED
    return True, None


def _token_from_request() -> str | None:
    token = request.headers.get("X-Turnstile-Token")
    if token:
        return token.strip()
    payload = request.get_json(silent=True)
    if isinstance(payload, dict) and payload.get("turnstileToken"):
        return str(payload["turnstileToken"]).strip()
    return (request.form.get("turnstileToken") or "").strip() or None


def turnstile_protected(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Require a valid Turnstile token when TURNSTILE_SECRET_KEY is configured."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if current_app.config.get("TURNSTILE_SECRET_KEY"):
            ok, error = require_turnstile(_token_from_request(), client_ip())
            if not ok:
                raise BadRequest(error)
        return fn(*args, **kwargs)

    return wrapped
