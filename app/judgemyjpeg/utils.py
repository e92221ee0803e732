from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from flask import has_request_context, request


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns are timezone-less UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat() + "Z"


def parse_json_field(raw: str | None) -> tuple[dict | None, str | None]:
    """Parse a JSON object sent as a form field."""
    if not raw or not raw.strip():
        return None, None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        return None, f"JSON invalide: {e}"
    if not isinstance(value, dict):
        return None, "Un objet JSON est attendu."
    return value, None


def load_metadata(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return {"raw": raw}
    return value if isinstance(value, dict) else {"value": value}


def json_body() -> dict[str, Any]:
    """Request JSON body as a dict (empty dict for missing/invalid bodies)."""
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def str_field(payload: dict[str, Any], key: str) -> str:
    """Stripped string value of a JSON field; "" when missing or not a string."""
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


def client_ip() -> str:
    """
    Best-effort client IP: first X-Forwarded-For hop, then X-Real-IP, then the socket peer.
    """
    if not has_request_context():
        return "unknown"
    forwarded = (request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = (request.headers.get("X-Real-IP") or "").strip()
    if real_ip:
        return real_ip
    return request.remote_addr or "unknown"


def user_agent() -> str:
    if not has_request_context():
        return ""
    return request.headers.get("User-Agent") or ""


def parse_pagination(default_limit: int = 50, max_limit: int = 100) -> tuple[int, int]:
    """Read `page`/`limit` query params, clamped to sane bounds."""
    try:
        page = int(request.args.get("page") or 1)
    except ValueError:
        page = 1
    try:
        limit = int(request.args.get("limit") or default_limit)
    except ValueError:
        limit = default_limit
    return max(page, 1), min(max(limit, 1), max_limit)


def pagination_dict(page: int, limit: int, total: int) -> dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit if limit else 0,
    }
