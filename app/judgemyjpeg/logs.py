from __future__ import annotations

import logging
import re
from typing import Any

from flask import Flask, g, has_request_context
from flask.logging import default_handler

REDACTED = "[REDACTED]"
SENSITIVE_KEYS = ("password", "token", "secret", "key", "auth", "authorization", "cookie", "session", "csrf")

# key=value / "key": "value" pairs inside free-form messages
_INLINE_SECRET = re.compile(
    r"(?i)([\"']?\b[\w-]*(?:password|token|secret|api[_-]?key|authorization|cookie)[\w-]*\b[\"']?\s*[:=]\s*[\"']?)"
    r"(Bearer\s+)?([^\s,\"'&}]+)"
)

_HANDLER_MARKER = "_judgemyjpeg_handler"


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(s in lowered for s in SENSITIVE_KEYS)


def redact(value: Any, _depth: int = 0) -> Any:
    """Mask secrets in dicts/lists (by key) and in strings (inline key=value pairs)."""
    if _depth > 5:
        return value
    if isinstance(value, dict):
        return {
            k: (REDACTED if isinstance(k, str) and _is_sensitive(k) else redact(v, _depth + 1))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(redact(v, _depth + 1) for v in value)
    if isinstance(value, str):
        return _INLINE_SECRET.sub(lambda m: m.group(1) + (m.group(2) or "") + REDACTED, value)
    return value


class RedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Masks the rendered message; args are consumed here.
        record.msg = redact(record.getMessage())
        record.args = None
        return True


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        rid = None
        if has_request_context():
            rid = getattr(g, "request_id", None)
        record.request_id = rid or "-"
        return True


def configure_logging(app: Flask) -> None:
    """
    Route app + module loggers (`app.judgemyjpeg.*`) through one stream handler
    that stamps the request id and masks secrets.
    """
    logger = logging.getLogger(app.import_name)
    logger.removeHandler(default_handler)
    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    logger.setLevel(level)
    if any(getattr(h, _HANDLER_MARKER, False) for h in logger.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] rid=%(request_id)s %(message)s"))
    handler.addFilter(RequestIdFilter())
    handler.addFilter(RedactingFilter())
    setattr(handler, _HANDLER_MARKER, True)
    logger.addHandler(handler)
