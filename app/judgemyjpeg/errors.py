"""
API error hierarchy.

Handlers raise these; `create_app()` renders every ApiError as
`{"error": message, **details}` with the matching status code.
"""
from __future__ import annotations

from typing import Any

from app.judgemyjpeg.constants import (
    MSG_FORBIDDEN,
    MSG_NOT_FOUND,
    MSG_RATE_LIMITED,
    MSG_SERVER_ERROR,
    MSG_UNAUTHENTICATED,
)


class ApiError(Exception):
    status_code = 500
    default_message = MSG_SERVER_ERROR

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        body.update(self.details)
        return body


class BadRequest(ApiError):
    status_code = 400
    default_message = "Requête invalide"


class Conflict(BadRequest):
    """Duplicate resource (collection name, email, favorite...). Surfaces as 400."""

    default_message = "Ressource déjà existante"


class Unauthorized(ApiError):
    status_code = 401
    default_message = MSG_UNAUTHENTICATED


class Forbidden(ApiError):
    status_code = 403
    default_message = MSG_FORBIDDEN


class NotFound(ApiError):
    status_code = 404
    default_message = MSG_NOT_FOUND


class TooManyRequests(ApiError):
    status_code = 429
    default_message = MSG_RATE_LIMITED

    def __init__(self, message: str | None = None, *, retry_after: int = 60, details: dict[str, Any] | None = None):
        super().__init__(message, details=details)
        self.retry_after = max(int(retry_after), 1)


class BadGateway(ApiError):
    status_code = 502
    default_message = "Service externe indisponible"


class ServiceUnavailable(ApiError):
    status_code = 503
    default_message = "Service temporairement indisponible"
