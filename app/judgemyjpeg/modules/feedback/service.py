from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.judgemyjpeg.utils import isoformat, load_metadata, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.judgemyjpeg.models import User
    from app.judgemyjpeg.modules.feedback.models import Feedback

FEEDBACK_TYPES = ("bug", "feature", "general", "love", "confusion")
FEEDBACK_STATUSES = ("new", "read", "implemented", "ignored")
MIN_MESSAGE_LENGTH = 5
MAX_MESSAGE_LENGTH = 2000
MAX_TITLE_LENGTH = 100
MAX_PAGE_LENGTH = 200
MAX_USER_AGENT_LENGTH = 500

MSG_THANKS = "Merci pour votre feedback ! Nous le prenons en compte."


def _parse_rating(raw: Any) -> tuple[int | None, str | None]:
    if raw in (None, ""):
        return None, None
    try:
        rating = int(raw)
    except (TypeError, ValueError):
        return None, "La note doit être un nombre entre 1 et 5"
    if rating < 1 or rating > 5:
        return None, "La note doit être un nombre entre 1 et 5"
    return rating, None


def validate_feedback_payload(payload: dict) -> list[str]:
    errors = []
    message = (payload.get("message") or "").strip() if isinstance(payload.get("message"), str) else ""
    if len(message) < MIN_MESSAGE_LENGTH:
        errors.append(f"Le message doit contenir au moins {MIN_MESSAGE_LENGTH} caractères")
    elif len(message) > MAX_MESSAGE_LENGTH:
        errors.append(f"Le message ne peut pas dépasser {MAX_MESSAGE_LENGTH} caractères")
    if payload.get("type") not in FEEDBACK_TYPES:
        errors.append("Type de feedback invalide")
    _, rating_err = _parse_rating(payload.get("rating"))
    if rating_err:
        errors.append(rating_err)
    return errors


def _clip(value: Any, limit: int) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value[:limit] or None


def create_feedback(
    s: "Session",
    payload: dict,
    *,
    user: "User | None",
    user_agent: str = "",
    client_ip: str | None = None,
) -> "Feedback":
    """Store a validated feedback. Caller validates and commits."""
    from app.judgemyjpeg.modules.feedback.models import Feedback

    rating, _ = _parse_rating(payload.get("rating"))
    technical = {
        "userAgent": (user_agent or "")[:MAX_USER_AGENT_LENGTH],
        "ip": client_ip,
        "submittedAt": isoformat(utcnow()),
    }
    extra = payload.get("metadata")
    if isinstance(extra, dict):
        technical["client"] = extra
    email = _clip(payload.get("email"), 320) or (user.email if user else None)
    now = utcnow()
    feedback = Feedback(
        user_id=user.id if user else None,
        email=email,
        type=payload["type"],
        category=_clip(payload.get("category"), 64),
        rating=rating,
        title=_clip(payload.get("title"), MAX_TITLE_LENGTH),
        message=payload["message"].strip(),
        page=_clip(payload.get("page"), MAX_PAGE_LENGTH),
        user_agent=(user_agent or "")[:MAX_USER_AGENT_LENGTH] or None,
        metadata_json=json.dumps(technical, sort_keys=True, default=str),
        status="new",
        created_at=now,
        updated_at=now,
    )
    s.add(feedback)
    s.flush()
    return feedback


def feedback_query(s: "Session", *, status: str | None, type_: str | None, rating: int | None, search: str | None):
    from app.judgemyjpeg.modules.feedback.models import Feedback

    q = s.query(Feedback)
    if status:
        q = q.filter(Feedback.status == status)
    if type_:
        q = q.filter(Feedback.type == type_)
    if rating:
        q = q.filter(Feedback.rating == rating)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Feedback.message.ilike(like), Feedback.title.ilike(like), Feedback.email.ilike(like)))
    return q


def stats_by_type(s: "Session") -> dict[str, int]:
    from app.judgemyjpeg.modules.feedback.models import Feedback

    rows = s.query(Feedback.type, func.count(Feedback.id)).group_by(Feedback.type).all()
    stats = {t: 0 for t in FEEDBACK_TYPES}
    stats.update({t: int(n) for t, n in rows})
    stats["total"] = sum(stats[t] for t in FEEDBACK_TYPES)
    return stats


def update_feedback_status(feedback: "Feedback", status: str, admin_notes: str | None = None) -> "Feedback":
    if status not in FEEDBACK_STATUSES:
        raise ValueError("Statut invalide")
    feedback.status = status
    if admin_notes is not None:
        feedback.admin_notes = admin_notes.strip() or None
    feedback.updated_at = utcnow()
    return feedback


def feedback_to_dict(feedback: "Feedback") -> dict[str, Any]:
    return {
        "id": feedback.id,
        "userId": feedback.user_id,
        "email": feedback.email,
        "type": feedback.type,
        "category": feedback.category,
        "rating": feedback.rating,
        "title": feedback.title,
        "message": feedback.message,
        "page": feedback.page,
        "metadata": load_metadata(feedback.metadata_json),
        "status": feedback.status,
        "adminNotes": feedback.admin_notes,
        "createdAt": isoformat(feedback.created_at),
        "updatedAt": isoformat(feedback.updated_at),
    }
