from __future__ import annotations

from flask import Blueprint, g, request

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.constants import PERM_ADMIN_FEEDBACK
from app.judgemyjpeg.db import db_session
from app.judgemyjpeg.errors import BadRequest, NotFound
from app.judgemyjpeg.modules.feedback.models import Feedback
from app.judgemyjpeg.modules.feedback.service import (
    FEEDBACK_STATUSES,
    FEEDBACK_TYPES,
    feedback_query,
    feedback_to_dict,
    stats_by_type,
    update_feedback_status,
)
from app.judgemyjpeg.rbac import require_admin
from app.judgemyjpeg.utils import json_body, pagination_dict, parse_pagination, str_field

bp = Blueprint("feedback_admin", __name__)


@bp.get("/feedbacks")
@require_admin(PERM_ADMIN_FEEDBACK)
def feedbacks_list():
    s = db_session()
    page, limit = parse_pagination(default_limit=20)
    status = (request.args.get("status") or "").strip()
    type_ = (request.args.get("type") or "").strip()
    if status and status not in FEEDBACK_STATUSES:
        raise BadRequest("Statut invalide")
    if type_ and type_ not in FEEDBACK_TYPES:
        raise BadRequest("Type de feedback invalide")
    try:
        rating = int(request.args.get("rating") or 0) or None
    except ValueError:
        rating = None
    q = feedback_query(
        s,
        status=status or None,
        type_=type_ or None,
        rating=rating,
        search=(request.args.get("search") or "").strip() or None,
    )
    total = q.count()
    rows = q.order_by(Feedback.created_at.desc(), Feedback.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "feedbacks": [feedback_to_dict(f) for f in rows],
        "pagination": pagination_dict(page, limit, total),
        "stats": stats_by_type(s),
    }


@bp.patch("/feedbacks")
@require_admin(PERM_ADMIN_FEEDBACK)
def feedbacks_update():
    payload = json_body()
    try:
        feedback_id = int(payload.get("id"))
    except (TypeError, ValueError):
        raise BadRequest("ID de feedback requis")
    status = str_field(payload, "status")
    if status not in FEEDBACK_STATUSES:
        raise BadRequest("Statut invalide")
    s = db_session()
    feedback = s.get(Feedback, feedback_id)
    if not feedback:
        raise NotFound("Feedback non trouvé")
    old_status = feedback.status
    notes = payload.get("adminNotes")
    update_feedback_status(feedback, status, notes if isinstance(notes, str) else None)
    record_event(
        s,
        actor=getattr(g, "current_user", None),
        action="feedback_updated",
        entity_type="Feedback",
        entity_id=str(feedback.id),
        metadata={"old_status": old_status, "new_status": status, "via_secret": bool(getattr(g, "admin_via_secret", False))},
    )
    s.commit()
    return {"success": True, "feedback": feedback_to_dict(feedback)}
