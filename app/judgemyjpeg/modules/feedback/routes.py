from __future__ import annotations

from flask import Blueprint, g

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.db import db_session
from app.judgemyjpeg.errors import BadRequest
from app.judgemyjpeg.modules.feedback.service import MSG_THANKS, create_feedback, validate_feedback_payload
from app.judgemyjpeg.ratelimit import rate_limit
from app.judgemyjpeg.turnstile import turnstile_protected
from app.judgemyjpeg.utils import client_ip, json_body, user_agent

bp = Blueprint("feedback", __name__)


@bp.post("/api/feedback/submit")
@rate_limit(5, 3600, scope="feedback", message="Trop de feedbacks envoyés. Réessayez dans une heure.")
@turnstile_protected
def feedback_submit():
    payload = json_body()
    errors = validate_feedback_payload(payload)
    if errors:
        raise BadRequest(errors[0], details={"details": errors})
    s = db_session()
    user = getattr(g, "current_user", None)
    feedback = create_feedback(s, payload, user=user, user_agent=user_agent(), client_ip=client_ip())
    record_event(
        s,
        actor=user,
        action="feedback_submitted",
        entity_type="Feedback",
        entity_id=str(feedback.id),
        metadata={"type": feedback.type, "rating": feedback.rating},
    )
    s.commit()
    return {"success": True, "message": MSG_THANKS, "feedbackId": feedback.id}, 201
