from __future__ import annotations

from flask import Blueprint, current_app, g, session

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.constants import RISK_HIGH
from app.judgemyjpeg.db import db_session
from app.judgemyjpeg.errors import BadRequest
from app.judgemyjpeg.modules.account.service import (
    DELETE_CONFIRMATION,
    dashboard_stats,
    export_user_data,
    purge_user,
    update_preferences,
    validate_preferences,
)
from app.judgemyjpeg.modules.subscription.routes import free_limit
from app.judgemyjpeg.modules.subscription.service import get_user_subscription
from app.judgemyjpeg.rbac import require_login
from app.judgemyjpeg.utils import json_body

bp = Blueprint("account", __name__)


@bp.get("/api/dashboard/stats")
@require_login
def dashboard():
    s = db_session()
    return dashboard_stats(s, g.current_user)


@bp.post("/api/user/preferences")
@require_login
def preferences():
    payload = json_body()
    errors = validate_preferences(payload)
    if errors:
        raise BadRequest(errors[0], details={"details": errors})
    s = db_session()
    user = update_preferences(g.current_user, payload)
    record_event(
        s,
        actor=user,
        action="preferences_updated",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"language": user.preferred_language, "tone": user.preferred_tone},
    )
    s.commit()
    return {
        "success": True,
        "preferences": {
            "displayName": user.name,
            "preferredLanguage": user.preferred_language,
            "preferredTone": user.preferred_tone,
        },
    }


@bp.get("/api/user/export-data")
@require_login
def export_data():
    s = db_session()
    user = g.current_user
    entitlement = get_user_subscription(s, user, free_limit=free_limit())
    data = export_user_data(s, user, entitlement)
    record_event(s, actor=user, action="data_exported", entity_type="User", entity_id=str(user.id))
    s.commit()
    resp = current_app.response_class(
        current_app.json.dumps(data),
        mimetype="application/json",
    )
    resp.headers["Content-Disposition"] = f'attachment; filename="judgemyjpeg-export-{user.id}.json"'
    return resp


@bp.post("/api/user/delete-account")
@require_login
def delete_account():
    if json_body().get("confirmation") != DELETE_CONFIRMATION:
        raise BadRequest(f'Confirmation requise: tapez "{DELETE_CONFIRMATION}"')
    s = db_session()
    user = g.current_user
    user_id = user.id
    record_event(
        s,
        actor=user,
        action="account_deleted",
        entity_type="User",
        entity_id=str(user_id),
        reason="Self-service account deletion",
        risk_level=RISK_HIGH,
    )
    s.flush()
    removed = purge_user(s, user, current_app.extensions["storage"])
    s.commit()
    session.clear()
    g.current_user = None
    current_app.logger.info("Account %s deleted (%s photos removed)", user_id, removed)
    return {"success": True, "message": "Compte supprimé définitivement"}
