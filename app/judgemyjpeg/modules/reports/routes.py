from __future__ import annotations

from flask import Blueprint, g

from app.judgemyjpeg.db import db_session
from app.judgemyjpeg.errors import BadRequest, TooManyRequests
from app.judgemyjpeg.modules.reports.service import (
    MSG_REPORT_RECEIVED,
    ReportError,
    ReportLimitReached,
    create_report,
    start_of_day,
)
from app.judgemyjpeg.rbac import require_login
from app.judgemyjpeg.utils import client_ip, json_body, str_field, utcnow

bp = Blueprint("reports", __name__)


@bp.post("/api/report")
@require_login
def report_submit():
    payload = json_body()
    raw_photo_id = payload.get("photoId")
    photo_id = None
    if raw_photo_id not in (None, ""):
        try:
            photo_id = int(raw_photo_id)
        except (TypeError, ValueError):
            raise BadRequest("Photo ID invalide")
    s = db_session()
    try:
        report = create_report(
            s,
            g.current_user,
            reason=str_field(payload, "reason"),
            photo_id=photo_id,
            photo_url=payload.get("photoUrl") if isinstance(payload.get("photoUrl"), str) else None,
            details=payload.get("details") if isinstance(payload.get("details"), str) else None,
            reporter_ip=client_ip(),
        )
    except ReportLimitReached as e:
        now = utcnow()
        retry_after = int((start_of_day(now) - now).total_seconds()) + 86400
        raise TooManyRequests(str(e), retry_after=retry_after)
    except ReportError as e:
        raise BadRequest(str(e))
    s.commit()
    return {"success": True, "reportId": report.id, "message": MSG_REPORT_RECEIVED}
