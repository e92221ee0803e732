from __future__ import annotations

from flask import Blueprint, g, request

from app.judgemyjpeg.constants import PERM_ADMIN_REPORTS
from app.judgemyjpeg.db import db_session
from app.judgemyjpeg.errors import BadRequest, NotFound
from app.judgemyjpeg.modules.reports.models import Report
from app.judgemyjpeg.modules.reports.service import REPORT_STATUSES, ReportError, report_to_dict, review_report
from app.judgemyjpeg.rbac import require_admin
from app.judgemyjpeg.utils import json_body, pagination_dict, parse_pagination, str_field

bp = Blueprint("reports_admin", __name__)


@bp.get("/reports")
@require_admin(PERM_ADMIN_REPORTS)
def reports_list():
    s = db_session()
    page, limit = parse_pagination(default_limit=20)
    status = (request.args.get("status") or "").strip()
    q = s.query(Report)
    if status:
        if status not in REPORT_STATUSES:
            raise BadRequest("Statut invalide")
        q = q.filter(Report.status == status)
    total = q.count()
    rows = q.order_by(Report.created_at.desc(), Report.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {"reports": [report_to_dict(r) for r in rows], "pagination": pagination_dict(page, limit, total)}


@bp.patch("/reports")
@require_admin(PERM_ADMIN_REPORTS)
def reports_update():
    payload = json_body()
    try:
        report_id = int(payload.get("id"))
    except (TypeError, ValueError):
        raise BadRequest("ID de signalement requis")
    s = db_session()
    report = s.get(Report, report_id)
    if not report:
        raise NotFound("Signalement non trouvé")
    try:
        review_report(s, report, str_field(payload, "status"), reviewer=getattr(g, "current_user", None))
    except ReportError as e:
        raise BadRequest(str(e))
    s.commit()
    return {"success": True, "report": report_to_dict(report)}
