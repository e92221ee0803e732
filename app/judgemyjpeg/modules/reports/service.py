from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.constants import RISK_CRITICAL, RISK_MEDIUM
from app.judgemyjpeg.utils import isoformat, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.judgemyjpeg.models import User
    from app.judgemyjpeg.modules.reports.models import Report

logger = logging.getLogger(__name__)

REPORT_REASONS = ("nudity", "violence", "hate", "illegal", "harassment", "privacy", "spam", "other")
CRITICAL_REASONS = frozenset({"nudity", "violence", "illegal", "harassment"})
REPORT_STATUSES = ("pending", "reviewed", "dismissed", "actioned")
MAX_REPORTS_PER_DAY = 10
MAX_DETAILS_LENGTH = 1000

MSG_REPORT_RECEIVED = "Signalement reçu et en cours de traitement"
MSG_TOO_MANY_REPORTS = "Trop de signalements aujourd'hui"


class ReportError(ValueError):
    pass


class ReportLimitReached(ReportError):
    pass


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def reports_today(s: "Session", user_id: int, now: datetime | None = None) -> int:
    from app.judgemyjpeg.modules.reports.models import Report

    since = start_of_day(now or utcnow())
    return (
        s.query(func.count(Report.id))
        .filter(Report.reporter_id == user_id, Report.created_at >= since, Report.created_at < since + timedelta(days=1))
        .scalar()
        or 0
    )


def create_report(
    s: "Session",
    reporter: "User",
    *,
    reason: str,
    photo_id: int | None = None,
    photo_url: str | None = None,
    details: str | None = None,
    reporter_ip: str | None = None,
    now: datetime | None = None,
) -> "Report":
    """File a content report; at most MAX_REPORTS_PER_DAY per reporter per calendar day."""
    from app.judgemyjpeg.modules.photos.models import Photo
    from app.judgemyjpeg.modules.reports.models import Report

    if reason not in REPORT_REASONS:
        raise ReportError("Raison de signalement invalide")
    if not photo_id and not photo_url:
        raise ReportError("Photo à signaler requise")
    if photo_id and s.get(Photo, photo_id) is None:
        raise ReportError("Photo non trouvée")
    now = now or utcnow()
    if reports_today(s, reporter.id, now) >= MAX_REPORTS_PER_DAY:
        raise ReportLimitReached(MSG_TOO_MANY_REPORTS)

    report = Report(
        reporter_id=reporter.id,
        photo_id=photo_id,
        photo_url=(photo_url or "").strip()[:1024] or None,
        reason=reason,
        details=(details or "").strip()[:MAX_DETAILS_LENGTH] or None,
        reporter_ip=reporter_ip,
        status="pending",
        created_at=now,
    )
    s.add(report)
    s.flush()

    critical = reason in CRITICAL_REASONS
    if critical:
        logger.error(
            "CRITICAL content report id=%s reason=%s photo_id=%s reporter_id=%s",
            report.id,
            reason,
            photo_id,
            reporter.id,
        )
    record_event(
        s,
        actor=reporter,
        action="content_reported",
        entity_type="Report",
        entity_id=str(report.id),
        reason=reason,
        metadata={"photo_id": photo_id, "photo_url": report.photo_url},
        risk_level=RISK_CRITICAL if critical else RISK_MEDIUM,
    )
    return report


def review_report(s: "Session", report: "Report", status: str, *, reviewer: "User | None") -> "Report":
    if status not in REPORT_STATUSES:
        raise ReportError("Statut invalide")
    old_status = report.status
    report.status = status
    report.reviewed_by_user_id = reviewer.id if reviewer else None
    report.reviewed_at = utcnow()
    record_event(
        s,
        actor=reviewer,
        action="report_reviewed",
        entity_type="Report",
        entity_id=str(report.id),
        metadata={"old_status": old_status, "new_status": status},
    )
    s.flush()
    return report


def report_to_dict(report: "Report") -> dict[str, Any]:
    return {
        "id": report.id,
        "reporterId": report.reporter_id,
        "photoId": report.photo_id,
        "photoUrl": report.photo_url,
        "reason": report.reason,
        "details": report.details,
        "reporterIp": report.reporter_ip,
        "status": report.status,
        "reviewedBy": report.reviewed_by_user_id,
        "reviewedAt": isoformat(report.reviewed_at),
        "createdAt": isoformat(report.created_at),
    }
