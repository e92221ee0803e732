from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any

from flask import g, has_request_context
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.judgemyjpeg.constants import RISK_CRITICAL, RISK_HIGH, RISK_LEVELS, RISK_LOW
from app.judgemyjpeg.models import AuditEvent, User
from app.judgemyjpeg.utils import client_ip, isoformat, load_metadata, user_agent, utcnow

logger = logging.getLogger(__name__)

FAILED_LOGIN_ACTIONS = ("login_failed",)
SUSPICIOUS_ACTIONS = ("suspicious_login", "multiple_failed_logins", "banned_ip_attempt")


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
    risk_level: str = RISK_LOW,
    success: bool = True,
    actor_email: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.

    The caller owns the transaction (commit happens in the handler).
    """
    if risk_level not in RISK_LEVELS:
        raise ValueError(f"Unknown risk level: {risk_level}")
    rid = request_id
    if rid is None and has_request_context():
        rid = getattr(g, "request_id", None)
    ip = client_ip() if has_request_context() else None
    ua = user_agent()[:500] if has_request_context() else None
    ev = AuditEvent(
        request_id=rid,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else actor_email,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=(reason or "")[:512] or None,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=ip,
        user_agent=ua or None,
        risk_level=risk_level,
        success=success,
        created_at=utcnow(),
    )
    s.add(ev)

    log = logger.error if risk_level in (RISK_HIGH, RISK_CRITICAL) else logger.info
    log(
        "AUDIT action=%s risk=%s success=%s actor=%s entity=%s:%s ip=%s",
        action,
        risk_level,
        success,
        ev.actor_user_email or "-",
        entity_type or "-",
        entity_id or "-",
        ip or "-",
    )
    return ev


def audit_event_to_dict(ev: AuditEvent) -> dict[str, Any]:
    return {
        "id": ev.id,
        "createdAt": isoformat(ev.created_at),
        "requestId": ev.request_id,
        "userId": ev.actor_user_id,
        "email": ev.actor_user_email,
        "eventType": ev.action,
        "entityType": ev.entity_type,
        "entityId": ev.entity_id,
        "description": ev.reason,
        "metadata": load_metadata(ev.metadata_json),
        "ipAddress": ev.client_ip,
        "userAgent": ev.user_agent,
        "riskLevel": ev.risk_level,
        "success": ev.success,
    }


def security_summary(s: Session, *, days: int = 7, now: datetime | None = None) -> dict[str, Any]:
    """Aggregate view of the audit trail over the last `days` days."""
    now = now or utcnow()
    since = now - timedelta(days=days)
    in_period = AuditEvent.created_at >= since

    def _count(*criteria) -> int:
        return s.query(func.count(AuditEvent.id)).filter(in_period, *criteria).scalar() or 0

    recent = (
        s.query(AuditEvent)
        .filter(in_period)
        .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        .limit(20)
        .all()
    )
    return {
        "totalEvents": _count(),
        "criticalEvents": _count(AuditEvent.risk_level == RISK_CRITICAL),
        "failedLogins": _count(AuditEvent.action.in_(FAILED_LOGIN_ACTIONS)),
        "suspiciousActivity": _count(AuditEvent.action.in_(SUSPICIOUS_ACTIONS)),
        "recentEvents": [audit_event_to_dict(ev) for ev in recent],
        "period": f"{days} derniers jours",
    }
