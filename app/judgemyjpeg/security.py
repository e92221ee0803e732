from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta

from flask import Response, current_app, g, request
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.constants import MSG_FORBIDDEN, RISK_CRITICAL, RISK_HIGH, RISK_MEDIUM
from app.judgemyjpeg.db import db_session
from app.judgemyjpeg.errors import Forbidden
from app.judgemyjpeg.models import BannedIP, User
from app.judgemyjpeg.utils import client_ip, utcnow

logger = logging.getLogger(__name__)

BANNED_IP_MESSAGE = (
    "Votre adresse IP a été bloquée. Contactez le support si vous pensez qu'il s'agit d'une erreur."
)
UNGUARDED_PATHS = ("/api/health",)

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-XSS-Protection": "1; mode=block",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(), payment=(self)",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Content-Security-Policy": (
        "default-src 'self'; "
        "img-src 'self' data: blob:; "
        "script-src 'self' https://challenges.cloudflare.com; "
        "frame-src https://challenges.cloudflare.com; "
        "connect-src 'self'; "
        "frame-ancestors 'none'"
    ),
}
HSTS_VALUE = "max-age=31536000; includeSubDomains; preload"


def log_security_event(event: str, **fields: object) -> None:
    details = " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
    logger.warning("SECURITY: %s %s", event, details)


def active_ban_query(s: Session, ip: str, now: datetime | None = None):
    now = now or utcnow()
    return s.query(BannedIP).filter(
        BannedIP.ip_address == ip,
        BannedIP.is_active.is_(True),
        or_(BannedIP.expires_at.is_(None), BannedIP.expires_at > now),
    )


def find_active_ban(s: Session, ip: str, now: datetime | None = None) -> BannedIP | None:
    return active_ban_query(s, ip, now).order_by(BannedIP.banned_at.desc()).first()


def check_banned_ip() -> None:
    """
    before_request guard for /api/*: 403 for banned addresses.
    Fails open (logs and lets the request through) when the lookup itself fails.
    """
    if not request.path.startswith("/api/") or request.path.startswith(UNGUARDED_PATHS):
        return None
    ip = client_ip()
    s = db_session()
    try:
        ban = find_active_ban(s, ip)
    except SQLAlchemyError as e:
        s.rollback()
        logger.error("Banned IP lookup failed (failing open) ip=%s: %s", ip, e)
        return None
    if ban is None:
        return None

    log_security_event("banned_ip_attempt", ip=ip, path=request.path)
    try:
        record_event(
            s,
            actor=getattr(g, "current_user", None),
            action="banned_ip_attempt",
            entity_type="BannedIP",
            entity_id=ip,
            reason=f"Blocked request to {request.path}",
            metadata={"path": request.path, "method": request.method, "ban_reason": ban.reason},
            risk_level=RISK_CRITICAL,
            success=False,
        )
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        logger.error("Could not audit banned IP attempt ip=%s: %s", ip, e)
    raise Forbidden(MSG_FORBIDDEN, details={"message": BANNED_IP_MESSAGE})


def ban_ip(
    s: Session,
    ip: str,
    *,
    actor: User | None,
    reason: str | None = None,
    duration_hours: float | None = None,
    now: datetime | None = None,
) -> BannedIP:
    """Ban an address; `duration_hours=None` bans permanently. Re-banning replaces the active ban."""
    now = now or utcnow()
    for existing in active_ban_query(s, ip, now).all():
        existing.is_active = False
    ban = BannedIP(
        ip_address=ip,
        reason=reason,
        banned_by_user_id=actor.id if actor else None,
        banned_at=now,
        expires_at=now + timedelta(hours=duration_hours) if duration_hours else None,
        is_active=True,
        metadata_json=json.dumps({"duration_hours": duration_hours}),
    )
    s.add(ban)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="ip_banned",
        entity_type="BannedIP",
        entity_id=ip,
        reason=reason,
        metadata={"duration_hours": duration_hours, "expires_at": ban.expires_at},
        risk_level=RISK_HIGH,
    )
    return ban


def unban_ip(s: Session, ip: str, *, actor: User | None) -> int:
    bans = s.query(BannedIP).filter(BannedIP.ip_address == ip, BannedIP.is_active.is_(True)).all()
    for ban in bans:
        ban.is_active = False
    record_event(
        s,
        actor=actor,
        action="ip_unbanned",
        entity_type="BannedIP",
        entity_id=ip,
        metadata={"deactivated": len(bans)},
        risk_level=RISK_MEDIUM,
    )
    return len(bans)


def cleanup_expired_bans(s: Session, now: datetime | None = None) -> int:
    """Deactivate bans whose expiry has passed. Returns the number of rows touched."""
    now = now or utcnow()
    expired = (
        s.query(BannedIP)
        .filter(BannedIP.is_active.is_(True), BannedIP.expires_at.isnot(None), BannedIP.expires_at <= now)
        .all()
    )
    for ban in expired:
        ban.is_active = False
    if expired:
        logger.info("Deactivated %s expired IP bans", len(expired))
    return len(expired)


def banned_ip_to_dict(ban: BannedIP) -> dict:
    return {
        "id": ban.id,
        "ipAddress": ban.ip_address,
        "reason": ban.reason,
        "bannedBy": ban.banned_by_user_id,
        "bannedAt": ban.banned_at.isoformat() + "Z",
        "expiresAt": ban.expires_at.isoformat() + "Z" if ban.expires_at else None,
        "isActive": ban.is_active,
    }


def apply_security_headers(response: Response) -> Response:
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    if current_app.config.get("ENV") in ("prod", "production"):
        response.headers.setdefault("Strict-Transport-Security", HSTS_VALUE)
    return response
