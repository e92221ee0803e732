from __future__ import annotations

import ipaddress
from datetime import datetime, timedelta, timezone

from flask import Blueprint, current_app, g, request
from sqlalchemy import func, or_

from app.judgemyjpeg.audit import audit_event_to_dict, record_event, security_summary
from app.judgemyjpeg.auth import user_to_dict
from app.judgemyjpeg.constants import (
    PERM_ADMIN_SECURITY,
    PERM_ADMIN_USERS,
    RISK_CRITICAL,
    RISK_HIGH,
    RISK_LEVELS,
    RISK_MEDIUM,
    VALID_PLANS,
)
from app.judgemyjpeg.db import db_session
from app.judgemyjpeg.errors import ApiError, BadRequest, NotFound, TooManyRequests, Unauthorized
from app.judgemyjpeg.models import AuditEvent, BannedIP, User
from app.judgemyjpeg.modules.account.service import purge_user
from app.judgemyjpeg.modules.feedback.models import Feedback
from app.judgemyjpeg.modules.photos.models import Photo
from app.judgemyjpeg.modules.reports.models import Report
from app.judgemyjpeg.modules.subscription.routes import free_limit
from app.judgemyjpeg.modules.subscription.service import (
    EntitlementError,
    compute_entitlement,
    update_user_subscription,
)
from app.judgemyjpeg.rbac import AdminTokenStore, admin_secret_matches, bearer_token, require_admin
from app.judgemyjpeg.security import ban_ip, banned_ip_to_dict, unban_ip
from app.judgemyjpeg.utils import client_ip, isoformat, json_body, pagination_dict, parse_pagination, str_field, utcnow

bp = Blueprint("admin", __name__)

SECRET_ACTOR = "admin-secret"
USER_ACTIONS = ("suspend", "reactivate", "verify_email", "update_profile")
SECURITY_ACTIONS = ("ban_ip", "unban_ip", "list_banned_ips", "suspend_user", "activate_user")


def _actor() -> User | None:
    return getattr(g, "current_user", None)


def _audit(s, action: str, **kwargs) -> AuditEvent:
    actor = _actor()
    return record_event(
        s,
        actor=actor,
        actor_email=None if actor else SECRET_ACTOR,
        action=action,
        **kwargs,
    )


def _parse_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _user_or_404(s, user_id) -> User:
    uid = _parse_int(user_id)
    if uid is None:
        raise BadRequest("ID utilisateur requis")
    user = s.get(User, uid)
    if not user:
        raise NotFound("Utilisateur non trouvé")
    return user


def _admin_user_dict(s, user: User) -> dict:
    data = user_to_dict(user)
    entitlement = compute_entitlement(user, utcnow(), free_limit=free_limit())
    data.update(
        {
            "isActive": user.is_active,
            "photoCount": s.query(func.count(Photo.id)).filter(Photo.user_id == user.id).scalar() or 0,
            "subscription": entitlement.to_dict(),
            "manualPremium": {
                "active": user.manual_premium_access,
                "reason": user.manual_premium_reason,
                "grantedAt": isoformat(user.manual_premium_granted_at),
                "grantedBy": user.manual_premium_granted_by,
            },
            "updatedAt": isoformat(user.updated_at),
        }
    )
    return data


@bp.post("/auth")
def admin_login():
    s = db_session()
    ip = client_ip()
    store: AdminTokenStore = current_app.extensions["admin_tokens"]

    blocked = store.blocked_for(ip)
    if blocked:
        _audit(s, "admin_login_blocked", entity_type="AdminAuth", entity_id=ip, risk_level=RISK_HIGH, success=False)
        s.commit()
        raise TooManyRequests("Trop de tentatives. Réessayez plus tard.", retry_after=blocked)

    candidate = json_body().get("adminSecret")
    if not isinstance(candidate, str) or not candidate.strip():
        _audit(s, "admin_login_failed", entity_type="AdminAuth", entity_id=ip, reason="Missing secret", success=False)
        s.commit()
        raise BadRequest("Secret admin requis")

    if not current_app.config.get("ADMIN_SECRET"):
        current_app.logger.error("ADMIN_SECRET not configured; admin login unavailable")
        _audit(s, "admin_login_failed", entity_type="AdminAuth", entity_id=ip, reason="Not configured", success=False)
        s.commit()
        raise ApiError("Configuration admin manquante")

    if not admin_secret_matches(candidate):
        attempts = store.record_failure(ip)
        current_app.logger.warning("SECURITY: bad admin secret ip=%s attempts=%s", ip, attempts)
        _audit(
            s,
            "admin_login_failed",
            entity_type="AdminAuth",
            entity_id=ip,
            reason="Invalid secret",
            metadata={"attempts": attempts},
            risk_level=RISK_HIGH,
            success=False,
        )
        s.commit()
        blocked = store.blocked_for(ip)
        if blocked:
            raise TooManyRequests("Trop de tentatives. Réessayez plus tard.", retry_after=blocked)
        raise Unauthorized("Secret admin invalide")

    store.clear_failures(ip)
    token, expires_at = store.issue()
    _audit(s, "admin_login_success", entity_type="AdminAuth", entity_id=ip, risk_level=RISK_MEDIUM)
    s.commit()
    return {
        "success": True,
        "token": token,
        "expiresAt": isoformat(datetime.fromtimestamp(expires_at, tz=timezone.utc).replace(tzinfo=None)),
    }


@bp.delete("/auth")
@require_admin()
def admin_logout():
    token = bearer_token()
    if token:
        current_app.extensions["admin_tokens"].revoke(token)
    s = db_session()
    _audit(s, "admin_logout", entity_type="AdminAuth", entity_id=client_ip())
    s.commit()
    return {"success": True}


@bp.get("/check-permissions")
@require_admin()
def check_permissions():
    user = _actor()
    return {
        "isAdmin": True,
        "via": "secret" if getattr(g, "admin_via_secret", False) else "session",
        "user": user_to_dict(user) if user else None,
    }


@bp.get("/users")
@require_admin(PERM_ADMIN_USERS)
def users_list():
    s = db_session()
    page, limit = parse_pagination(default_limit=20)
    q = s.query(User)
    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(User.email.ilike(like), User.name.ilike(like)))
    status = (request.args.get("status") or "").strip()
    if status == "active":
        q = q.filter(User.is_active.is_(True))
    elif status == "suspended":
        q = q.filter(User.is_active.is_(False))
    subscription = (request.args.get("subscription") or "").strip()
    if subscription:
        if subscription not in VALID_PLANS:
            raise BadRequest("Abonnement invalide")
        q = q.filter(User.subscription_status == subscription)
    total = q.count()
    users = q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {"users": [_admin_user_dict(s, u) for u in users], "pagination": pagination_dict(page, limit, total)}


@bp.patch("/users")
@require_admin(PERM_ADMIN_USERS)
def users_update():
    payload = json_body()
    action = str_field(payload, "action")
    if action not in USER_ACTIONS:
        raise BadRequest("Action invalide")
    s = db_session()
    user = _user_or_404(s, payload.get("userId"))
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    risk = RISK_MEDIUM

    if action == "suspend":
        if _actor() and _actor().id == user.id:
            raise BadRequest("Impossible de suspendre votre propre compte")
        user.is_active = False
        risk = RISK_HIGH
    elif action == "reactivate":
        user.is_active = True
    elif action == "verify_email":
        user.email_verified_at = user.email_verified_at or utcnow()
    elif action == "update_profile":
        name = data.get("name")
        if name is not None:
            if not isinstance(name, str) or not name.strip():
                raise BadRequest("Nom invalide")
            user.name = name.strip()[:100]
        email = data.get("email")
        if email is not None:
            email = (email or "").strip().lower() if isinstance(email, str) else ""
            if "@" not in email:
                raise BadRequest("Email invalide")
            if s.query(User).filter(User.email == email, User.id != user.id).count():
                raise BadRequest("Un compte avec cet email existe déjà")
            user.email = email

    _audit(
        s,
        f"admin_user_{action}",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"data": data} if data else None,
        risk_level=risk,
    )
    s.commit()
    return {"success": True, "user": _admin_user_dict(s, user)}


@bp.delete("/users")
@require_admin(PERM_ADMIN_USERS)
def users_delete():
    s = db_session()
    user = _user_or_404(s, request.args.get("userId"))
    if _actor() and _actor().id == user.id:
        raise BadRequest("Impossible de supprimer votre propre compte")
    user_id, email = user.id, user.email
    _audit(
        s,
        "admin_user_deleted",
        entity_type="User",
        entity_id=str(user_id),
        metadata={"email": email},
        risk_level=RISK_HIGH,
    )
    s.flush()
    removed = purge_user(s, user, current_app.extensions["storage"])
    s.commit()
    return {"success": True, "deletedUserId": user_id, "photosRemoved": removed}


@bp.post("/users/update-subscription")
@require_admin(PERM_ADMIN_USERS)
def users_update_subscription():
    payload = json_body()
    s = db_session()
    user = _user_or_404(s, payload.get("userId"))
    plan = str_field(payload, "subscriptionStatus")
    reason = payload.get("reason") if isinstance(payload.get("reason"), str) else None
    try:
        update_user_subscription(s, user, plan, actor=_actor(), reason=reason or "Admin update")
    except EntitlementError as e:
        raise BadRequest(str(e))
    s.commit()
    return {"success": True, "user": _admin_user_dict(s, user)}


@bp.post("/users/reset-analyses")
@require_admin(PERM_ADMIN_USERS)
def users_reset_analyses():
    s = db_session()
    user = _user_or_404(s, json_body().get("userId"))
    previous = user.monthly_analysis_count
    user.monthly_analysis_count = 0
    user.last_analysis_reset = utcnow()
    _audit(
        s,
        "admin_analyses_reset",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"previous_count": previous},
    )
    s.commit()
    return {"success": True, "user": _admin_user_dict(s, user)}


@bp.post("/manual-premium")
@require_admin(PERM_ADMIN_USERS)
def manual_premium_grant():
    payload = json_body()
    reason = str_field(payload, "reason")
    if not reason:
        raise BadRequest("Raison requise")
    s = db_session()
    user = _user_or_404(s, payload.get("userId"))
    actor = _actor()
    user.manual_premium_access = True
    user.manual_premium_reason = reason[:512]
    user.manual_premium_granted_at = utcnow()
    user.manual_premium_granted_by = actor.email if actor else SECRET_ACTOR
    _audit(
        s,
        "manual_premium_granted",
        entity_type="User",
        entity_id=str(user.id),
        reason=reason,
        risk_level=RISK_MEDIUM,
    )
    s.commit()
    return {"success": True, "user": _admin_user_dict(s, user)}


@bp.delete("/manual-premium")
@require_admin(PERM_ADMIN_USERS)
def manual_premium_revoke():
    s = db_session()
    user = _user_or_404(s, json_body().get("userId") or request.args.get("userId"))
    previous_reason = user.manual_premium_reason
    user.manual_premium_access = False
    user.manual_premium_reason = None
    user.manual_premium_granted_at = None
    user.manual_premium_granted_by = None
    _audit(
        s,
        "manual_premium_revoked",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"previous_reason": previous_reason},
        risk_level=RISK_MEDIUM,
    )
    s.commit()
    return {"success": True, "user": _admin_user_dict(s, user)}


def _valid_ip(value) -> str:
    try:
        return str(ipaddress.ip_address((value or "").strip()))
    except (ValueError, AttributeError):
        raise BadRequest("Adresse IP invalide")


def _target_user(s, target) -> User:
    if isinstance(target, str) and "@" in target:
        user = s.query(User).filter(User.email == target.strip().lower()).one_or_none()
        if not user:
            raise NotFound("Utilisateur non trouvé")
        return user
    return _user_or_404(s, target)


@bp.post("/security-actions")
@require_admin(PERM_ADMIN_SECURITY)
def security_actions():
    payload = json_body()
    action = str_field(payload, "action")
    if action not in SECURITY_ACTIONS:
        raise BadRequest("Action invalide")
    s = db_session()
    target = payload.get("target")
    reason = payload.get("reason") if isinstance(payload.get("reason"), str) else None

    if action == "list_banned_ips":
        bans = (
            s.query(BannedIP)
            .filter(BannedIP.is_active.is_(True))
            .order_by(BannedIP.banned_at.desc())
            .limit(100)
            .all()
        )
        _audit(s, "banned_ips_listed", entity_type="BannedIP", metadata={"count": len(bans)})
        s.commit()
        return {"success": True, "bannedIps": [banned_ip_to_dict(b) for b in bans]}

    if action == "ban_ip":
        ip = _valid_ip(target)
        if ip == client_ip():
            raise BadRequest("Impossible de bannir votre propre adresse IP")
        duration = payload.get("duration")
        if duration is not None:
            try:
                duration = float(duration)
            except (TypeError, ValueError):
                raise BadRequest("Durée invalide")
            if duration <= 0:
                raise BadRequest("Durée invalide")
        ban = ban_ip(s, ip, actor=_actor(), reason=reason or "Banni par un administrateur", duration_hours=duration)
        s.commit()
        return {"success": True, "message": f"IP {ip} bannie", "ban": banned_ip_to_dict(ban)}

    if action == "unban_ip":
        ip = _valid_ip(target)
        count = unban_ip(s, ip, actor=_actor())
        s.commit()
        if not count:
            raise NotFound("Aucun bannissement actif pour cette IP")
        return {"success": True, "message": f"IP {ip} débannie"}

    user = _target_user(s, target)
    if action == "suspend_user":
        if _actor() and _actor().id == user.id:
            raise BadRequest("Impossible de suspendre votre propre compte")
        user.is_active = False
        message = "Utilisateur suspendu"
        risk = RISK_HIGH
    else:
        user.is_active = True
        message = "Utilisateur réactivé"
        risk = RISK_MEDIUM
    _audit(s, action, entity_type="User", entity_id=str(user.id), reason=reason, risk_level=risk)
    s.commit()
    return {"success": True, "message": message}


@bp.get("/audit-logs")
@require_admin(PERM_ADMIN_SECURITY)
def audit_logs():
    s = db_session()
    try:
        days = max(int(request.args.get("days") or 7), 1)
    except ValueError:
        days = 7
    if (request.args.get("summary") or "").lower() == "true":
        return {"summary": security_summary(s, days=days)}

    page, limit = parse_pagination(default_limit=50)
    q = s.query(AuditEvent).filter(AuditEvent.created_at >= utcnow() - timedelta(days=days))
    user_id = _parse_int(request.args.get("userId"))
    if user_id is not None:
        q = q.filter(AuditEvent.actor_user_id == user_id)
    event_type = (request.args.get("eventType") or "").strip()
    if event_type:
        q = q.filter(AuditEvent.action == event_type)
    risk = (request.args.get("riskLevel") or "").strip()
    if risk:
        if risk not in RISK_LEVELS:
            raise BadRequest("Niveau de risque invalide")
        q = q.filter(AuditEvent.risk_level == risk)
    total = q.count()
    rows = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {"logs": [audit_event_to_dict(ev) for ev in rows], "pagination": pagination_dict(page, limit, total)}


@bp.get("/dashboard-stats")
@require_admin()
def dashboard_stats():
    s = db_session()
    now = utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    by_plan = {plan: 0 for plan in VALID_PLANS}
    by_plan.update({plan: int(n) for plan, n in s.query(User.subscription_status, func.count(User.id)).group_by(User.subscription_status).all()})
    avg_score = s.query(func.avg(Photo.score)).scalar()
    return {
        "users": {
            "total": sum(by_plan.values()),
            "byPlan": by_plan,
            "suspended": s.query(func.count(User.id)).filter(User.is_active.is_(False)).scalar() or 0,
            "manualPremium": s.query(func.count(User.id)).filter(User.manual_premium_access.is_(True)).scalar() or 0,
            "newToday": s.query(func.count(User.id)).filter(User.created_at >= today).scalar() or 0,
        },
        "photos": {
            "total": s.query(func.count(Photo.id)).scalar() or 0,
            "today": s.query(func.count(Photo.id)).filter(Photo.created_at >= today).scalar() or 0,
            "averageScore": round(float(avg_score), 1) if avg_score is not None else 0,
        },
        "moderation": {
            "openReports": s.query(func.count(Report.id)).filter(Report.status == "pending").scalar() or 0,
            "newFeedbacks": s.query(func.count(Feedback.id)).filter(Feedback.status == "new").scalar() or 0,
        },
        "security": {
            "activeBans": s.query(func.count(BannedIP.id)).filter(BannedIP.is_active.is_(True)).scalar() or 0,
            "criticalEventsToday": s.query(func.count(AuditEvent.id))
            .filter(AuditEvent.risk_level == RISK_CRITICAL, AuditEvent.created_at >= today)
            .scalar()
            or 0,
        },
    }
