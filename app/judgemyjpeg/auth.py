from __future__ import annotations

import hashlib
import secrets
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.constants import PLAN_FREE, RISK_HIGH, RISK_MEDIUM
from app.judgemyjpeg.db import db_session
from app.judgemyjpeg.errors import BadRequest, Conflict, Forbidden, TooManyRequests, Unauthorized
from app.judgemyjpeg.models import User, VerificationToken
from app.judgemyjpeg.passwords import validate_password
from app.judgemyjpeg.rbac import is_admin, require_login
from app.judgemyjpeg.turnstile import turnstile_protected
from app.judgemyjpeg.utils import client_ip, isoformat, json_body, str_field, utcnow

bp = Blueprint("auth", __name__)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_VERIFICATION_TTL = timedelta(hours=24)


def _login_attempts() -> dict[str, list[datetime]]:
    # per-app so each app instance (and test) starts clean
    return current_app.extensions.setdefault("login_attempts", defaultdict(list))


def _check_rate_limit(ip: str) -> bool:
    attempts = _login_attempts()
    cutoff = utcnow() - timedelta(seconds=_LOGIN_RATE_WINDOW)
    attempts[ip] = [t for t in attempts[ip] if t > cutoff]
    return len(attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts()[ip].append(utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def issue_verification_token(s, user: User, purpose: str = "email_verify") -> str:
    raw = secrets.token_urlsafe(32)
    s.add(
        VerificationToken(
            user_id=user.id,
            token_hash=hash_token(raw),
            purpose=purpose,
            expires_at=utcnow() + _VERIFICATION_TTL,
        )
    )
    return raw


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "emailVerified": isoformat(user.email_verified_at),
        "subscriptionStatus": user.subscription_status,
        "isAdmin": is_admin(user),
        "roles": sorted(r.key for r in user.roles),
        "preferences": {"language": user.preferred_language, "tone": user.preferred_tone},
        "createdAt": isoformat(user.created_at),
    }


@bp.post("/register")
@turnstile_protected
def register():
    payload = json_body()
    name = str_field(payload, "name")
    email = str_field(payload, "email").lower()
    password = payload.get("password") if isinstance(payload.get("password"), str) else ""
    if not name or not email or not password:
        raise BadRequest("Nom, email et mot de passe requis")
    if "@" not in email or len(email) > 320:
        raise BadRequest("Adresse email invalide")

    check = validate_password(password, email)
    if not check.is_valid:
        raise BadRequest(
            "Mot de passe trop faible",
            details={"details": check.errors, "strength": check.strength, "score": check.score},
        )

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        raise Conflict("Un compte avec cet email existe déjà")

    now = utcnow()
    user = User(
        name=name[:100],
        email=email,
        password_hash=generate_password_hash(password),
        is_active=True,
        subscription_status=PLAN_FREE,
        monthly_analysis_count=0,
        last_analysis_reset=now,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()
    raw_token = issue_verification_token(s, user)
    record_event(s, actor=user, action="registration", entity_type="User", entity_id=str(user.id))
    s.commit()

    body = {"message": "Compte créé avec succès", "user": user_to_dict(user)}
    # No mail transport here; expose the token outside production so the flow stays testable.
    if current_app.config.get("ENV") not in ("prod", "production"):
        body["verificationToken"] = raw_token
    return body, 201


@bp.post("/login")
def login():
    payload = json_body()
    email = str_field(payload, "email").lower()
    password = payload.get("password") if isinstance(payload.get("password"), str) else ""
    ip = client_ip()

    if _check_rate_limit(ip):
        current_app.logger.warning("SECURITY: login lockout ip=%s", ip)
        raise TooManyRequests("Trop de tentatives de connexion. Réessayez dans 5 minutes.", retry_after=_LOGIN_RATE_WINDOW)

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not check_password_hash(user.password_hash, password):
        attempts = len(_login_attempts()[ip])
        record_event(
            s,
            actor=None,
            actor_email=email or None,
            action="login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"attempts": attempts},
            risk_level=RISK_MEDIUM,
            success=False,
        )
        if attempts >= _LOGIN_RATE_LIMIT:
            record_event(
                s,
                actor=None,
                actor_email=email or None,
                action="multiple_failed_logins",
                entity_type="User",
                entity_id=email,
                metadata={"attempts": attempts},
                risk_level=RISK_HIGH,
                success=False,
            )
        s.commit()
        raise Unauthorized("Email ou mot de passe incorrect")

    if not user.is_active:
        record_event(
            s,
            actor=user,
            action="suspicious_login",
            entity_type="User",
            entity_id=str(user.id),
            reason="Login attempt on suspended account",
            risk_level=RISK_MEDIUM,
            success=False,
        )
        s.commit()
        raise Forbidden("Compte suspendu")

    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    _login_attempts()[ip].clear()
    record_event(s, actor=user, action="login_success", entity_type="User", entity_id=str(user.id))
    s.commit()
    return {"message": "Connexion réussie", "user": user_to_dict(user)}


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return {"message": "Déconnexion réussie"}


@bp.get("/me")
@require_login
def me():
    return {"user": user_to_dict(g.current_user)}


def _consume_token(s, raw: str, purpose: str, message: str) -> tuple[VerificationToken, User]:
    """Look up an unused, unexpired token of the given purpose and mark it used."""
    token = (
        s.query(VerificationToken)
        .filter(VerificationToken.token_hash == hash_token(raw), VerificationToken.purpose == purpose)
        .one_or_none()
    )
    now = utcnow()
    if not token or token.used_at is not None or token.expires_at <= now:
        raise BadRequest(message)
    user = s.get(User, token.user_id)
    if not user:
        raise BadRequest(message)
    token.used_at = now
    return token, user


@bp.post("/verify-email")
def verify_email():
    raw = str_field(json_body(), "token")
    if not raw:
        raise BadRequest("Token requis")
    s = db_session()
    token, user = _consume_token(s, raw, "email_verify", "Lien de vérification invalide ou expiré")
    user.email_verified_at = token.used_at
    record_event(s, actor=user, action="email_verified", entity_type="User", entity_id=str(user.id))
    s.commit()
    return {"message": "Email vérifié avec succès"}


@bp.post("/forgot-password")
def forgot_password():
    email = str_field(json_body(), "email").lower()
    if not email:
        raise BadRequest("Email requis")
    # Same answer whether or not the account exists
    body = {"message": "Un email de réinitialisation a été envoyé si cette adresse existe."}
    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if user is None:
        current_app.logger.info("Password reset requested for unknown email")
        return body

    now = utcnow()
    # only the latest link stays usable
    s.query(VerificationToken).filter(
        VerificationToken.user_id == user.id,
        VerificationToken.purpose == "password_reset",
        VerificationToken.used_at.is_(None),
    ).update({VerificationToken.used_at: now}, synchronize_session=False)
    raw_token = issue_verification_token(s, user, purpose="password_reset")
    record_event(
        s,
        actor=user,
        action="password_reset_requested",
        entity_type="User",
        entity_id=str(user.id),
        risk_level=RISK_MEDIUM,
    )
    s.commit()
    if current_app.config.get("ENV") not in ("prod", "production"):
        body["resetToken"] = raw_token
    return body


@bp.post("/reset-password")
def reset_password():
    payload = json_body()
    raw = str_field(payload, "token")
    password = payload.get("password") if isinstance(payload.get("password"), str) else ""
    if not raw or not password:
        raise BadRequest("Token et mot de passe requis")
    s = db_session()
    token, user = _consume_token(
        s, raw, "password_reset", "Token invalide ou expiré. Demandez un nouveau lien de réinitialisation."
    )
    check = validate_password(password, user.email)
    if not check.is_valid:
        raise BadRequest(
            "Mot de passe trop faible",
            details={"details": check.errors, "strength": check.strength, "score": check.score},
        )
    user.password_hash = generate_password_hash(password)
    # the link reached the mailbox, which proves ownership
    if user.email_verified_at is None:
        user.email_verified_at = token.used_at
    record_event(
        s,
        actor=user,
        action="password_reset",
        entity_type="User",
        entity_id=str(user.id),
        risk_level=RISK_HIGH,
    )
    s.commit()
    return {"message": "Mot de passe réinitialisé avec succès"}


@bp.post("/validate-password")
def validate_password_route():
    payload = json_body()
    password = payload.get("password")
    if not isinstance(password, str):
        raise BadRequest("Mot de passe requis")
    return validate_password(password, payload.get("email")).to_dict()


@bp.post("/change-password")
@require_login
def change_password():
    payload = json_body()
    current = payload.get("currentPassword") if isinstance(payload.get("currentPassword"), str) else ""
    new = payload.get("newPassword") if isinstance(payload.get("newPassword"), str) else ""
    user: User = g.current_user
    if not current or not new:
        raise BadRequest("Mot de passe actuel et nouveau mot de passe requis")
    s = db_session()
    if not check_password_hash(user.password_hash, current):
        record_event(
            s,
            actor=user,
            action="password_change_failed",
            entity_type="User",
            entity_id=str(user.id),
            risk_level=RISK_MEDIUM,
            success=False,
        )
        s.commit()
        raise BadRequest("Mot de passe actuel incorrect")
    check = validate_password(new, user.email)
    if not check.is_valid:
        raise BadRequest("Mot de passe trop faible", details={"details": check.errors})
    user.password_hash = generate_password_hash(new)
    record_event(s, actor=user, action="password_changed", entity_type="User", entity_id=str(user.id))
    s.commit()
    return {"message": "Mot de passe modifié avec succès"}
