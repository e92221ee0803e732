from __future__ import annotations

import json

from flask import Blueprint, current_app, g, request

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.db import db_session
from app.judgemyjpeg.errors import ApiError, BadRequest, Forbidden, NotFound
from app.judgemyjpeg.models import User
from app.judgemyjpeg.modules.subscription.billing import (
    BillingError,
    apply_billing_event,
    prepare_checkout,
    verify_signature,
)
from app.judgemyjpeg.modules.subscription.service import (
    EntitlementError,
    get_user_subscription,
    use_export,
    use_share,
)
from app.judgemyjpeg.rbac import require_login
from app.judgemyjpeg.utils import json_body, str_field

bp = Blueprint("subscription", __name__)


def free_limit() -> int:
    return int(current_app.config["FREE_MONTHLY_ANALYSES"])


def starter_credits() -> dict[str, int]:
    cfg = current_app.config
    return {
        "analyses": int(cfg["STARTER_PACK_ANALYSES"]),
        "shares": int(cfg["STARTER_PACK_SHARES"]),
        "exports": int(cfg["STARTER_PACK_EXPORTS"]),
    }


@bp.get("/api/subscription/status")
@require_login
def subscription_status():
    s = db_session()
    entitlement = get_user_subscription(s, g.current_user, free_limit=free_limit())
    s.commit()
    return {"subscription": entitlement.to_dict()}


@bp.post("/api/subscription/checkout")
@require_login
def checkout():
    price_type = str_field(json_body(), "priceType")
    cfg = current_app.config
    price_ids = {
        "starter": cfg.get("PRICE_ID_STARTER") or "",
        "monthly": cfg.get("PRICE_ID_MONTHLY") or "",
        "annual": cfg.get("PRICE_ID_ANNUAL") or "",
    }
    try:
        descriptor = prepare_checkout(g.current_user, price_type, price_ids)
    except BillingError as e:
        raise BadRequest(str(e))
    s = db_session()
    record_event(
        s,
        actor=g.current_user,
        action="checkout_started",
        entity_type="User",
        entity_id=str(g.current_user.id),
        metadata={"priceType": price_type},
    )
    s.commit()
    return {"checkout": descriptor.to_dict()}


@bp.post("/api/subscription/share")
@require_login
def consume_share():
    s = db_session()
    try:
        use_share(s, g.current_user)
    except EntitlementError as e:
        raise Forbidden(str(e))
    s.commit()
    return {"success": True, "subscription": get_user_subscription(s, g.current_user, free_limit=free_limit()).to_dict()}


@bp.post("/api/subscription/export")
@require_login
def consume_export():
    s = db_session()
    try:
        use_export(s, g.current_user)
    except EntitlementError as e:
        raise Forbidden(str(e))
    s.commit()
    return {"success": True, "subscription": get_user_subscription(s, g.current_user, free_limit=free_limit()).to_dict()}


@bp.post("/api/billing/events")
def billing_events():
    secret = current_app.config.get("BILLING_WEBHOOK_SECRET") or ""
    if not secret:
        current_app.logger.error("BILLING_WEBHOOK_SECRET not configured; rejecting billing event")
        raise ApiError("Webhook non configuré")
    body = request.get_data(cache=True)
    if not verify_signature(secret, body, request.headers.get("X-Billing-Signature")):
        current_app.logger.warning("SECURITY: billing event with invalid signature")
        raise BadRequest("Signature invalide")
    try:
        event = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise BadRequest("Payload invalide")
    if not isinstance(event, dict):
        raise BadRequest("Payload invalide")

    try:
        user_id = int(event.get("userId"))
    except (TypeError, ValueError):
        raise BadRequest("userId manquant")
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        raise NotFound("Utilisateur non trouvé")

    try:
        handled = apply_billing_event(s, user, event, starter_credits=starter_credits())
    except (BillingError, EntitlementError) as e:
        s.rollback()
        current_app.logger.warning("Billing event rejected type=%s user_id=%s: %s", event.get("type"), user_id, e)
        raise BadRequest(str(e))
    s.commit()
    return {"received": True, "handled": handled}
