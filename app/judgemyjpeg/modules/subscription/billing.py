"""
Billing glue: checkout eligibility and signed payment-provider events.

Payment sessions are created by the hosted payment page; this app only
decides what a user may buy and applies the resulting plan changes.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from app.judgemyjpeg.constants import PLAN_ANNUAL, PLAN_FREE, PLAN_PREMIUM
from app.judgemyjpeg.modules.subscription.service import (
    is_premium,
    purchase_starter_pack,
    update_user_subscription,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.judgemyjpeg.models import User

logger = logging.getLogger(__name__)

VALID_PRICE_TYPES = ("starter", "monthly", "annual")
PRICE_TYPE_PLAN = {"monthly": PLAN_PREMIUM, "annual": PLAN_ANNUAL}
PRICE_TYPE_MODE = {"starter": "payment", "monthly": "subscription", "annual": "subscription"}
PRICE_TYPE_AMOUNT_CENTS = {"starter": 499, "monthly": 999, "annual": 7999}

MSG_ALREADY_SUBSCRIBED = "Vous avez déjà un abonnement actif"
MSG_STARTER_ONCE = "Le Starter Pack ne peut être acheté qu'une seule fois par compte"


class BillingError(RuntimeError):
    pass


@dataclass(frozen=True)
class CheckoutDescriptor:
    price_type: str
    price_id: str
    mode: str
    amount_cents: int
    user_id: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "priceType": self.price_type,
            "priceId": self.price_id,
            "mode": self.mode,
            "amountCents": self.amount_cents,
            "currency": "eur",
            "metadata": {"userId": str(self.user_id), "priceType": self.price_type},
        }


def prepare_checkout(user: "User", price_type: str, price_ids: dict[str, str]) -> CheckoutDescriptor:
    """Validate a purchase request and describe the checkout session to open."""
    if price_type not in VALID_PRICE_TYPES:
        raise BillingError("Type de prix invalide")
    if price_type == "starter":
        if user.starter_pack_purchased:
            raise BillingError(MSG_STARTER_ONCE)
    elif is_premium(user):
        raise BillingError(MSG_ALREADY_SUBSCRIBED)
    price_id = price_ids.get(price_type) or ""
    if not price_id:
        raise BillingError(f"Prix non configuré pour {price_type}")
    return CheckoutDescriptor(
        price_type=price_type,
        price_id=price_id,
        mode=PRICE_TYPE_MODE[price_type],
        amount_cents=PRICE_TYPE_AMOUNT_CENTS[price_type],
        user_id=user.id,
    )


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    if not secret or not signature:
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature.strip().lower())


def _period_end(event: dict[str, Any]) -> datetime | None:
    raw = event.get("currentPeriodEnd")
    if raw in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError):
        return None


def apply_billing_event(
    s: "Session",
    user: "User",
    event: dict[str, Any],
    *,
    starter_credits: dict[str, int],
) -> bool:
    """Apply one provider event to `user`. Returns False for event types we ignore."""
    event_type = event.get("type")
    customer_id = event.get("customerId")
    subscription_id = event.get("subscriptionId")

    if event_type == "checkout.completed":
        price_type = event.get("priceType")
        if price_type == "starter":
            purchase_starter_pack(s, user, **starter_credits)
            logger.info("Starter Pack activated user_id=%s", user.id)
            return True
        plan = PRICE_TYPE_PLAN.get(price_type or "")
        if plan is None:
            raise BillingError(f"priceType inconnu: {price_type}")
        update_user_subscription(
            s,
            user,
            plan,
            billing_customer_id=customer_id,
            billing_subscription_id=subscription_id,
            current_period_end=_period_end(event),
            reason="checkout.completed",
        )
        return True

    if event_type == "subscription.updated":
        plan = user.subscription_status if user.subscription_status != PLAN_FREE else PLAN_PREMIUM
        update_user_subscription(
            s,
            user,
            plan,
            billing_subscription_id=subscription_id,
            current_period_end=_period_end(event),
            reason="subscription.updated",
        )
        return True

    if event_type == "subscription.deleted":
        update_user_subscription(s, user, PLAN_FREE, reason="subscription.deleted")
        user.billing_subscription_id = None
        return True

    if event_type == "payment.failed":
        logger.warning("Payment failed user_id=%s subscription=%s", user.id, subscription_id)
        return True

    logger.info("Ignoring billing event type=%s", event_type)
    return False

