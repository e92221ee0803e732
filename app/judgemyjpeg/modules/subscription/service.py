"""
Subscription entitlements.

A user's analysis budget comes from three sources:
- premium/annual plans (and manual premium grants): unlimited
- the free monthly quota, reset when the calendar month changes
- Starter Pack credits (one-time purchase, at most once per account)
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.constants import PLAN_FREE, PREMIUM_PLANS, UNLIMITED_ANALYSES, VALID_PLANS
from app.judgemyjpeg.utils import isoformat, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.judgemyjpeg.models import User

DEFAULT_FREE_MONTHLY_ANALYSES = 3

MSG_LIMIT_REACHED = "Limite d'analyses atteinte pour ce mois"
MSG_STARTER_ALREADY_PURCHASED = "Starter Pack déjà acheté (limité à un achat par compte)"
MSG_NO_SHARE = "Aucun partage disponible dans votre starter pack"
MSG_NO_EXPORT = "Aucun export PDF disponible dans votre starter pack"


class EntitlementError(RuntimeError):
    pass


@dataclass(frozen=True)
class StarterPackStatus:
    purchased: bool
    analyses_left: int
    shares_left: int
    exports_left: int
    activated_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "purchased": self.purchased,
            "analysisCount": self.analyses_left,
            "sharesCount": self.shares_left,
            "exportsCount": self.exports_left,
            "activatedAt": isoformat(self.activated_at),
        }


@dataclass(frozen=True)
class Entitlement:
    plan: str
    is_premium: bool
    monthly_analysis_count: int
    max_monthly_analyses: int
    can_analyze: bool
    days_until_reset: int | None
    starter_pack: StarterPackStatus

    @property
    def remaining_analyses(self) -> int:
        if self.is_premium:
            return UNLIMITED_ANALYSES
        return max(self.max_monthly_analyses - self.monthly_analysis_count, 0) + self.starter_pack.analyses_left

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriptionStatus": self.plan,
            "isPremium": self.is_premium,
            "monthlyAnalysisCount": self.monthly_analysis_count,
            "maxMonthlyAnalyses": self.max_monthly_analyses,
            "remainingAnalyses": self.remaining_analyses,
            "canAnalyze": self.can_analyze,
            "daysUntilReset": self.days_until_reset,
            "starterPack": self.starter_pack.to_dict(),
        }


def is_premium(user: "User") -> bool:
    return user.subscription_status in PREMIUM_PLANS or bool(user.manual_premium_access)


def plan_limit(plan: str, free_limit: int = DEFAULT_FREE_MONTHLY_ANALYSES) -> int:
    if plan in PREMIUM_PLANS:
        return UNLIMITED_ANALYSES
    return free_limit


def needs_monthly_reset(last_reset: datetime | None, now: datetime) -> bool:
    if last_reset is None:
        return True
    return (last_reset.year, last_reset.month) != (now.year, now.month)


def first_of_next_month(now: datetime) -> datetime:
    if now.month == 12:
        return datetime(now.year + 1, 1, 1)
    return datetime(now.year, now.month + 1, 1)


def days_until_reset(now: datetime) -> int:
    delta = first_of_next_month(now) - now
    return math.ceil(delta.total_seconds() / 86400)


def starter_pack_status(user: "User") -> StarterPackStatus:
    purchased = bool(user.starter_pack_purchased)
    return StarterPackStatus(
        purchased=purchased,
        analyses_left=(user.starter_analysis_count or 0) if purchased else 0,
        shares_left=(user.starter_shares_count or 0) if purchased else 0,
        exports_left=(user.starter_exports_count or 0) if purchased else 0,
        activated_at=user.starter_pack_activated_at,
    )


def compute_entitlement(
    user: "User",
    now: datetime | None = None,
    *,
    free_limit: int = DEFAULT_FREE_MONTHLY_ANALYSES,
) -> Entitlement:
    """Pure read of a user's entitlement at `now` (a due monthly reset counts as count=0)."""
    now = now or utcnow()
    premium = is_premium(user)
    plan = user.subscription_status if user.subscription_status in VALID_PLANS else PLAN_FREE
    count = user.monthly_analysis_count or 0
    if plan == PLAN_FREE and needs_monthly_reset(user.last_analysis_reset, now):
        count = 0
    max_analyses = UNLIMITED_ANALYSES if premium else plan_limit(plan, free_limit)
    starter = starter_pack_status(user)
    can_analyze = premium or count < max_analyses or starter.analyses_left > 0
    return Entitlement(
        plan=plan,
        is_premium=premium,
        monthly_analysis_count=count,
        max_monthly_analyses=max_analyses,
        can_analyze=can_analyze,
        days_until_reset=None if premium else days_until_reset(now),
        starter_pack=starter,
    )


def apply_monthly_reset(user: "User", now: datetime) -> bool:
    if user.subscription_status in PREMIUM_PLANS:
        return False
    if not needs_monthly_reset(user.last_analysis_reset, now):
        return False
    user.monthly_analysis_count = 0
    user.last_analysis_reset = now
    return True


def get_user_subscription(
    s: "Session",
    user: "User",
    now: datetime | None = None,
    *,
    free_limit: int = DEFAULT_FREE_MONTHLY_ANALYSES,
) -> Entitlement:
    """Entitlement for `user`, persisting a due monthly reset (flushes; caller commits)."""
    now = now or utcnow()
    if apply_monthly_reset(user, now):
        s.flush()
    return compute_entitlement(user, now, free_limit=free_limit)


def consume_analysis(
    s: "Session",
    user: "User",
    now: datetime | None = None,
    *,
    free_limit: int = DEFAULT_FREE_MONTHLY_ANALYSES,
) -> str:
    """
    Spend one analysis. Returns the source used: "premium", "monthly" or "starter".
    Free monthly quota is spent before purchased Starter credits.
    """
    now = now or utcnow()
    entitlement = get_user_subscription(s, user, now, free_limit=free_limit)
    if not entitlement.can_analyze:
        raise EntitlementError(MSG_LIMIT_REACHED)
    if entitlement.is_premium:
        return "premium"
    if entitlement.monthly_analysis_count < entitlement.max_monthly_analyses:
        user.monthly_analysis_count = entitlement.monthly_analysis_count + 1
        source = "monthly"
    else:
        user.starter_analysis_count = (user.starter_analysis_count or 0) - 1
        source = "starter"
    s.flush()
    return source


def purchase_starter_pack(
    s: "Session",
    user: "User",
    now: datetime | None = None,
    *,
    analyses: int = 3,
    shares: int = 1,
    exports: int = 1,
) -> StarterPackStatus:
    if user.starter_pack_purchased:
        raise EntitlementError(MSG_STARTER_ALREADY_PURCHASED)
    now = now or utcnow()
    user.starter_pack_purchased = True
    user.starter_pack_activated_at = now
    user.starter_analysis_count = analyses
    user.starter_shares_count = shares
    user.starter_exports_count = exports
    record_event(
        s,
        actor=user,
        action="starter_pack_purchased",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"analyses": analyses, "shares": shares, "exports": exports},
    )
    s.flush()
    return starter_pack_status(user)


def can_use_share(user: "User") -> bool:
    return is_premium(user) or (bool(user.starter_pack_purchased) and (user.starter_shares_count or 0) > 0)


def can_use_export(user: "User") -> bool:
    return is_premium(user) or (bool(user.starter_pack_purchased) and (user.starter_exports_count or 0) > 0)


def use_share(s: "Session", user: "User") -> None:
    if not can_use_share(user):
        raise EntitlementError(MSG_NO_SHARE)
    if not is_premium(user):
        user.starter_shares_count -= 1
        s.flush()


def use_export(s: "Session", user: "User") -> None:
    if not can_use_export(user):
        raise EntitlementError(MSG_NO_EXPORT)
    if not is_premium(user):
        user.starter_exports_count -= 1
        s.flush()


def update_user_subscription(
    s: "Session",
    user: "User",
    plan: str,
    *,
    actor: "User | None" = None,
    billing_customer_id: str | None = None,
    billing_subscription_id: str | None = None,
    current_period_end: datetime | None = None,
    reason: str | None = None,
) -> "User":
    """Set the plan; upgrading to a paid plan resets the monthly counter."""
    if plan not in VALID_PLANS:
        raise EntitlementError(f"Statut d'abonnement invalide: {plan}")
    old_plan = user.subscription_status
    user.subscription_status = plan
    if plan in PREMIUM_PLANS:
        user.monthly_analysis_count = 0
        user.last_analysis_reset = utcnow()
    if billing_customer_id is not None:
        user.billing_customer_id = billing_customer_id
    if billing_subscription_id is not None:
        user.billing_subscription_id = billing_subscription_id
    if current_period_end is not None or plan == PLAN_FREE:
        user.current_period_end = current_period_end
    record_event(
        s,
        actor=actor,
        action="subscription_changed",
        entity_type="User",
        entity_id=str(user.id),
        reason=reason,
        metadata={"old": old_plan, "new": plan},
    )
    s.flush()
    return user
