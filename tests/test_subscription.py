"""Tests for subscription entitlements, checkout and billing events."""
import json
from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.judgemyjpeg import create_app
from app.judgemyjpeg.db import session_scope
from app.judgemyjpeg.models import Base, User
from app.judgemyjpeg.modules.subscription.billing import BillingError, prepare_checkout, sign_payload
from app.judgemyjpeg.modules.subscription.service import (
    EntitlementError,
    compute_entitlement,
    consume_analysis,
    days_until_reset,
    purchase_starter_pack,
    use_share,
)

NOW = datetime(2025, 3, 15, 12, 0, 0)


def _user(**overrides) -> User:
    fields = dict(
        id=1,
        email="u@example.com",
        password_hash="x",
        is_active=True,
        subscription_status="free",
        monthly_analysis_count=0,
        last_analysis_reset=datetime(2025, 3, 1),
        starter_pack_purchased=False,
        starter_analysis_count=0,
        starter_shares_count=0,
        starter_exports_count=0,
        manual_premium_access=False,
    )
    fields.update(overrides)
    return User(**fields)


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("BILLING_WEBHOOK_SECRET", "whsec-test")
    monkeypatch.setenv("PRICE_ID_STARTER", "price_starter")
    monkeypatch.setenv("PRICE_ID_MONTHLY", "price_monthly")
    monkeypatch.setenv("PRICE_ID_ANNUAL", "price_annual")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "TURNSTILE_SECRET_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add(User(email="camille@example.com", password_hash=generate_password_hash("pw"), name="Camille", is_active=True))

    return app.test_client()


def _login(client):
    r = client.post("/api/auth/login", json={"email": "camille@example.com", "password": "pw"})
    assert r.status_code == 200
    return r.json["user"]["id"]


def _post_event(client, event: dict, secret: str = "whsec-test"):
    body = json.dumps(event).encode("utf-8")
    return client.post(
        "/api/billing/events",
        data=body,
        content_type="application/json",
        headers={"X-Billing-Signature": sign_payload(secret, body)},
    )


# --- pure entitlement rules ---


def test_free_user_within_quota():
    ent = compute_entitlement(_user(monthly_analysis_count=2), NOW)
    assert ent.can_analyze is True
    assert ent.max_monthly_analyses == 3
    assert ent.remaining_analyses == 1
    assert ent.days_until_reset == 17


def test_free_user_quota_exhausted():
    ent = compute_entitlement(_user(monthly_analysis_count=3), NOW)
    assert ent.can_analyze is False
    assert ent.remaining_analyses == 0


def test_new_month_counts_as_reset():
    ent = compute_entitlement(_user(monthly_analysis_count=3, last_analysis_reset=datetime(2025, 2, 27)), NOW)
    assert ent.monthly_analysis_count == 0
    assert ent.can_analyze is True


def test_premium_is_unlimited():
    ent = compute_entitlement(_user(subscription_status="premium", monthly_analysis_count=500), NOW)
    assert ent.is_premium is True
    assert ent.can_analyze is True
    assert ent.remaining_analyses == 999999
    assert ent.days_until_reset is None


def test_manual_premium_is_unlimited():
    ent = compute_entitlement(_user(manual_premium_access=True, monthly_analysis_count=3), NOW)
    assert ent.is_premium is True
    assert ent.can_analyze is True


def test_starter_credits_extend_quota():
    user = _user(monthly_analysis_count=3, starter_pack_purchased=True, starter_analysis_count=2)
    ent = compute_entitlement(user, NOW)
    assert ent.can_analyze is True
    assert ent.remaining_analyses == 2
    assert ent.starter_pack.analyses_left == 2


def test_unpurchased_starter_counts_are_ignored():
    ent = compute_entitlement(_user(monthly_analysis_count=3, starter_analysis_count=5), NOW)
    assert ent.can_analyze is False


def test_days_until_reset_december():
    assert days_until_reset(datetime(2025, 12, 31, 0, 0)) == 1


def test_prepare_checkout_rules():
    prices = {"starter": "p1", "monthly": "p2", "annual": "p3"}
    desc = prepare_checkout(_user(), "monthly", prices)
    assert desc.mode == "subscription"
    assert desc.to_dict()["metadata"] == {"userId": "1", "priceType": "monthly"}
    with pytest.raises(BillingError):
        prepare_checkout(_user(subscription_status="annual"), "monthly", prices)
    with pytest.raises(BillingError):
        prepare_checkout(_user(starter_pack_purchased=True), "starter", prices)
    with pytest.raises(BillingError):
        prepare_checkout(_user(), "lifetime", prices)
    with pytest.raises(BillingError):
        prepare_checkout(_user(), "annual", {"annual": ""})


# --- persisted consumption ---


def test_consume_monthly_then_starter(client):
    app = client.application
    with session_scope(app) as s:
        user = s.query(User).filter(User.email == "camille@example.com").one()
        user.last_analysis_reset = NOW
        purchase_starter_pack(s, user, NOW)
        sources = [consume_analysis(s, user, NOW) for _ in range(5)]
        assert sources == ["monthly", "monthly", "monthly", "starter", "starter"]
        assert user.monthly_analysis_count == 3
        assert user.starter_analysis_count == 1
        with pytest.raises(EntitlementError):
            purchase_starter_pack(s, user, NOW)


def test_consume_fails_when_exhausted(client):
    with session_scope(client.application) as s:
        user = s.query(User).filter(User.email == "camille@example.com").one()
        user.monthly_analysis_count = 3
        user.last_analysis_reset = NOW
        with pytest.raises(EntitlementError):
            consume_analysis(s, user, NOW)


def test_consume_resets_on_new_month(client):
    with session_scope(client.application) as s:
        user = s.query(User).filter(User.email == "camille@example.com").one()
        user.monthly_analysis_count = 3
        user.last_analysis_reset = datetime(2025, 2, 10)
        assert consume_analysis(s, user, NOW) == "monthly"
        assert user.monthly_analysis_count == 1
        assert user.last_analysis_reset == NOW


def test_premium_consumption_does_not_count(client):
    with session_scope(client.application) as s:
        user = s.query(User).filter(User.email == "camille@example.com").one()
        user.subscription_status = "premium"
        assert consume_analysis(s, user, NOW) == "premium"
        assert user.monthly_analysis_count == 0


def test_use_share_requires_credit(client):
    with session_scope(client.application) as s:
        user = s.query(User).filter(User.email == "camille@example.com").one()
        with pytest.raises(EntitlementError):
            use_share(s, user)
        purchase_starter_pack(s, user, NOW, shares=1)
        use_share(s, user)
        assert user.starter_shares_count == 0


# --- HTTP ---


def test_status_requires_login(client):
    r = client.get("/api/subscription/status")
    assert r.status_code == 401


def test_status_for_new_user(client):
    _login(client)
    r = client.get("/api/subscription/status")
    assert r.status_code == 200
    sub = r.json["subscription"]
    assert sub["subscriptionStatus"] == "free"
    assert sub["remainingAnalyses"] == 3
    assert sub["canAnalyze"] is True
    assert sub["starterPack"]["purchased"] is False


def test_checkout_descriptor(client):
    _login(client)
    r = client.post("/api/subscription/checkout", json={"priceType": "annual"})
    assert r.status_code == 200
    assert r.json["checkout"]["priceId"] == "price_annual"
    assert r.json["checkout"]["amountCents"] == 7999

    r = client.post("/api/subscription/checkout", json={"priceType": "bogus"})
    assert r.status_code == 400


def test_billing_event_upgrades_to_premium(client):
    user_id = _login(client)
    r = _post_event(
        client,
        {
            "type": "checkout.completed",
            "userId": user_id,
            "priceType": "monthly",
            "customerId": "cus_1",
            "subscriptionId": "sub_1",
            "currentPeriodEnd": 1767225600,
        },
    )
    assert r.status_code == 200
    assert r.json == {"received": True, "handled": True}

    sub = client.get("/api/subscription/status").json["subscription"]
    assert sub["subscriptionStatus"] == "premium"
    assert sub["isPremium"] is True

    r = _post_event(client, {"type": "subscription.deleted", "userId": user_id})
    assert r.status_code == 200
    sub = client.get("/api/subscription/status").json["subscription"]
    assert sub["subscriptionStatus"] == "free"


def test_billing_event_starter_pack(client):
    user_id = _login(client)
    r = _post_event(client, {"type": "checkout.completed", "userId": user_id, "priceType": "starter"})
    assert r.status_code == 200
    sub = client.get("/api/subscription/status").json["subscription"]
    assert sub["starterPack"]["purchased"] is True
    assert sub["starterPack"]["analysisCount"] == 3

    # second purchase is rejected
    r = _post_event(client, {"type": "checkout.completed", "userId": user_id, "priceType": "starter"})
    assert r.status_code == 400


def test_billing_event_bad_signature(client):
    user_id = _login(client)
    r = _post_event(client, {"type": "checkout.completed", "userId": user_id, "priceType": "monthly"}, secret="wrong")
    assert r.status_code == 400
    assert r.json["error"] == "Signature invalide"


def test_billing_event_unknown_type_is_ignored(client):
    user_id = _login(client)
    r = _post_event(client, {"type": "invoice.created", "userId": user_id})
    assert r.status_code == 200
    assert r.json["handled"] is False


def test_share_endpoint(client):
    _login(client)
    r = client.post("/api/subscription/share")
    assert r.status_code == 403
    assert r.json["error"] == "Aucun partage disponible dans votre starter pack"


def test_zero_quotas_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'zero.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("BILLING_WEBHOOK_SECRET", "whsec-test")
    monkeypatch.setenv("FREE_MONTHLY_ANALYSES", "0")
    monkeypatch.setenv("STARTER_PACK_SHARES", "0")
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add(User(email="camille@example.com", password_hash=generate_password_hash("pw"), name="Camille", is_active=True))
    client = app.test_client()

    user_id = _login(client)
    sub = client.get("/api/subscription/status").json["subscription"]
    assert sub["remainingAnalyses"] == 0
    assert sub["canAnalyze"] is False

    assert _post_event(client, {"type": "checkout.completed", "userId": user_id, "priceType": "starter"}).status_code == 200
    sub = client.get("/api/subscription/status").json["subscription"]
    assert sub["starterPack"]["analysisCount"] == 3
    assert sub["starterPack"]["sharesCount"] == 0
    assert sub["canAnalyze"] is True
