"""Tests for registration, login and account credentials."""
import pytest
from werkzeug.security import generate_password_hash

from app.judgemyjpeg import create_app
from app.judgemyjpeg.db import session_scope
from app.judgemyjpeg.models import AuditEvent, Base, User

STRONG_PASSWORD = "Ph0to!Judge#Xyz"


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "TURNSTILE_SECRET_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add_all(
            [
                User(email="camille@example.com", password_hash=generate_password_hash("pw"), name="Camille", is_active=True),
                User(email="suspendu@example.com", password_hash=generate_password_hash("pw"), name="Sam", is_active=False),
            ]
        )

    return app.test_client()


def _register(client, email="nouveau@example.com", password=STRONG_PASSWORD, name="Nouveau"):
    return client.post("/api/auth/register", json={"name": name, "email": email, "password": password})


def test_register_creates_free_account(client):
    r = _register(client)
    assert r.status_code == 201
    user = r.json["user"]
    assert user["email"] == "nouveau@example.com"
    assert user["subscriptionStatus"] == "free"
    assert user["emailVerified"] is None
    assert r.json["verificationToken"]

    with session_scope(client.application) as s:
        u = s.query(User).filter(User.email == "nouveau@example.com").one()
        assert u.monthly_analysis_count == 0
        assert u.password_hash != STRONG_PASSWORD
        assert s.query(AuditEvent).filter(AuditEvent.action == "registration").count() == 1


def test_register_rejects_weak_password(client):
    r = _register(client, password="password")
    assert r.status_code == 400
    assert r.json["error"] == "Mot de passe trop faible"
    assert r.json["details"]
    assert r.json["strength"] == "faible"


def test_register_requires_fields(client):
    r = client.post("/api/auth/register", json={"email": "x@example.com"})
    assert r.status_code == 400


def test_register_duplicate_email(client):
    r = _register(client, email="camille@example.com")
    assert r.status_code == 400
    assert "existe déjà" in r.json["error"]


def test_register_requires_turnstile_when_configured(client):
    client.application.config["TURNSTILE_SECRET_KEY"] = "ts-secret"
    r = _register(client)
    assert r.status_code == 400
    assert r.json["error"] == "Token de vérification manquant"


def test_login_me_logout(client):
    r = client.post("/api/auth/login", json={"email": "camille@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["message"] == "Connexion réussie"

    r = client.get("/api/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "camille@example.com"
    assert r.json["user"]["isAdmin"] is False

    r = client.post("/api/auth/logout")
    assert r.status_code == 200
    r = client.get("/api/auth/me")
    assert r.status_code == 401


def test_login_is_case_insensitive_on_email(client):
    r = client.post("/api/auth/login", json={"email": "  Camille@Example.com ", "password": "pw"})
    assert r.status_code == 200


def test_login_wrong_password_is_audited(client):
    r = client.post("/api/auth/login", json={"email": "camille@example.com", "password": "nope"})
    assert r.status_code == 401
    assert r.json["error"] == "Email ou mot de passe incorrect"
    with session_scope(client.application) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "login_failed").one()
        assert ev.success is False
        assert ev.risk_level == "medium"


def test_login_suspended_account(client):
    r = client.post("/api/auth/login", json={"email": "suspendu@example.com", "password": "pw"})
    assert r.status_code == 403
    assert r.json["error"] == "Compte suspendu"


def test_login_lockout_after_five_attempts(client):
    for _ in range(5):
        r = client.post("/api/auth/login", json={"email": "camille@example.com", "password": "bad"})
        assert r.status_code == 401
    r = client.post("/api/auth/login", json={"email": "camille@example.com", "password": "pw"})
    assert r.status_code == 429
    assert int(r.headers["Retry-After"]) > 0
    with session_scope(client.application) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "multiple_failed_logins").count() >= 1


def test_verify_email_flow(client):
    token = _register(client).json["verificationToken"]
    r = client.post("/api/auth/verify-email", json={"token": token})
    assert r.status_code == 200
    # single use
    r = client.post("/api/auth/verify-email", json={"token": token})
    assert r.status_code == 400
    with session_scope(client.application) as s:
        assert s.query(User).filter(User.email == "nouveau@example.com").one().email_verified_at is not None


def test_verify_email_bad_token(client):
    r = client.post("/api/auth/verify-email", json={"token": "not-a-token"})
    assert r.status_code == 400


def test_validate_password_endpoint(client):
    r = client.post("/api/auth/validate-password", json={"password": STRONG_PASSWORD})
    assert r.status_code == 200
    assert r.json["isValid"] is True
    r = client.post("/api/auth/validate-password", json={"password": "abc"})
    assert r.json["isValid"] is False


def test_non_string_fields_are_rejected_cleanly(client):
    r = client.post("/api/auth/validate-password", json={"password": STRONG_PASSWORD, "email": 42})
    assert r.status_code == 200
    assert r.json["isValid"] is True

    r = client.post("/api/auth/register", json={"name": "Camille", "email": 5, "password": STRONG_PASSWORD})
    assert r.status_code == 400
    r = client.post("/api/auth/login", json={"email": ["camille@example.com"], "password": 1234})
    assert r.status_code == 401


def test_change_password(client):
    client.post("/api/auth/login", json={"email": "camille@example.com", "password": "pw"})
    r = client.post("/api/auth/change-password", json={"currentPassword": "wrong", "newPassword": STRONG_PASSWORD})
    assert r.status_code == 400
    r = client.post("/api/auth/change-password", json={"currentPassword": "pw", "newPassword": STRONG_PASSWORD})
    assert r.status_code == 200
    client.post("/api/auth/logout")
    r = client.post("/api/auth/login", json={"email": "camille@example.com", "password": STRONG_PASSWORD})
    assert r.status_code == 200


def test_forgot_password_unknown_email(client):
    r = client.post("/api/auth/forgot-password", json={"email": "personne@example.com"})
    assert r.status_code == 200
    assert r.json["message"] == "Un email de réinitialisation a été envoyé si cette adresse existe."
    assert "resetToken" not in r.json
    assert client.post("/api/auth/forgot-password", json={}).status_code == 400


def test_reset_password_flow(client):
    r = client.post("/api/auth/forgot-password", json={"email": "Camille@Example.com"})
    assert r.status_code == 200
    token = r.json["resetToken"]

    r = client.post("/api/auth/reset-password", json={"token": token, "password": "password"})
    assert r.status_code == 400
    assert r.json["error"] == "Mot de passe trop faible"

    r = client.post("/api/auth/reset-password", json={"token": token, "password": STRONG_PASSWORD})
    assert r.status_code == 200
    assert r.json["message"] == "Mot de passe réinitialisé avec succès"

    # single use
    r = client.post("/api/auth/reset-password", json={"token": token, "password": STRONG_PASSWORD + "2"})
    assert r.status_code == 400

    assert client.post("/api/auth/login", json={"email": "camille@example.com", "password": "pw"}).status_code == 401
    r = client.post("/api/auth/login", json={"email": "camille@example.com", "password": STRONG_PASSWORD})
    assert r.status_code == 200
    assert r.json["user"]["emailVerified"] is not None

    with session_scope(client.application) as s:
        actions = [e.action for e in s.query(AuditEvent).order_by(AuditEvent.id)]
        assert "password_reset_requested" in actions
        assert actions.count("password_reset") == 1


def test_new_reset_link_invalidates_previous(client):
    first = client.post("/api/auth/forgot-password", json={"email": "camille@example.com"}).json["resetToken"]
    second = client.post("/api/auth/forgot-password", json={"email": "camille@example.com"}).json["resetToken"]
    r = client.post("/api/auth/reset-password", json={"token": first, "password": STRONG_PASSWORD})
    assert r.status_code == 400
    assert r.json["error"].startswith("Token invalide ou expiré")
    r = client.post("/api/auth/reset-password", json={"token": second, "password": STRONG_PASSWORD})
    assert r.status_code == 200


def test_verification_token_cannot_reset_password(client):
    token = _register(client).json["verificationToken"]
    r = client.post("/api/auth/reset-password", json={"token": token, "password": STRONG_PASSWORD})
    assert r.status_code == 400
    assert client.post("/api/auth/reset-password", json={"token": token}).status_code == 400
