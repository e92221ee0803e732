import pytest
from werkzeug.security import generate_password_hash

from app.judgemyjpeg import create_app
from app.judgemyjpeg.db import session_scope
from app.judgemyjpeg.models import Base, Permission, Role, User


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "TURNSTILE_SECRET_KEY", "ADMIN_SECRET"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        p = Permission(key="admin.view", name="Admin: back office")
        r = Role(key="admin", name="Administrator")
        r.permissions.append(p)
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), name="Admin", is_active=True)
        u.roles.append(r)
        s.add_all([p, r, u])

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_api_health_reports_database(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json["status"] == "healthy"
    assert r.json["services"]["database"]["status"] == "up"
    assert r.json["version"] == "1.0.0"
    assert r.json["timestamp"].endswith("Z")


def test_api_health_503_when_database_down(client, monkeypatch):
    monkeypatch.setattr("app.judgemyjpeg.routes.ping_database", lambda app: (False, 12.3))
    r = client.get("/api/health")
    assert r.status_code == 503
    assert r.json["status"] == "unhealthy"
    assert r.json["services"]["database"]["status"] == "down"


def test_cache_policy_manifest(client):
    r = client.get("/api/cache-policy")
    assert r.status_code == 200
    assert r.json["version"].startswith("v")
    assert r.json["routes"]["sensitive"]["strategy"] == "network-only"


def test_security_headers_and_request_id(client):
    r = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert "frame-ancestors 'none'" in r.headers["Content-Security-Policy"]
    assert r.headers["X-Request-ID"] == "req-123"
    # HSTS only in production
    assert "Strict-Transport-Security" not in r.headers


def test_unknown_route_returns_french_json(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.json == {"error": "Ressource non trouvée"}


def test_method_not_allowed_json(client):
    r = client.put("/api/health")
    assert r.status_code == 405
    assert r.json["error"] == "Méthode non autorisée"


def test_login_and_admin_access(client):
    # Anonymous is rejected
    r = client.get("/api/admin/check-permissions")
    assert r.status_code == 401
    assert r.json["error"] == "Non authentifié"

    r = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["isAdmin"] is True

    r = client.get("/api/admin/check-permissions")
    assert r.status_code == 200
    assert r.json["via"] == "session"


def test_sensitive_api_is_not_cached(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.headers["Cache-Control"] == "no-store"


def test_production_requires_admin_secret(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "a-strong-secret")
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@localhost/db")
    monkeypatch.delenv("ADMIN_SECRET", raising=False)
    with pytest.raises(RuntimeError):
        create_app()


def test_production_rejects_sqlite(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "a-strong-secret")
    monkeypatch.setenv("ADMIN_SECRET", "s3cret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError):
        create_app()
