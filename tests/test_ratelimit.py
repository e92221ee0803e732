import pytest

from app.judgemyjpeg import create_app
from app.judgemyjpeg.models import Base
from app.judgemyjpeg.ratelimit import FixedWindowRateLimiter, limit_for_path


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "true")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "TURNSTILE_SECRET_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app.test_client()


def test_fixed_window_counts_and_resets():
    clock = _Clock()
    limiter = FixedWindowRateLimiter(clock=clock)
    results = [limiter.hit("k", 3, 60) for _ in range(4)]
    assert [r.success for r in results] == [True, True, True, False]
    assert results[0].remaining == 2
    assert results[2].remaining == 0
    assert results[3].retry_after == 60

    clock.now += 61
    again = limiter.hit("k", 3, 60)
    assert again.success is True
    assert again.remaining == 2


def test_fixed_window_keys_are_independent():
    limiter = FixedWindowRateLimiter(clock=_Clock())
    assert limiter.hit("a", 1, 60).success is True
    assert limiter.hit("a", 1, 60).success is False
    assert limiter.hit("b", 1, 60).success is True


def test_expired_windows_are_purged():
    clock = _Clock()
    limiter = FixedWindowRateLimiter(clock=clock)
    limiter.hit("a", 5, 10)
    limiter.hit("b", 5, 10)
    assert len(limiter) == 2
    clock.now += 11
    limiter.hit("c", 5, 10)
    assert len(limiter) == 1


def test_limit_for_path():
    assert limit_for_path("/api/photos/analyze") == 5
    assert limit_for_path("/api/auth/register") == 3
    assert limit_for_path("/api/photos/all") == 30
    assert limit_for_path("/api/admin/users") == 30
    assert limit_for_path("/api/collections") is None
    assert limit_for_path("/health") is None


def test_register_limited_to_three_per_minute(client):
    for _ in range(3):
        r = client.post("/api/auth/register", json={})
        assert r.status_code == 400
    r = client.post("/api/auth/register", json={})
    assert r.status_code == 429
    assert r.json["error"] == "Trop de requêtes. Réessayez dans une minute."
    assert 0 < int(r.headers["Retry-After"]) <= 60


def test_rate_limit_headers_present(client):
    r = client.get("/api/photos/all")
    assert r.status_code == 401
    assert r.headers["X-RateLimit-Limit"] == "30"
    assert r.headers["X-RateLimit-Remaining"] == "29"
    assert int(r.headers["X-RateLimit-Reset"]) > 0


def test_anonymous_identifier_includes_user_agent(client):
    for _ in range(3):
        client.post("/api/auth/register", json={}, headers={"User-Agent": "agent-a"})
    r = client.post("/api/auth/register", json={}, headers={"User-Agent": "agent-a"})
    assert r.status_code == 429
    r = client.post("/api/auth/register", json={}, headers={"User-Agent": "agent-b"})
    assert r.status_code == 400


def test_disabled_rate_limit(client):
    client.application.config["RATE_LIMIT_ENABLED"] = False
    for _ in range(5):
        r = client.post("/api/auth/register", json={})
        assert r.status_code == 400
