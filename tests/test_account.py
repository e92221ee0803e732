"""Tests for the personal dashboard, preferences, data export and account deletion."""
import json
from datetime import timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.judgemyjpeg import create_app
from app.judgemyjpeg.db import session_scope
from app.judgemyjpeg.models import AuditEvent, Base, User
from app.judgemyjpeg.modules.account.service import score_distribution
from app.judgemyjpeg.modules.collections.models import Collection, CollectionItem
from app.judgemyjpeg.modules.photos.models import Favorite, Photo
from app.judgemyjpeg.utils import utcnow


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

    storage_root = tmp_path / "storage"
    now = utcnow()
    with session_scope(app) as s:
        user = User(email="camille@example.com", password_hash=generate_password_hash("pw"), name="Camille", is_active=True)
        other = User(email="autre@example.com", password_hash=generate_password_hash("pw"), name="Alex", is_active=True)
        s.add_all([user, other])
        s.flush()

        photos = []
        for i, (score, age_days) in enumerate(((92, 1), (74, 2), (55, 10), (30, 20))):
            key = f"photos/{user.id}/seed-{i}.jpg"
            (storage_root / key).parent.mkdir(parents=True, exist_ok=True)
            (storage_root / key).write_bytes(b"\xff\xd8\xff fake")
            photo = Photo(
                user_id=user.id,
                storage_key=key,
                filename=f"seed-{i}.jpg",
                content_type="image/jpeg",
                sha256="0" * 64,
                size_bytes=8,
                score=score,
                analysis_json=json.dumps({"score": score}),
                is_top_photo=score >= 85,
                created_at=now - timedelta(days=age_days),
            )
            photos.append(photo)
        s.add_all(photos)
        s.add(
            Photo(
                user_id=other.id,
                storage_key="photos/other.jpg",
                filename="other.jpg",
                content_type="image/jpeg",
                sha256="1" * 64,
                size_bytes=8,
                score=99,
                analysis_json="{}",
            )
        )
        s.flush()

        s.add(Favorite(user_id=user.id, photo_id=photos[0].id))
        small = Collection(user_id=user.id, name="Petite", color="#123456")
        big = Collection(user_id=user.id, name="Grande", color="#654321")
        s.add_all([small, big])
        s.flush()
        s.add_all(
            [
                CollectionItem(collection_id=big.id, photo_id=photos[0].id),
                CollectionItem(collection_id=big.id, photo_id=photos[1].id),
                CollectionItem(collection_id=small.id, photo_id=photos[2].id),
            ]
        )

    return app.test_client()


def _login(client, email="camille@example.com"):
    r = client.post("/api/auth/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200
    return r.json["user"]["id"]


def test_score_distribution_boundaries():
    assert score_distribution([85, 84, 70, 69, 50, 49, 0]) == {"excellent": 1, "good": 2, "average": 2, "poor": 2}


def test_dashboard_stats(client):
    assert client.get("/api/dashboard/stats").status_code == 401
    _login(client)
    r = client.get("/api/dashboard/stats")
    assert r.status_code == 200
    overview = r.json["overview"]
    assert overview["totalPhotos"] == 4
    assert overview["topPhotos"] == 1
    assert overview["favorites"] == 1
    assert overview["collections"] == 2
    assert overview["averageScore"] == 62.8
    assert overview["photosLast7Days"] == 2
    assert r.json["distribution"] == {"excellent": 1, "good": 1, "average": 1, "poor": 1}
    assert [p["score"] for p in r.json["recentPhotos"]] == [92, 74, 55, 30]
    assert "analysis" not in r.json["recentPhotos"][0]
    assert [c["name"] for c in r.json["topCollections"]] == ["Grande", "Petite"]


def test_dashboard_stats_empty(client):
    _login(client, "autre@example.com")
    with session_scope(client.application) as s:
        s.query(Photo).filter(Photo.filename == "other.jpg").delete()
    r = client.get("/api/dashboard/stats")
    assert r.json["overview"]["totalPhotos"] == 0
    assert r.json["overview"]["averageScore"] == 0


def test_preferences(client):
    _login(client)
    r = client.post(
        "/api/user/preferences",
        json={"displayName": "  Camille D. ", "preferredLanguage": "en", "preferredTone": "roast"},
    )
    assert r.status_code == 200
    assert r.json["preferences"] == {"displayName": "Camille D.", "preferredLanguage": "en", "preferredTone": "roast"}

    r = client.get("/api/auth/me")
    assert r.json["user"]["preferences"] == {"language": "en", "tone": "roast"}

    r = client.post("/api/user/preferences", json={"displayName": "", "preferredLanguage": "klingon", "preferredTone": "rude"})
    assert r.status_code == 400
    assert len(r.json["details"]) == 3


def test_export_data(client):
    user_id = _login(client)
    r = client.get("/api/user/export-data")
    assert r.status_code == 200
    assert r.headers["Content-Disposition"] == f'attachment; filename="judgemyjpeg-export-{user_id}.json"'
    data = json.loads(r.data)
    assert data["profile"]["email"] == "camille@example.com"
    assert "password_hash" not in json.dumps(data)
    assert len(data["photos"]) == 4
    assert len(data["collections"]) == 2
    # photos export oldest first; the favorite is the newest
    assert data["favorites"][0]["photoId"] == data["photos"][-1]["id"]
    assert data["subscription"]["subscriptionStatus"] == "free"

    with session_scope(client.application) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "data_exported").count() == 1


def test_delete_account_requires_confirmation(client):
    _login(client)
    r = client.post("/api/user/delete-account", json={"confirmation": "supprimer"})
    assert r.status_code == 400


def test_delete_account(client, tmp_path):
    user_id = _login(client)
    r = client.post("/api/user/delete-account", json={"confirmation": "SUPPRIMER"})
    assert r.status_code == 200
    assert r.json["message"] == "Compte supprimé définitivement"

    assert client.get("/api/auth/me").status_code == 401
    assert not list((tmp_path / "storage" / "photos" / str(user_id)).glob("*.jpg"))

    with session_scope(client.application) as s:
        assert s.get(User, user_id) is None
        assert s.query(Photo).count() == 1
        assert s.query(Collection).count() == 0
        assert s.query(Favorite).count() == 0
        ev = s.query(AuditEvent).filter(AuditEvent.action == "account_deleted").one()
        assert ev.actor_user_id is None
        assert ev.actor_user_email == "camille@example.com"
