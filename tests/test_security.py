from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.judgemyjpeg.models import AuditEvent, Base, BannedIP, User
from app.judgemyjpeg.security import (
    ban_ip,
    banned_ip_to_dict,
    cleanup_expired_bans,
    find_active_ban,
    unban_ip,
)

NOW = datetime(2025, 4, 10, 9, 30)


@pytest.fixture()
def s(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path/'sec.db'}", future=True)

    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, expire_on_commit=False, future=True)()
    session.add(User(email="admin@example.com", password_hash="x", name="Admin", is_active=True))
    session.flush()
    yield session
    session.close()
    engine.dispose()


def _admin(s):
    return s.query(User).filter(User.email == "admin@example.com").one()


def test_temporary_ban(s):
    ban = ban_ip(s, "203.0.113.7", actor=_admin(s), reason="Scraping", duration_hours=2, now=NOW)
    assert ban.expires_at == NOW + timedelta(hours=2)
    assert find_active_ban(s, "203.0.113.7", NOW + timedelta(hours=1)) is not None
    assert find_active_ban(s, "203.0.113.7", NOW + timedelta(hours=3)) is None
    assert find_active_ban(s, "203.0.113.8", NOW) is None

    ev = s.query(AuditEvent).filter(AuditEvent.action == "ip_banned").one()
    assert ev.risk_level == "high"
    assert ev.actor_user_email == "admin@example.com"


def test_permanent_ban(s):
    ban = ban_ip(s, "198.51.100.1", actor=None, duration_hours=None, now=NOW)
    assert ban.expires_at is None
    assert find_active_ban(s, "198.51.100.1", NOW + timedelta(days=3650)) is not None
    assert banned_ip_to_dict(ban)["expiresAt"] is None


def test_reban_replaces_active_ban(s):
    first = ban_ip(s, "203.0.113.7", actor=None, reason="1", duration_hours=1, now=NOW)
    second = ban_ip(s, "203.0.113.7", actor=None, reason="2", duration_hours=48, now=NOW + timedelta(minutes=5))
    assert first.is_active is False
    assert second.is_active is True
    assert find_active_ban(s, "203.0.113.7", NOW + timedelta(minutes=10)).reason == "2"


def test_unban(s):
    ban_ip(s, "203.0.113.7", actor=None, now=NOW)
    assert unban_ip(s, "203.0.113.7", actor=_admin(s)) == 1
    assert find_active_ban(s, "203.0.113.7", NOW) is None
    assert unban_ip(s, "203.0.113.7", actor=None) == 0


def test_cleanup_expired_bans(s):
    ban_ip(s, "203.0.113.1", actor=None, duration_hours=1, now=NOW)
    ban_ip(s, "203.0.113.2", actor=None, duration_hours=72, now=NOW)
    ban_ip(s, "203.0.113.3", actor=None, now=NOW)

    assert cleanup_expired_bans(s, NOW + timedelta(hours=2)) == 1
    active = {b.ip_address for b in s.query(BannedIP).filter(BannedIP.is_active.is_(True))}
    assert active == {"203.0.113.2", "203.0.113.3"}
    assert cleanup_expired_bans(s, NOW + timedelta(hours=2)) == 0
