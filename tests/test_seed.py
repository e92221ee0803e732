from sqlalchemy import create_engine

from app.judgemyjpeg.constants import PERM_ADMIN_FEEDBACK, PERM_ADMIN_REPORTS, PERM_ADMIN_VIEW
from app.judgemyjpeg.models import Base, Permission, Role, User
from scripts import init_db
from scripts._db_utils import script_session


def _db(tmp_path):
    url = f"sqlite:///{tmp_path/'seed.db'}"
    engine = create_engine(url, future=True)
    Base.metadata.create_all(bind=engine)
    engine.dispose()
    return url


def test_seed_is_idempotent(tmp_path, monkeypatch):
    url = _db(tmp_path)
    monkeypatch.setenv("ADMIN_EMAIL", "Boss@JudgeMyJPEG.fr")
    monkeypatch.setenv("ADMIN_PASSWORD", "first-password")
    init_db.seed_only(database_url_override=url)

    with script_session(url) as s:
        admin = s.query(User).filter(User.email == "boss@judgemyjpeg.fr").one()
        first_hash = admin.password_hash
        assert [r.key for r in admin.roles] == ["admin"]

    monkeypatch.setenv("ADMIN_PASSWORD", "second-password")
    init_db.seed_only(database_url_override=url)

    with script_session(url) as s:
        assert s.query(Permission).count() == 5
        assert s.query(Role).count() == 2
        admin = s.query(User).filter(User.email == "boss@judgemyjpeg.fr").one()
        assert admin.password_hash == first_hash
        assert len(admin.roles) == 1


def test_moderator_role_permissions(tmp_path):
    url = _db(tmp_path)
    with script_session(url) as s:
        moderator = init_db.ensure_role(s, "moderator")
        admin = init_db.ensure_role(s, "admin")
        s.flush()
        assert {p.key for p in moderator.permissions} == {PERM_ADMIN_VIEW, PERM_ADMIN_FEEDBACK, PERM_ADMIN_REPORTS}
        assert len(admin.permissions) == 5
        assert s.query(Permission).count() == 5
