from __future__ import annotations

import time
from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    is_postgres = db_url.startswith("postgres")
    engine_kwargs: dict[str, object] = {
        "future": True,
        "pool_pre_ping": True,
    }
    if is_postgres:
        engine_kwargs.update(
            {
                "pool_recycle": 1800,
                "pool_size": 5,
                "max_overflow": 10,
                "pool_timeout": 30,
            }
        )
    engine = create_engine(db_url, **engine_kwargs)
    if db_url.startswith("sqlite"):
        # ON DELETE CASCADE / SET NULL are no-ops in sqlite unless enabled per connection.
        @event.listens_for(engine, "connect")
        def _sqlite_fk_pragma(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def db_session(app: Flask | None = None) -> Session:
    """
    Request-scoped session. Use inside request handlers.
    """
    if hasattr(g, "db_session") and g.db_session is not None:
        return g.db_session
    if app is None:
        app = current_app
    sm = app.extensions["sqlalchemy_sessionmaker"]
    g.db_session = sm()  # type: ignore[assignment]
    return g.db_session


def teardown_db_session(exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is None:
        return
    try:
        # handlers commit explicitly; anything left over after an error is discarded
        if exc is not None:
            s.rollback()
        s.close()
    except SQLAlchemyError as e:
        current_app.logger.warning("Closing request session failed: %s", e)


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Non-request helper for scripts and tests: yields a session and commits/rolls back.
    """
    sm = app.extensions["sqlalchemy_sessionmaker"]
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def ping_database(app: Flask) -> tuple[bool, float]:
    """Run `SELECT 1` and return (ok, elapsed milliseconds)."""
    engine = app.extensions["sqlalchemy_engine"]
    started = time.perf_counter()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        app.logger.error("Database ping failed: %s", e)
        return False, (time.perf_counter() - started) * 1000
    return True, (time.perf_counter() - started) * 1000
