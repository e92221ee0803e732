"""
Release phase, run before each deploy starts serving.

Steps, each idempotent:
  1. check the environment (DATABASE_URL set, no SQLite in production, ADMIN_SECRET in production)
  2. alembic upgrade head
  3. seed roles/permissions and the bootstrap admin
  4. deactivate IP bans that expired while the app was down

    python scripts/release.py
    python scripts/release.py --no-seed
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

PRODUCTION_ENVS = ("prod", "production")


def check_environment() -> str:
    """Return DATABASE_URL, or raise when the environment is unsafe to release into."""
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is not set; refusing to release against an implicit SQLite file.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in PRODUCTION_ENVS:
        if db_url.startswith("sqlite"):
            raise RuntimeError("SQLite DATABASE_URL in production; point it at Postgres.")
        if not (os.environ.get("ADMIN_SECRET") or "").strip():
            raise RuntimeError("ADMIN_SECRET must be set in production.")
    return db_url


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def run_release(*, seed: bool = True) -> None:
    db_url = check_environment()
    print(f"[release] env={os.environ.get('ENV') or '(unset)'}", flush=True)

    print("[release] alembic upgrade head", flush=True)
    migrate(db_url)

    if seed:
        from scripts import init_db

        print("[release] seeding roles/permissions", flush=True)
        init_db.seed_only(database_url_override=db_url)

    from scripts.cleanup_expired_bans import run_cleanup

    run_cleanup(database_url_override=db_url)
    print("[release] done", flush=True)


def main() -> None:
    ap = argparse.ArgumentParser(description="Migrate and seed the JudgeMyJPEG database.")
    ap.add_argument("--no-seed", action="store_true", help="Only run migrations and ban cleanup.")
    args = ap.parse_args()
    run_release(seed=not args.no_seed)


if __name__ == "__main__":
    main()
