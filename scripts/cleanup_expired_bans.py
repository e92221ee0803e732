#!/usr/bin/env python3
"""Deactivate IP bans whose expiry has passed.

Expired bans never block requests, this only keeps the active list tidy.
Run from cron or the release phase.

Usage:
  python scripts/cleanup_expired_bans.py
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.judgemyjpeg.security import cleanup_expired_bans
from scripts._db_utils import database_url, script_session


def run_cleanup(*, database_url_override: str | None = None) -> int:
    with script_session(database_url(database_url_override)) as s:
        count = cleanup_expired_bans(s)
    print(f"Expired IP bans deactivated: {count}", flush=True)
    return count


def main() -> None:
    run_cleanup()


if __name__ == "__main__":
    main()
