#!/usr/bin/env python3
"""
Container entrypoint: release phase, then gunicorn in place of this process.

    python scripts/start.py               # migrate + seed + serve
    python scripts/start.py --skip-release

Env: PORT (8080), WEB_CONCURRENCY (2), GUNICORN_TIMEOUT (120; analyzer calls are slow).
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _int_env(name: str, default: int, *, low: int, high: int) -> int:
    raw = os.environ.get(name, "").strip() or str(default)
    try:
        value = int(raw)
    except ValueError:
        value = -1
    if value < low or value > high:
        print(f"ERROR: invalid {name}={raw!r} (expected {low}-{high})", flush=True)
        sys.exit(1)
    return value


def gunicorn_argv(port: int, workers: int, timeout: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    ap = argparse.ArgumentParser(description="Start the JudgeMyJPEG API.")
    ap.add_argument("--skip-release", action="store_true", help="Do not run migrations/seed before serving.")
    args = ap.parse_args()

    port = _int_env("PORT", 8080, low=1, high=65535)
    workers = _int_env("WEB_CONCURRENCY", 2, low=1, high=32)
    timeout = _int_env("GUNICORN_TIMEOUT", 120, low=10, high=600)

    if not args.skip_release:
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            print(f"Release failed: {e}", flush=True)
            sys.exit(1)

    print(f"=== gunicorn on 0.0.0.0:{port} workers={workers} timeout={timeout}s ===", flush=True)
    os.execvp("gunicorn", gunicorn_argv(port, workers, timeout))


if __name__ == "__main__":
    main()
