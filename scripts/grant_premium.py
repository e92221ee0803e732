#!/usr/bin/env python3
"""Grant (or revoke) manual premium access for a user.

Usage:
  python scripts/grant_premium.py --email someone@example.com --reason "Partenariat"
  python scripts/grant_premium.py --email someone@example.com --revoke
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.constants import RISK_MEDIUM
from app.judgemyjpeg.models import User
from app.judgemyjpeg.utils import utcnow
from scripts._db_utils import database_url, script_session

GRANTED_BY = "cli"


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--reason", default="", help="Why premium is granted (required unless --revoke)")
    parser.add_argument("--revoke", action="store_true", help="Remove manual premium access")
    args = parser.parse_args()

    if not args.revoke and not args.reason.strip():
        parser.error("--reason is required when granting premium")

    with script_session(database_url()) as s:
        user = s.query(User).filter(User.email == args.email.strip().lower()).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            return
        if args.revoke:
            user.manual_premium_access = False
            user.manual_premium_reason = None
            user.manual_premium_granted_at = None
            user.manual_premium_granted_by = None
            action = "manual_premium_revoked"
        else:
            user.manual_premium_access = True
            user.manual_premium_reason = args.reason.strip()[:512]
            user.manual_premium_granted_at = utcnow()
            user.manual_premium_granted_by = GRANTED_BY
            action = "manual_premium_granted"
        record_event(
            s,
            actor=None,
            actor_email=GRANTED_BY,
            action=action,
            entity_type="User",
            entity_id=str(user.id),
            reason=args.reason.strip() or None,
            risk_level=RISK_MEDIUM,
        )
    print(f"{action}: {args.email}")


if __name__ == "__main__":
    main()
