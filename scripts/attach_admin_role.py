#!/usr/bin/env python3
"""Grant (or revoke) a back-office role for an existing account.

Usage:
  python scripts/attach_admin_role.py --email someone@judgemyjpeg.fr
  python scripts/attach_admin_role.py --email modo@judgemyjpeg.fr --role moderator
  python scripts/attach_admin_role.py --email modo@judgemyjpeg.fr --role moderator --revoke
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.models import User
from scripts._db_utils import database_url, script_session
from scripts.init_db import ROLES, ensure_role


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True)
    parser.add_argument("--role", choices=sorted(ROLES), default="admin")
    parser.add_argument("--revoke", action="store_true", help="Remove the role instead of granting it")
    args = parser.parse_args()
    email = args.email.strip().lower()

    with script_session(database_url()) as s:
        user = s.query(User).filter(User.email == email).one_or_none()
        if user is None:
            print(f"No account for {email}")
            return 1
        role = ensure_role(s, args.role)
        has_role = role in user.roles
        if has_role != args.revoke:
            print(f"Nothing to do: {email} {'lacks' if args.revoke else 'already has'} role {args.role}")
            return 0
        if args.revoke:
            user.roles.remove(role)
        else:
            user.roles.append(role)
        record_event(
            s,
            actor=None,
            actor_email="cli",
            action="role_revoked" if args.revoke else "role_granted",
            entity_type="User",
            entity_id=str(user.id),
            risk_level="high",
            metadata={"role": args.role, "email": email},
        )
    print(f"Role {args.role} {'revoked from' if args.revoke else 'granted to'} {email}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
