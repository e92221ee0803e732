#!/usr/bin/env python3
"""
Seed the back-office permissions, the admin/moderator roles and the bootstrap admin.

Safe to re-run: missing rows are created, existing ones are left alone, and an
existing admin keeps their password.

Env: ADMIN_EMAIL (admin@judgemyjpeg.fr), ADMIN_PASSWORD.
"""

import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.judgemyjpeg.constants import (
    PERM_ADMIN_FEEDBACK,
    PERM_ADMIN_REPORTS,
    PERM_ADMIN_SECURITY,
    PERM_ADMIN_USERS,
    PERM_ADMIN_VIEW,
)
from app.judgemyjpeg.models import Permission, Role, User
from app.judgemyjpeg.utils import utcnow
from scripts._db_utils import database_url, script_session

PERMISSIONS = {
    PERM_ADMIN_VIEW: "Admin: back office",
    PERM_ADMIN_USERS: "Admin: manage users and subscriptions",
    PERM_ADMIN_SECURITY: "Admin: IP bans and audit logs",
    PERM_ADMIN_FEEDBACK: "Admin: triage feedback",
    PERM_ADMIN_REPORTS: "Admin: review content reports",
}

# role key -> (display name, permission keys)
ROLES = {
    "admin": ("Administrator", tuple(PERMISSIONS)),
    "moderator": ("Moderator", (PERM_ADMIN_VIEW, PERM_ADMIN_FEEDBACK, PERM_ADMIN_REPORTS)),
}


def _permission(s, key: str) -> Permission:
    p = s.query(Permission).filter(Permission.key == key).one_or_none()
    if p is None:
        p = Permission(key=key, name=PERMISSIONS[key])
        s.add(p)
        s.flush()
    return p


def ensure_role(s, key: str) -> Role:
    """Create the role and attach any of its permissions it is missing."""
    name, perm_keys = ROLES[key]
    role = s.query(Role).filter(Role.key == key).one_or_none()
    if role is None:
        role = Role(key=key, name=name)
        s.add(role)
    for perm_key in perm_keys:
        p = _permission(s, perm_key)
        if p not in role.permissions:
            role.permissions.append(p)
    return role


def seed_only(*, database_url_override: str | None = None) -> None:
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@judgemyjpeg.fr").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    with script_session(database_url(database_url_override)) as s:
        roles = {key: ensure_role(s, key) for key in ROLES}
        admin = s.query(User).filter(User.email == admin_email).one_or_none()
        created = admin is None
        if created:
            admin = User(
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                name="Admin",
                is_active=True,
                email_verified_at=utcnow(),
            )
            s.add(admin)
        if roles["admin"] not in admin.roles:
            admin.roles.append(roles["admin"])

    print(f"Seeded roles: {', '.join(ROLES)}")
    print(f"Admin {admin_email}: {'created' if created else 'already present, password untouched'}")


def main() -> None:
    seed_only()


if __name__ == "__main__":
    main()
