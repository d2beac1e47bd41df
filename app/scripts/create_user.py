"""
Create a user (e.g. first superadmin). Run from project root after seeding roles:
  python -m app.scripts.create_user EMAIL USERNAME PASSWORD [role]
Example:
  python -m app.scripts.create_user ops@example.com ops your-secure-password superadmin
"""
import argparse
import sys

from app.core.database import open_session
from app.core.security import (
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
    hash_password,
)
from app.models import Role, User
from app.services.permissions import RoleName


def main() -> int:
    parser = argparse.ArgumentParser(description="Create an Amexing user (no registration UI).")
    parser.add_argument("email", help="Email address (unique)")
    parser.add_argument("username", help="Username (1-255 chars)")
    parser.add_argument("password", help="Password (8-128 chars)")
    parser.add_argument(
        "role",
        nargs="?",
        default=RoleName.GUEST.value,
        choices=[r.value for r in RoleName],
    )
    parser.add_argument("--organization", default=None, help="Organization id")
    parser.add_argument("--department", default=None, help="Department id")
    args = parser.parse_args()

    email = args.email.strip().lower()
    username = args.username.strip()
    if "@" not in email:
        print("Invalid email address.", file=sys.stderr)
        return 1
    if not (USERNAME_MIN_LEN <= len(username) <= USERNAME_MAX_LEN):
        print("Invalid username length.", file=sys.stderr)
        return 1
    if not (PASSWORD_MIN_LEN <= len(args.password) <= PASSWORD_MAX_LEN):
        print("Password must be 8-128 characters.", file=sys.stderr)
        return 1

    db = open_session()
    try:
        role = db.query(Role).filter(Role.name == args.role).first()
        if role is None:
            print(f"Role '{args.role}' not found; run app.scripts.seed_roles first.", file=sys.stderr)
            return 1
        existing = (
            db.query(User).filter((User.email == email) | (User.username == username)).first()
        )
        if existing:
            print(f"User '{username}' or '{email}' already exists.", file=sys.stderr)
            return 1
        user = User(
            email=email,
            username=username,
            password_hash=hash_password(args.password),
            role_id=role.id,
            organization_id=args.organization,
            department_id=args.department,
            oauth_accounts=[],
            granted_permissions=[],
            denied_permissions=[],
            context_memberships=[],
        )
        db.add(user)
        db.commit()
        print(f"Created user '{username}' with role '{args.role}'.")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
