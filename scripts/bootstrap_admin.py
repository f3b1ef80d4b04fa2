#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from ecosystem_auth.core.config import DEV_BOOTSTRAP_ALLOW, IS_DEV  # noqa: E402
from ecosystem_auth.core.database import SessionLocal, engine  # noqa: E402
from ecosystem_auth.services.bootstrap import ensure_auth_tables, upsert_user  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or update a login for local environments.")
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--password", help="Password (required when the user does not exist yet)")
    parser.add_argument("--name", required=True, help="Full name")
    parser.add_argument("--username", help="Optional username login")
    parser.add_argument("--company", type=int, help="Company ID to grant access to")
    parser.add_argument("--role", default="admin", help="Role inside --company (e.g. business_owner)")
    parser.add_argument("--super-admin", action="store_true", help="Flag the user as a super-admin")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Run without DEV_BOOTSTRAP_ALLOW=1",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    if not DEV_BOOTSTRAP_ALLOW and not args.force:
        print("Bootstrap disabled. Set DEV_BOOTSTRAP_ALLOW=1 or pass --force.")
        return 1

    try:
        ensure_auth_tables(engine)
    except RuntimeError as exc:
        print(str(exc))
        return 1

    db = SessionLocal()
    try:
        user, created = upsert_user(
            db,
            email=args.email,
            full_name=args.name,
            password=args.password,
            username=args.username,
            super_admin=args.super_admin,
            company_id=args.company,
            role=args.role if args.company is not None else None,
        )
    except ValueError as exc:
        print(str(exc))
        return 1
    finally:
        db.close()

    action = "created" if created else "updated"
    print(f"User {action}: id={user.id} email={user.email} super_admin={user.is_super_admin}")
    if IS_DEV:
        password_info = args.password if args.password else "<unchanged>"
        company_info = args.company if args.company is not None else "-"
        print(f"DEV summary -> Email: {user.email} | Company: {company_info} | Password: {password_info}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
