#!/usr/bin/env python3
"""
SwimDesk admin CLI -- maintenance tasks that run outside the web server.

Usage:
  python main.py repair-passwords
  python main.py repair-passwords --role INSTRUCTOR --dry-run
  python main.py create-super-admin --email super@demo.com --name "Super Admin"

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the user database (default sqlite:///swimdesk.db)
  BCRYPT_ROUNDS  Cost factor for create-super-admin (repair-passwords uses >= 12)

Exit status:
  0  success
  1  finished, but at least one record failed / nothing was created
  2  could not open or read the user database
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import User, UserRole
from auth.passwords import hash_password
from auth.repair import REPAIR_ROUNDS, run_repair_job
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("swimdesk.cli")


def _repair_passwords(store: UserStore, args: argparse.Namespace) -> int:
    rounds = max(REPAIR_ROUNDS, get_settings().bcrypt_rounds)
    report = run_repair_job(store, role=UserRole(args.role), rounds=rounds, dry_run=args.dry_run)
    print(report.summary())
    return 1 if report.failed else 0


def _create_super_admin(store: UserStore, args: argparse.Namespace) -> int:
    if store.get_by_email(args.email) is not None:
        print(f"  [!] A user with email {args.email} already exists.")
        return 1

    password: Optional[str] = args.password or getpass.getpass("Password: ")
    if not password:
        print("  [!] Password must not be empty.")
        return 1

    try:
        user_id = store.create_user(
            User(
                email=args.email,
                name=args.name,
                password=hash_password(password),
                role=UserRole.SUPER_ADMIN,
            )
        )
    except (ValueError, IntegrityError) as e:
        print(f"  [!] Could not create super admin: {e}")
        return 1

    print(f"Super admin created (id={user_id}).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="SwimDesk admin tasks")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override DATABASE_URL for this run",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    repair = subparsers.add_parser(
        "repair-passwords",
        help="Hash passwords that were stored in plaintext",
    )
    repair.add_argument(
        "--role",
        choices=[r.value for r in UserRole],
        default=UserRole.INSTRUCTOR.value,
        help="Only repair users with this role (default: INSTRUCTOR)",
    )
    repair.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without writing anything",
    )
    repair.set_defaults(handler=_repair_passwords)

    super_admin = subparsers.add_parser(
        "create-super-admin",
        help="Create the platform-wide SUPER_ADMIN account",
    )
    super_admin.add_argument("--email", required=True)
    super_admin.add_argument("--name", default="Super Admin")
    super_admin.add_argument(
        "--password",
        default=None,
        help="Password (prompted for if omitted)",
    )
    super_admin.set_defaults(handler=_create_super_admin)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    db_url = args.database_url or get_settings().database_url
    try:
        store = UserStore(db_url)
    except SQLAlchemyError:
        logger.exception("Could not open user database")
        return 2

    try:
        return args.handler(store, args)
    except SQLAlchemyError:
        logger.exception("User database error; aborting %s", args.command)
        return 2
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
