#!/usr/bin/env python3
"""
Gatehouse -- administrative command line.

Usage:
  python main.py seed
  python main.py create-admin admin@example.com
  python main.py create-admin admin@example.com --password 's3cret-pass' --first-name Ada
  python main.py sweep

Configuration comes from the same environment variables and .env file as the
API (DATABASE_URL, SECRET_KEY, DEBUG, ...).
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from api.services import Services, build_services
from auth.errors import Failure
from auth.models import User
from auth.tokens import hash_password
from core.config import get_settings
from core.schema import create_db_engine
from rbac.seed import ADMIN_ROLE, seed_defaults


def _build() -> Services:
    settings = get_settings()
    return build_services(create_db_engine(settings.database_url), settings)


def cmd_seed(services: Services, args: argparse.Namespace) -> int:
    created = seed_defaults(services.graph)
    print(f"  Seeded {created['permissions']} permission(s) and {created['roles']} role(s).")
    return 0


def cmd_create_admin(services: Services, args: argparse.Namespace) -> int:
    """Create a verified user holding the Admin system role."""
    password: Optional[str] = args.password
    if not password:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Repeat password: "):
            print("  [!] Passwords do not match.")
            return 1
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1

    seed_defaults(services.graph)
    user = User(
        email=args.email,
        hashed_password=hash_password(password, rounds=services.settings.bcrypt_rounds),
        first_name=args.first_name,
        last_name=args.last_name,
        is_email_verified=True,
    )
    try:
        user_id = services.users.create_user(user)
    except IntegrityError:
        print(f"  [!] An account for '{args.email}' already exists.")
        return 1

    admin = services.graph.get_role_by_name(ADMIN_ROLE)
    result = services.graph.assign_role(user_id, admin.id)
    if isinstance(result, Failure):
        print(f"  [!] {result.message}")
        return 1
    print(f"  Created admin user {args.email} (id {user_id}).")
    return 0


def cmd_sweep(services: Services, args: argparse.Namespace) -> int:
    removed = services.sweep()
    print(
        f"  Removed {removed['blacklist']} blacklist entr(y/ies), "
        f"{removed['expired_sessions']} expired and {removed['inactive_sessions']} inactive session(s)."
    )
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Gatehouse administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("seed", help="Create the default permissions and system roles")

    admin = sub.add_parser("create-admin", help="Create a verified user with the Admin role")
    admin.add_argument("email", help="Login email for the new admin")
    admin.add_argument("--password", help="Password (prompted for when omitted)")
    admin.add_argument("--first-name", default="", help="First name")
    admin.add_argument("--last-name", default="", help="Last name")

    sub.add_parser("sweep", help="Purge expired blacklist entries and stale sessions")

    args = parser.parse_args(argv)
    handlers = {"seed": cmd_seed, "create-admin": cmd_create_admin, "sweep": cmd_sweep}
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 2

    services = _build()
    try:
        return handler(services, args)
    finally:
        services.close()


if __name__ == "__main__":
    sys.exit(main())
