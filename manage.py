#!/usr/bin/env python3
"""
Turnstile maintenance commands.

Usage:
  python manage.py init-db
  python manage.py create-admin --email admin@example.com --password 'S3cure!Pass'
  python manage.py create-admin --email admin@example.com --password 'S3cure!Pass' --name "Site Admin"
  python manage.py cleanup-sessions
  python manage.py --database-url sqlite:///./other.db init-db

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (default: ./turnstile.db)
  DEBUG          true for development mode (auto-generated SECRET_KEY)
  SECRET_KEY     Required outside development mode
"""

import argparse
from typing import Optional

from auth.db import create_db_engine
from auth.errors import AuthError
from auth.models import User
from auth.roles import ADMIN_ROLE, RoleStore
from auth.sessions import SessionStore
from auth.tokens import Credentials, is_valid_email, normalize_email, validate_password_strength
from auth.users import UserStore
from core.config import Settings, get_settings


def _init_db(engine, settings: Settings, args: argparse.Namespace) -> int:
    created = RoleStore(engine).ensure_default_roles()
    print("  Schema ready.")
    if created:
        print(f"  Default roles created: {', '.join(r.name for r in created)}")
    else:
        print("  Default roles already present.")
    return 0


def _create_admin(engine, settings: Settings, args: argparse.Namespace) -> int:
    email = normalize_email(args.email)
    if not is_valid_email(email):
        print(f"  [!] '{args.email}' is not a valid email address.")
        return 1
    check = validate_password_strength(args.password)
    if not check.valid:
        print("  [!] Password rejected:")
        for reason in check.reasons:
            print(f"      - {reason}")
        return 1

    roles = RoleStore(engine)
    roles.ensure_default_roles()
    users = UserStore(engine)
    try:
        user = users.create_user(
            User(
                email=email,
                password_hash=Credentials(settings).hash_password(args.password),
                name=args.name,
                is_active=True,
            )
        )
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    users.assign_role(user.id, roles.find_by_name(ADMIN_ROLE).id)
    print(f"  Admin {user.email} created (id={user.id}).")
    return 0


def _cleanup_sessions(engine, settings: Settings, args: argparse.Namespace) -> int:
    count = SessionStore(engine).sweep_expired()
    print(f"  {count} expired session(s) deactivated.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="turnstile-manage",
        description="Turnstile database and account maintenance.",
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    init_db = commands.add_parser("init-db", help="Create tables and the default roles")
    init_db.set_defaults(handler=_init_db)

    create_admin = commands.add_parser("create-admin", help="Create an active administrator account")
    create_admin.add_argument("--email", required=True)
    create_admin.add_argument("--password", required=True)
    create_admin.add_argument("--name", default=None)
    create_admin.set_defaults(handler=_create_admin)

    cleanup = commands.add_parser("cleanup-sessions", help="Deactivate every expired session")
    cleanup.set_defaults(handler=_cleanup_sessions)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    settings = get_settings()
    engine = create_db_engine(args.database_url or settings.database_url)
    try:
        return args.handler(engine, settings, args)
    finally:
        engine.dispose()


if __name__ == "__main__":
    raise SystemExit(main())
