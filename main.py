#!/usr/bin/env python3
"""
Gatekeeper -- account bootstrap and refresh-record housekeeping.

Usage:
  python main.py create-user admin@example.com --role SUPER_ADMIN
  python main.py create-user a@test.com --password-stdin < secret.txt
  python main.py set-role a@test.com MANAGER
  python main.py revoke a@test.com
  python main.py purge-refresh

create-user and set-role write the Credential Store directly and bypass the
rank guards. They exist for provisioning the first administrator and any
SUPER_ADMIN, which the API can never grant.

Environment variables:
  SECRET_KEY    Signing key (>= 32 chars). Required unless DEBUG=true.
  DATABASE_URL  SQLAlchemy URL of the auth database.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.credentials import hash_password
from auth.engine import AuthenticationEngine, build_auth_engine
from auth.models import User
from auth.roles import Role
from core.config import get_settings

logger = logging.getLogger("gatekeeper.cli")


def _read_password(from_stdin: bool) -> str:
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Repeat password: "):
        raise SystemExit("  [!] Passwords do not match.")
    return first


def create_user(engine: AuthenticationEngine, login: str, role: Role, password: str) -> int:
    """Insert an account with the given role. Returns its id."""
    if len(password) < 8:
        raise SystemExit("  [!] Password must be at least 8 characters.")
    try:
        user_id = engine.users.create_user(User(login=login, role=role, hashed_password=hash_password(password)))
    except IntegrityError:
        raise SystemExit(f"  [!] Login '{login}' already exists.") from None
    print(f"  Created {role.value} account '{login}' (id {user_id}).")
    return user_id


def set_role(engine: AuthenticationEngine, login: str, role: Role) -> None:
    if not engine.users.update_role(login, role):
        raise SystemExit(f"  [!] No account '{login}'.")
    logger.warning("Role of %r set to %s from the CLI, rank checks bypassed", login, role.value)
    print(f"  '{login}' is now {role.value}.")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Gatekeeper account and refresh-token administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--database-url", help="Override DATABASE_URL for this run")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create an account (any role, including SUPER_ADMIN)")
    create.add_argument("login")
    create.add_argument("--role", type=Role, choices=list(Role), default=Role.USER)
    create.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")

    role_cmd = sub.add_parser("set-role", help="Overwrite an account's role without rank checks")
    role_cmd.add_argument("login")
    role_cmd.add_argument("role", type=Role, choices=list(Role))

    revoke = sub.add_parser("revoke", help="Revoke every refresh record of an account")
    revoke.add_argument("login")

    sub.add_parser("purge-refresh", help="Delete expired refresh records")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")

    engine = build_auth_engine(get_settings(), db_url=args.database_url)
    try:
        if args.command == "create-user":
            create_user(engine, args.login, args.role, _read_password(args.password_stdin))
        elif args.command == "set-role":
            set_role(engine, args.login, args.role)
        elif args.command == "revoke":
            count = engine.logout(args.login)
            print(f"  Revoked {count} refresh record(s) for '{args.login}'.")
        elif args.command == "purge-refresh":
            removed = engine.registry.purge_expired()
            print(f"  Purged {removed} expired refresh record(s).")
    finally:
        engine.close()


if __name__ == "__main__":
    main()
