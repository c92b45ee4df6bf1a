#!/usr/bin/env python3
"""
Whiskey Canon -- management commands.

Usage:
  python main.py create-user admin admin@example.com --role admin
  python main.py create-user alice alice@example.com --role viewer --check-breach
  python main.py serve --host 0.0.0.0 --port 8000

create-user bootstraps an account without the email round trip: it is
created already verified, with the chosen role. The password is read from
--password or prompted for, and must satisfy the same policy as
self-registration. The breach-corpus lookup is opt-in here so the command
works offline.

Environment variables:
  SECRET_KEY     Required unless DEBUG=true (see core/config.py).
  DATABASE_URL   SQLAlchemy URL; defaults to whiskey_canon.db beside this file.
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.errors import ValidationError
from auth.models import Account, Role
from auth.password_policy import is_password_breached, validate_password
from auth.store import AccountStore
from auth.tokens import hash_password


def _read_password(given: Optional[str]) -> str:
    if given:
        return given
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.", file=sys.stderr)
        sys.exit(1)
    return first


def create_user(args: argparse.Namespace, store: Optional[AccountStore] = None) -> int:
    """Insert a pre-verified account. Returns a process exit code."""
    password = _read_password(args.password)
    breach_check = is_password_breached if args.check_breach else (lambda _pw: False)
    try:
        validate_password(password, breach_check=breach_check)
    except ValidationError as e:
        print(f"  [!] {e.message}", file=sys.stderr)
        return 1

    store = store or AccountStore(db_url=args.database_url)
    account = Account(
        username=args.username,
        email=args.email.strip().lower(),
        role=Role(args.role),
        hashed_password=hash_password(password),
        email_verified=True,
    )
    try:
        account_id = store.create_account(account)
    except IntegrityError:
        print(f"  [!] Username '{args.username}' or email '{args.email}' already exists.", file=sys.stderr)
        return 1
    print(f"Created {account.role.value} '{args.username}' (id={account_id}).")
    return 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload, proxy_headers=True)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="whiskey-canon",
        description="Whiskey Canon management commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user admin admin@example.com --role admin
  python main.py serve --reload
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_create = sub.add_parser("create-user", help="Create a verified account with a chosen role")
    p_create.add_argument("username")
    p_create.add_argument("email")
    p_create.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.admin.value,
        help="Role for the new account (default: admin)",
    )
    p_create.add_argument("--password", help="Password (prompted if omitted)")
    p_create.add_argument(
        "--check-breach",
        action="store_true",
        help="Also reject passwords found in the breach corpus (needs network access)",
    )
    p_create.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    p_create.set_defaults(func=create_user)

    p_serve = sub.add_parser("serve", help="Run the API with uvicorn")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes (development)")
    p_serve.set_defaults(func=serve)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
