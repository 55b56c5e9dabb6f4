#!/usr/bin/env python3
"""
Tonka -- operator command line.

Usage:
  python main.py create-user admin --role admin
  python main.py issue-token admin --expire 3600
  python main.py sign-url /profile/7 tab=overview
  python main.py stages
  python main.py stages web
  python main.py purge-sessions

Configuration comes from the environment / .env exactly as for the web
application (see core/config.py). SECRET_KEY must match the running server
for issue-token and sign-url output to be accepted by it.
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.signing import sign_url
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.config import get_settings
from gateway.exceptions import ConfigurationError
from gateway.kernel import STAGES, StageTable


def _parse_query(pairs: list[str]) -> dict[str, list[str]]:
    """Turn ["a=1", "a=2", "b=x"] into {"a": ["1", "2"], "b": ["x"]}."""
    query: dict[str, list[str]] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ValueError(f"Expected name=value, got {pair!r}")
        query.setdefault(name, []).append(value)
    return query


def cmd_create_user(args: argparse.Namespace) -> int:
    password = sys.stdin.readline().rstrip("\n") if args.password_stdin else getpass.getpass("Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    store = UserStore()
    try:
        uid = store.create_user(User(username=args.username, role=args.role, hashed_password=hash_password(password)))
    except IntegrityError:
        print(f"  [!] User '{args.username}' already exists.")
        return 1
    finally:
        store.close()
    print(f"  Created {args.role} '{args.username}' (id {uid}).")
    return 0


def cmd_issue_token(args: argparse.Namespace) -> int:
    store = UserStore()
    try:
        user = store.get_by_username(args.username)
    finally:
        store.close()
    if user is None or not user.is_active:
        print(f"  [!] No active user named '{args.username}'.")
        return 1
    print(create_access_token(user.id, user.username, user.role, expire_seconds=args.expire))
    return 0


def cmd_sign_url(args: argparse.Namespace) -> int:
    settings = get_settings()
    try:
        query = _parse_query(args.params)
    except ValueError as e:
        print(f"  [!] {e}")
        return 1
    print(sign_url(args.path, query, settings.secret_key, field=settings.params_hash_field))
    return 0


def cmd_stages(args: argparse.Namespace) -> int:
    settings = get_settings()
    try:
        table = StageTable.from_mapping(settings.middleware)
        names = [args.gateway] if args.gateway else list(table.gateways)
        for name in names:
            stage_ids = table.stages_for(name)
            unknown = [s for s in stage_ids if s not in STAGES]
            if unknown:
                raise ConfigurationError(f"Gateway {name!r}: unknown stage(s) {unknown!r}")
            print(f"{name}: {' -> '.join(stage_ids) or '(no stages)'}")
    except ConfigurationError as e:
        print(f"  [!] {e}")
        return 1
    return 0


def cmd_purge_sessions(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = UserStore()
    try:
        removed = store.purge_sessions(settings.session_retention_seconds)
    finally:
        store.close()
    print(f"  Purged {removed} session(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tonka",
        description="Operator tools for the Tonka application.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("create-user", help="Create a user account")
    p.add_argument("username")
    p.add_argument("--role", choices=["admin", "member"], default="member")
    p.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("issue-token", help="Print a bearer token for a user (development and automation)")
    p.add_argument("username")
    p.add_argument(
        "--expire",
        type=int,
        default=0,
        metavar="SECONDS",
        help="Token lifetime in seconds (default: TOKEN_EXPIRE_SECONDS)",
    )
    p.set_defaults(func=cmd_issue_token)

    p = sub.add_parser("sign-url", help="Print a link carrying a route parameter hash")
    p.add_argument("path", help="URL path, e.g. /profile/7")
    p.add_argument("params", nargs="*", metavar="NAME=VALUE", help="Query parameters (repeat a name for lists)")
    p.set_defaults(func=cmd_sign_url)

    p = sub.add_parser("stages", help="Show the configured gateway stage lists")
    p.add_argument("gateway", nargs="?", help="Only show this gateway")
    p.set_defaults(func=cmd_stages)

    p = sub.add_parser("purge-sessions", help="Delete revoked sessions and sessions idle past SESSION_RETENTION_SECONDS")
    p.set_defaults(func=cmd_purge_sessions)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
