#!/usr/bin/env python3
"""
SessionGate -- administration commands.

Usage:
  python main.py create-admin admin@example.com
  python main.py purge-sessions

The server itself is started with uvicorn (uvicorn asgi:app). These commands
use the same settings (environment variables and .env) as the running app.

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (default sqlite:///sessiongate.db)
  SECRET_KEY     Required unless DEBUG=true
"""

import argparse
import getpass
import sys

from auth.errors import AuthError
from auth.service import AuthService
from core.config import get_settings


def _read_password(args: argparse.Namespace) -> str:
    """Take the password from --password or prompt twice without echo."""
    if args.password:
        return args.password
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return first


def cmd_create_admin(service: AuthService, args: argparse.Namespace) -> int:
    password = _read_password(args)
    try:
        user_id = service.create_admin(args.email, password)
    except AuthError as exc:
        for msg in exc.to_messages():
            print(f"  [!] {msg['message']}")
        return 1
    print(f"  Admin {args.email} created (id {user_id}).")
    return 0


def cmd_purge_sessions(service: AuthService, args: argparse.Namespace) -> int:
    removed = service.sessions.delete_expired_sessions()
    print(f"  {removed} expired session(s) removed.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="sessiongate",
        description="SessionGate administration commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin admin@example.com
  python main.py create-admin admin@example.com --password 'correct horse battery'
  python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command")

    p_admin = sub.add_parser("create-admin", help="Create a verified admin account")
    p_admin.add_argument("email", help="Email address the admin signs in with")
    p_admin.add_argument(
        "--password",
        metavar="PASSWORD",
        help="Password (prompted for when omitted; avoid on shared machines)",
    )
    p_admin.set_defaults(func=cmd_create_admin)

    p_purge = sub.add_parser("purge-sessions", help="Delete expired sessions from the database")
    p_purge.set_defaults(func=cmd_purge_sessions)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    service = AuthService.from_settings(get_settings())
    try:
        code = args.func(service, args)
    finally:
        service.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
