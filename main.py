#!/usr/bin/env python3
"""
Keyward -- account registration, login and cookie sessions.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py create-admin alice alice@example.com
  python main.py revoke-sessions alice
  python main.py purge-sessions

Environment variables:
  SECRET_KEY    Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL  SQLAlchemy URL. Defaults to keyward.db next to this file.
  See core/config.py for the full list.
"""

import argparse
import getpass
import sys

from auth.errors import AuthError
from auth.google import GoogleTokenVerifier
from auth.reaper import SessionReaper
from auth.service import AccountService
from auth.store import AccountStore
from core.config import get_settings
from mail.sender import SmtpMailer


def _build_service(store: AccountStore) -> AccountService:
    settings = get_settings()
    mailer = SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        timeout=settings.smtp_timeout_seconds,
    )
    return AccountService.from_settings(settings, store, mailer, GoogleTokenVerifier(settings.google_certs_url))


def _prompt_password() -> str:
    """Read a password twice without echo. Exits on mismatch."""
    password = getpass.getpass("Password: ")
    confirm = getpass.getpass("Confirm password: ")
    if password != confirm:
        print("  [!] Your passwords do not match.")
        sys.exit(1)
    return password


def _serve(args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)


def _create_admin(args: argparse.Namespace, store: AccountStore) -> None:
    user = _build_service(store).create_admin(args.username, args.email, _prompt_password())
    print(f"Created admin {user.username} <{user.email}>.")


def _revoke_sessions(args: argparse.Namespace, store: AccountStore) -> None:
    revoked = _build_service(store).revoke_sessions(args.username)
    print(f"Revoked {revoked} session(s) for {args.username}.")


def _purge_sessions(args: argparse.Namespace, store: AccountStore) -> None:
    removed = SessionReaper(store, get_settings().reaper_interval_seconds).sweep()
    print(f"Removed {removed} expired session(s).")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="keyward",
        description="Account registration, login and cookie sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py create-admin admin admin@example.com
  python main.py revoke-sessions mallory
  DATABASE_URL=sqlite:///prod.db python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")

    create_admin = sub.add_parser("create-admin", help="Create a verified admin account")
    create_admin.add_argument("username")
    create_admin.add_argument("email")

    revoke = sub.add_parser("revoke-sessions", help="Delete every session a user holds")
    revoke.add_argument("username")

    sub.add_parser("purge-sessions", help="Delete expired sessions once and exit")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        _serve(args)
        return

    handlers = {
        "create-admin": _create_admin,
        "revoke-sessions": _revoke_sessions,
        "purge-sessions": _purge_sessions,
    }
    settings = get_settings()
    store = AccountStore(settings.database_url, timeout=settings.db_timeout_seconds)
    try:
        handlers[args.command](args, store)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        sys.exit(1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
