#!/usr/bin/env python3
"""
identity-rbac -- Token authentication, invitation onboarding, and role-based access control.

Usage:
  python main.py serve [--host 0.0.0.0] [--port 8000] [--reload]
  python main.py init-db
  python main.py seed
  python main.py add-user --email admin@example.com [--password ...]
  python main.py purge-sessions

Environment variables (or .env):
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL. Defaults to a SQLite file next to this script.
  MAIL_HOST      SMTP relay for invitation emails. Empty logs instead of sending.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.bootstrap import create_super_admin, seed_permissions
from auth.service import RbacService, build_service
from auth.store import Database
from core.config import Settings, get_settings
from core.errors import IdentityError
from mail.notifier import build_notifier


def _service(settings: Settings) -> RbacService:
    db = Database(settings.database_url)
    return build_service(settings, db, build_notifier(settings))


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def cmd_init_db(args: argparse.Namespace, settings: Settings) -> int:
    # Opening the database creates any missing tables.
    db = Database(settings.database_url)
    db.close()
    print("  Schema created.")
    return 0


def cmd_seed(args: argparse.Namespace, settings: Settings) -> int:
    service = _service(settings)
    try:
        role = seed_permissions(service)
    finally:
        service.db.close()
    print(f"  Built-in permissions seeded; role '{role.name}' (id={role.id}) holds all of them.")
    return 0


def cmd_add_user(args: argparse.Namespace, settings: Settings) -> int:
    password: Optional[str] = args.password or getpass.getpass("  Password: ")
    if len(password) < 6:
        print("  [!] Password must be at least 6 characters.")
        return 1
    service = _service(settings)
    try:
        user = create_super_admin(service, args.email, password)
    finally:
        service.db.close()
    print(f"  Super admin '{user.email}' created (id={user.id}).")
    return 0


def cmd_purge_sessions(args: argparse.Namespace, settings: Settings) -> int:
    service = _service(settings)
    try:
        removed = service.purge_expired_sessions()
    finally:
        service.db.close()
    print(f"  {removed} expired session(s) removed.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="identity-rbac",
        description="Identity, session, and role-based access-control service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  python main.py seed
  python main.py add-user --email admin@example.com
  python main.py serve --port 8080
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    serve.set_defaults(func=cmd_serve)

    init_db = sub.add_parser("init-db", help="Create every table and index")
    init_db.set_defaults(func=cmd_init_db)

    seed = sub.add_parser("seed", help="Create built-in permissions and the Super Admin role")
    seed.set_defaults(func=cmd_seed)

    add_user = sub.add_parser("add-user", help="Create a Super Admin account")
    add_user.add_argument("--email", required=True, metavar="EMAIL", help="Login email for the new account")
    add_user.add_argument(
        "--password",
        metavar="PASSWORD",
        help="Account password. Prompted for when omitted, which keeps it out of shell history.",
    )
    add_user.set_defaults(func=cmd_add_user)

    purge = sub.add_parser("purge-sessions", help="Delete sessions no live token can reference")
    purge.set_defaults(func=cmd_purge_sessions)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        return args.func(args, get_settings())
    except IdentityError as exc:
        print(f"  [!] {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
