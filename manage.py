#!/usr/bin/env python3
"""
Daily Summarizer -- account administration from the shell.

Usage:
  python manage.py create-user alice@example.com --first Alice --last Smith
  python manage.py create-user admin@example.com --first Ada --last Admin --admin
  python manage.py promote alice@example.com
  python manage.py list-users
  python manage.py add-domain example.com
  python manage.py purge-sessions

Reads the same environment (.env) as the API, so DATABASE_URL and SECRET_KEY
(or DEBUG=true) must be set the same way.
"""

import argparse
import getpass
import sys

from auth.errors import AuthServiceError
from auth.models import ROLE_ADMIN
from auth.service import AccountService
from auth.sessions import SessionStore
from auth.sso import SsoProvisioningService
from auth.store import UserStore
from core.config import Settings, get_settings


def _prompt_password() -> str:
    """Ask twice on the terminal; never echo."""
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return first


def _cmd_create_user(args: argparse.Namespace, settings: Settings, store: UserStore) -> None:
    password = args.password or _prompt_password()
    accounts = AccountService(store, settings)
    user = accounts.create_verified_user(
        args.email,
        password,
        args.first,
        args.last,
        role=ROLE_ADMIN if args.admin else None,
    )
    print(f"  Created {user.email} (id={user.id}, role={user.role}, verified).")


def _cmd_promote(args: argparse.Namespace, settings: Settings, store: UserStore) -> None:
    user = AccountService(store, settings).promote_to_admin(args.email)
    print(f"  {user.email} is now an admin (verified).")


def _cmd_list_users(args: argparse.Namespace, settings: Settings, store: UserStore) -> None:
    users = AccountService(store, settings).list_users()
    if not users:
        print("  No users.")
        return
    for u in users:
        flags = []
        if u.email_verified:
            flags.append("verified")
        if u.microsoft_id:
            flags.append("sso")
        print(f"  {u.id:>5}  {u.email:<40} {u.role:<6} {','.join(flags)}")


def _cmd_add_domain(args: argparse.Namespace, settings: Settings, store: UserStore) -> None:
    entry = SsoProvisioningService(store, settings).add_domain(args.domain, added_by=None)
    print(f"  Allowed domain {entry.domain} (id={entry.id}).")


def _cmd_purge_sessions(args: argparse.Namespace, settings: Settings, store: UserStore) -> None:
    removed = SessionStore(store.engine, settings.session_ttl_seconds).purge_expired()
    print(f"  Removed {removed} expired session(s).")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="summarizer-manage",
        description="Account administration for the Daily Summarizer auth service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python manage.py create-user alice@example.com --first Alice --last Smith
  python manage.py promote alice@example.com
  python manage.py add-domain example.com
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create a verified account that can log in at once")
    create.add_argument("email", help="Email address (login name)")
    create.add_argument("--first", required=True, help="First name")
    create.add_argument("--last", required=True, help="Last name")
    create.add_argument("--admin", action="store_true", help="Grant the admin role")
    create.add_argument(
        "--password",
        default=None,
        help="Password (prompted for when omitted -- preferred, keeps it out of shell history)",
    )
    create.set_defaults(handler=_cmd_create_user)

    promote = sub.add_parser("promote", help="Make an existing account an admin and mark it verified")
    promote.add_argument("email")
    promote.set_defaults(handler=_cmd_promote)

    list_users = sub.add_parser("list-users", help="Print every account")
    list_users.set_defaults(handler=_cmd_list_users)

    add_domain = sub.add_parser("add-domain", help="Allow first-time Microsoft SSO sign-ups from a domain")
    add_domain.add_argument("domain")
    add_domain.set_defaults(handler=_cmd_add_domain)

    purge = sub.add_parser("purge-sessions", help="Delete expired sessions")
    purge.set_defaults(handler=_cmd_purge_sessions)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    settings = get_settings()
    store = UserStore(settings.database_url)
    try:
        args.handler(args, settings, store)
    except AuthServiceError as exc:
        print(f"  [!] {exc.message}")
        sys.exit(1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
