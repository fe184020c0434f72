#!/usr/bin/env python3
"""
Carter Island auth -- operator command line.

Usage:
  python main.py create-user --email admin@carterisland.com --role ADMIN --first-name Carter --last-name Admin
  python main.py create-user --email user@carterisland.com --username testuser --department "Marine Biology"
  python main.py sessions
  python main.py sessions --limit 25

The password is read from --password or prompted for interactively.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the credential store (default: SQLite file in auth/).
  JWT_SECRET    Signing secret; needed by `sessions` to decode stored tokens.
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User, UserStatus
from auth.store import UserStore
from auth.tokens import decode_access_token, hash_password
from core.config import get_settings


def _create_user(store: UserStore, args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("Password: ")
    if not password:
        print("  [!] A password is required.")
        return 1
    user = User(
        email=args.email,
        username=args.username,
        hashed_password=hash_password(password),
        role=Role(args.role),
        status=UserStatus(args.status),
        first_name=args.first_name,
        last_name=args.last_name,
        department=args.department,
        position=args.position,
        phone=args.phone,
    )
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' or that username already exists.")
        return 1
    print(f"  Created user {user_id}")
    print(f"  Email:  {user.email}")
    print(f"  Role:   {user.role.value}")
    print(f"  Status: {user.status.value}")
    return 0


def _list_sessions(store: UserStore, args: argparse.Namespace) -> int:
    """Print live sessions with their decoded claims, for operational debugging."""
    sessions = store.list_active_sessions(limit=args.limit)
    if not sessions:
        print("  No active sessions found.")
        return 0
    for index, session in enumerate(sessions, start=1):
        owner = store.get_by_id(session.user_id)
        claims = decode_access_token(session.token)
        print(f"{index}. Session {session.id}")
        print(f"   User:       {owner.email if owner else '<deleted>'} ({owner.role.value if owner else '-'})")
        print(f"   Token:      {session.token[:20]}...")
        if claims is None:
            print("   Claims:     <invalid for current JWT_SECRET>")
        else:
            print(f"   Claims:     user_id={claims.user_id} email={claims.email} role={claims.role.value}")
        print(f"   Expires:    {session.expires_at}")
        print(f"   Client:     {session.ip_address or '-'} / {session.user_agent or '-'}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="carterisland-auth",
        description="Seed users and inspect sessions in the credential store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a user with a bcrypt-hashed password")
    create.add_argument("--email", required=True)
    create.add_argument("--password", help="Plaintext password (prompted if omitted)")
    create.add_argument("--username")
    create.add_argument("--role", choices=[r.value for r in Role], default=Role.USER.value)
    create.add_argument("--status", choices=[s.value for s in UserStatus], default=UserStatus.ACTIVE.value)
    create.add_argument("--first-name", dest="first_name")
    create.add_argument("--last-name", dest="last_name")
    create.add_argument("--department")
    create.add_argument("--position")
    create.add_argument("--phone")

    sessions = sub.add_parser("sessions", help="List live sessions with decoded token claims")
    sessions.add_argument("--limit", type=int, default=10, help="Maximum sessions to show (default: 10)")

    args = parser.parse_args()

    store = UserStore(get_settings().database_url)
    try:
        if args.command == "create-user":
            code = _create_user(store, args)
        else:
            code = _list_sessions(store, args)
    finally:
        store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
