"""
Admin account bootstrap.

    mozarela-admin create --email vet@example.com --full-name "Dr. Vet"
    mozarela-admin promote --email vet@example.com
    mozarela-admin check --email vet@example.com

The password for ``create`` is read from $MOZARELA_ADMIN_PASSWORD, or
prompted for when that is unset.
"""

import argparse
import asyncio
import getpass
import logging
import os
import sys

from mozarela.api.auth import hash_password
from mozarela.api.users import create_user, get_user_by_email
from mozarela.database import AsyncSessionLocal, engine, init_models

logger = logging.getLogger("mozarela.cli")

PASSWORD_ENV = "MOZARELA_ADMIN_PASSWORD"


def _read_password() -> str:
    password = os.getenv(PASSWORD_ENV)
    if password:
        return password
    password = getpass.getpass("Admin password: ")
    if password != getpass.getpass("Repeat password: "):
        raise SystemExit("Passwords do not match")
    return password


async def create_admin(email: str, full_name: str, clinic_name: str | None, password: str) -> int:
    async with AsyncSessionLocal() as db:
        if await get_user_by_email(db, email):
            print(f"User {email} already exists; use 'promote' instead", file=sys.stderr)
            return 1
        user = await create_user(
            db,
            email=email,
            password_hash=hash_password(password),
            full_name=full_name,
            clinic_name=clinic_name,
            is_admin=True,
        )
        await db.commit()
    print(f"Admin user created: {user.email} ({user.id})")
    return 0


async def promote(email: str) -> int:
    async with AsyncSessionLocal() as db:
        user = await get_user_by_email(db, email)
        if user is None:
            print(f"User {email} not found", file=sys.stderr)
            return 1
        user.is_admin = True
        await db.commit()
    print(f"{email} is now an admin")
    return 0


async def check(email: str) -> int:
    async with AsyncSessionLocal() as db:
        user = await get_user_by_email(db, email)
    if user is None:
        print(f"User {email} not found", file=sys.stderr)
        return 1
    print(f"{user.full_name} <{user.email}> admin={bool(user.is_admin)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mozarela-admin", description="Manage admin accounts")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="create a new admin user")
    create.add_argument("--email", required=True)
    create.add_argument("--full-name", required=True)
    create.add_argument("--clinic-name")

    for name, help_text in (("promote", "grant admin to an existing user"),
                            ("check", "show a user's admin status")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--email", required=True)
    return parser


async def _run(args: argparse.Namespace) -> int:
    await init_models()
    try:
        if args.command == "create":
            return await create_admin(args.email, args.full_name, args.clinic_name, _read_password())
        if args.command == "promote":
            return await promote(args.email)
        return await check(args.email)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.WARNING)
    args = build_parser().parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
