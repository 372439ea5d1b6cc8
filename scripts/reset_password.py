"""Operator script to reset a user's password without the old one.

Usage:
    python scripts/reset_password.py <username>

The new password is read with getpass, or from stdin when it is not a TTY:
    printf 'new-password\\n' | python scripts/reset_password.py alice

Environment overrides:
    UNISOCIAL_DATABASE_URL=sqlite+aiosqlite:///unisocial.db
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from collections.abc import Sequence
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

from core import settings  # noqa: E402
from db import Storage  # noqa: E402
from services.auth import AuthService  # noqa: E402


def read_new_password() -> str:
    if not sys.stdin.isatty():
        return sys.stdin.readline().rstrip("\r\n")
    password = getpass.getpass("New password: ")
    confirmation = getpass.getpass("Repeat new password: ")
    if password != confirmation:
        raise ValueError("Passwords do not match")
    return password


async def run(username: str, new_password: str, *, database_url: str) -> bool:
    storage = Storage(database_url, busy_timeout_seconds=settings.db_busy_timeout_seconds)
    try:
        await storage.initialize()
        return await AuthService(storage).reset_password(username, new_password)
    finally:
        await storage.close()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reset a UniSocial user's password.")
    parser.add_argument("username")
    parser.add_argument("-d", "--database", default=settings.database_url)
    args = parser.parse_args(argv)

    try:
        new_password = read_new_password()
        reset = asyncio.run(run(args.username, new_password, database_url=args.database))
    except ValueError as exc:
        print(f"Password reset failed: {exc}")
        return 1

    if not reset:
        print(f"User not found: {args.username}")
        return 1
    print(f"Password reset complete: username={args.username}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
