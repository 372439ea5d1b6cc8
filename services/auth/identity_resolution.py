"""Username normalization and login-user resolution helpers."""

from __future__ import annotations

import asyncio
import re
from functools import lru_cache
from typing import Any, cast

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from core import hash_password, verify_password
from models import User

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{3,20}$")


def _eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


def normalize_username(value: str | None) -> str:
    return (value or "").strip()


def is_valid_username(value: str) -> bool:
    return USERNAME_PATTERN.fullmatch(value) is not None


@lru_cache
def _unknown_user_hash() -> str:
    return hash_password("unisocial-unknown-user")


def _verify_unknown_user(password: str) -> bool:
    return verify_password(password, _unknown_user_hash())


async def registration_conflict_exists(session: AsyncSession, *, username: str) -> bool:
    existing = await session.execute(
        select(cast(Any, User.id)).where(_eq(User.username, username)).limit(1)
    )
    return existing.scalar_one_or_none() is not None


async def load_password_hash(
    session: AsyncSession,
    *,
    user_id: int | None = None,
    username: str | None = None,
) -> tuple[int, str] | None:
    query = select(cast(Any, User.id), cast(Any, User.password_hash))
    if user_id is not None:
        query = query.where(_eq(User.id, user_id))
    else:
        query = query.where(_eq(User.username, username))
    result = await session.execute(query.limit(1))
    row = result.first()
    if row is None:
        return None
    return int(row[0]), str(row[1])


async def resolve_login_user(
    session: AsyncSession,
    *,
    username: str,
    password: str,
) -> int | None:
    """Return the id of the user whose credentials match, otherwise None.

    Unknown usernames still pay for one hash verification so the two failure
    cases take comparable time.
    """
    credentials = await load_password_hash(session, username=username)
    if credentials is None:
        await asyncio.to_thread(_verify_unknown_user, password)
        return None
    user_id, password_hash = credentials
    if not await asyncio.to_thread(verify_password, password, password_hash):
        return None
    return user_id
