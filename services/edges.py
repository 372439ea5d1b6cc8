"""Atomic toggling of relationship rows (likes, bookmarks, follows)."""

from __future__ import annotations

from typing import Any, cast

from sqlalchemy import delete, exists, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement


def _eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


def _edge_conditions(model: Any, keys: dict[str, int]) -> list[ColumnElement[bool]]:
    return [_eq(getattr(model, name), value) for name, value in keys.items()]


async def toggle_edge(session: AsyncSession, model: Any, **keys: int) -> bool:
    """Flip the presence of one edge row and return True when it now exists.

    Must run inside a transaction. The DELETE takes SQLite's write lock before
    anything is read, so concurrent toggles on the same pair serialize and each
    one observes the previous toggle's outcome.
    """
    removed = await session.execute(delete(model).where(*_edge_conditions(model, keys)))
    if cast(Any, removed).rowcount:
        return False
    await session.execute(sqlite_insert(model).values(**keys).on_conflict_do_nothing())
    return True


async def edge_exists(session: AsyncSession, model: Any, **keys: int) -> bool:
    result = await session.execute(select(exists().where(*_edge_conditions(model, keys))))
    return bool(result.scalar())
