"""Async engine, sessions and transactional scopes over the embedded store."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

import models  # noqa: F401  # registers every table on SQLModel.metadata
from core.config import normalize_database_url
from .errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _enable_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        # Cascading deletes rely on foreign key enforcement, which SQLite
        # leaves off per connection unless asked.
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
    finally:
        cursor.close()


class Storage:
    """Owns the engine and hands out sessions and transactions to callers."""

    def __init__(
        self,
        database_url: str,
        *,
        busy_timeout_seconds: float = 30.0,
        echo: bool = False,
    ) -> None:
        self.database_url = normalize_database_url(database_url)
        connect_args: dict[str, Any] = {}
        self.is_sqlite = make_url(self.database_url).get_backend_name() == "sqlite"
        if self.is_sqlite:
            connect_args = {"timeout": busy_timeout_seconds, "check_same_thread": False}
        self.engine: AsyncEngine = create_async_engine(
            self.database_url,
            echo=echo,
            connect_args=connect_args,
        )
        if self.is_sqlite:
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_pragmas)
        self.session_maker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            expire_on_commit=False,
        )

    async def initialize(self) -> None:
        """Create tables and indexes when missing. Safe to call repeatedly."""
        try:
            async with self.engine.begin() as connection:
                await connection.run_sync(SQLModel.metadata.create_all)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to initialize database: {exc}") from exc
        logger.info("Database schema ready", extra={"database_url": self.database_url})

    def session(self) -> AsyncSession:
        """Return a new session; each statement commits on its own unless a
        transaction is opened explicitly."""
        return self.session_maker()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Run the block in one transaction: commit on success, roll back on error."""
        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StorageError(str(exc)) from exc
            except BaseException:
                await session.rollback()
                raise

    async def with_transaction(
        self,
        fn: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run ``fn`` in a transaction that commits iff it returns a truthy value."""
        async with self.session_maker() as session:
            try:
                result = await fn(session)
                if result:
                    await session.commit()
                else:
                    await session.rollback()
                return result
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StorageError(str(exc)) from exc
            except BaseException:
                await session.rollback()
                raise

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database connections closed")
