"""Pytest fixtures for the UniSocial server."""

import asyncio
import json
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from argon2 import PasswordHasher

from core import security
from core.config import Settings
from db import Storage
from server import Listener
from services import ServiceRegistry, UserView, build_services

DEFAULT_PASSWORD = "pw12345"


class LineClient:
    """Minimal client for the newline-delimited JSON protocol."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer

    @classmethod
    async def connect(cls, port: int, host: str = "127.0.0.1") -> "LineClient":
        reader, writer = await asyncio.open_connection(host, port, limit=4 * 1024 * 1024)
        return cls(reader, writer)

    async def send_raw(self, payload: bytes) -> None:
        self.writer.write(payload)
        await self.writer.drain()

    async def read_response(self, timeout: float = 5.0) -> dict[str, Any]:
        line = await asyncio.wait_for(self.reader.readline(), timeout=timeout)
        assert line.endswith(b"\n"), f"connection closed mid-response: {line!r}"
        return json.loads(line)

    async def request(self, command: str, **data: Any) -> dict[str, Any]:
        envelope = {"command": command, "timestamp": int(time.time() * 1000), "data": data}
        await self.send_raw(json.dumps(envelope).encode("utf-8") + b"\n")
        return await self.read_response()

    async def read_until_eof(self, timeout: float = 5.0) -> bytes:
        return await asyncio.wait_for(self.reader.read(), timeout=timeout)

    async def close(self) -> None:
        if self.writer.is_closing():
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep argon2 cheap in tests; the PHC format and verify path stay the same."""
    hasher = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)
    monkeypatch.setattr(security, "get_password_hasher", lambda: hasher)


@pytest.fixture()
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        host="127.0.0.1",
        port=0,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'unisocial-test.db'}",
        upload_dir=tmp_path / "avatars",
        read_timeout_seconds=0.2,
        shutdown_grace_seconds=1.0,
        db_busy_timeout_seconds=10.0,
    )


@pytest_asyncio.fixture()
async def storage(test_settings: Settings) -> AsyncIterator[Storage]:
    """A freshly initialized file-backed SQLite database per test."""
    store = Storage(
        test_settings.database_url,
        busy_timeout_seconds=test_settings.db_busy_timeout_seconds,
    )
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture()
def services(storage: Storage, test_settings: Settings) -> ServiceRegistry:
    return build_services(storage, test_settings)


@pytest.fixture()
def make_user(services: ServiceRegistry) -> Callable[..., Awaitable[UserView]]:
    async def _make_user(username: str, password: str = DEFAULT_PASSWORD) -> UserView:
        user = await services.auth.create_user(username, password)
        assert user is not None
        return user

    return _make_user


@pytest_asyncio.fixture()
async def listener(services: ServiceRegistry, test_settings: Settings) -> AsyncIterator[Listener]:
    server = Listener.from_settings(services, test_settings)
    await server.start()
    yield server
    await server.shutdown()


@pytest_asyncio.fixture()
async def connect(listener: Listener) -> AsyncIterator[Callable[[], Awaitable[LineClient]]]:
    clients: list[LineClient] = []

    async def _connect() -> LineClient:
        client = await LineClient.connect(listener.port)
        clients.append(client)
        return client

    yield _connect
    for client in clients:
        await client.close()
