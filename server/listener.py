"""TCP listener: accepts clients, caps concurrency, shuts down gracefully."""

from __future__ import annotations

import asyncio
import logging

from core.config import Settings
from services import ServiceRegistry

from .connection import Connection, format_peer
from .dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)


class Listener:
    def __init__(
        self,
        services: ServiceRegistry,
        *,
        host: str = "0.0.0.0",
        port: int = 8080,
        max_clients: int = 100,
        server_version: str = "1.0",
        read_timeout_seconds: float = 60.0,
        shutdown_grace_seconds: float = 5.0,
        max_line_bytes: int = 8 * 1024 * 1024,
    ) -> None:
        self.services = services
        self.host = host
        self.requested_port = port
        self.max_clients = max_clients
        self.server_version = server_version
        self.read_timeout_seconds = read_timeout_seconds
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.max_line_bytes = max_line_bytes
        self._server: asyncio.Server | None = None
        self._clients: set[asyncio.Task[None]] = set()
        self._shutting_down = False
        self._stopped = asyncio.Event()

    @classmethod
    def from_settings(cls, services: ServiceRegistry, settings: Settings) -> "Listener":
        return cls(
            services,
            host=settings.host,
            port=settings.port,
            max_clients=settings.max_clients,
            server_version=settings.server_version,
            read_timeout_seconds=settings.read_timeout_seconds,
            shutdown_grace_seconds=settings.shutdown_grace_seconds,
            max_line_bytes=settings.max_line_bytes,
        )

    @property
    def port(self) -> int:
        """The bound port; differs from the requested one when that was 0."""
        if self._server is None or not self._server.sockets:
            return self.requested_port
        return int(self._server.sockets[0].getsockname()[1])

    @property
    def active_clients(self) -> int:
        return len(self._clients)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    async def start(self) -> None:
        """Bind the listening socket. Raises OSError when the port is unavailable."""
        self._server = await asyncio.start_server(
            self._handle_client,
            host=self.host,
            port=self.requested_port,
            limit=self.max_line_bytes,
        )
        logger.info(
            "Listening",
            extra={"host": self.host, "port": self.port, "max_clients": self.max_clients},
        )

    async def serve_forever(self) -> None:
        """Block until :meth:`shutdown` has completed."""
        if self._server is None:
            await self.start()
        await self._stopped.wait()

    async def shutdown(self) -> None:
        if self._shutting_down:
            await self._stopped.wait()
            return
        self._shutting_down = True
        logger.info("Shutting down", extra={"active_clients": self.active_clients})

        if self._server is not None:
            self._server.close()

        clients = set(self._clients)
        if clients:
            _, pending = await asyncio.wait(clients, timeout=self.shutdown_grace_seconds)
            for task in pending:
                task.cancel()
            if pending:
                logger.info("Cancelling idle clients", extra={"count": len(pending)})
                await asyncio.gather(*pending, return_exceptions=True)

        if self._server is not None:
            await self._server.wait_closed()
        self._stopped.set()
        logger.info("Listener stopped")

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peer = format_peer(writer.get_extra_info("peername"))
        if self._shutting_down or len(self._clients) >= self.max_clients:
            logger.warning(
                "Connection rejected",
                extra={"peer": peer, "active_clients": self.active_clients},
            )
            writer.close()
            return

        task = asyncio.current_task()
        if task is None:
            raise RuntimeError("client handler must run inside a task")
        self._clients.add(task)
        try:
            dispatcher = CommandDispatcher(
                self.services,
                server_version=self.server_version,
                peer=peer,
            )
            connection = Connection(
                reader,
                writer,
                dispatcher,
                read_timeout_seconds=self.read_timeout_seconds,
                stop_requested=lambda: self._shutting_down,
            )
            await connection.run()
        finally:
            self._clients.discard(task)
