"""Read-dispatch-write loop for one client socket."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .dispatcher import CommandDispatcher
from .protocol import GENERIC_ERROR, encode_response, failure

logger = logging.getLogger(__name__)

LINE_SEPARATOR = b"\n"


def format_peer(peername: Any) -> str:
    if isinstance(peername, tuple) and len(peername) >= 2:
        return f"{peername[0]}:{peername[1]}"
    return str(peername or "-")


class Connection:
    """Serves one client: requests are answered strictly in arrival order."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        dispatcher: CommandDispatcher,
        *,
        read_timeout_seconds: float,
        stop_requested: Callable[[], bool],
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.dispatcher = dispatcher
        self.read_timeout_seconds = read_timeout_seconds
        self.stop_requested = stop_requested

    @property
    def peer(self) -> str:
        return self.dispatcher.peer

    async def run(self) -> None:
        logger.info("Client connected", extra={"peer": self.peer})
        try:
            await self._serve()
        except (ConnectionError, OSError) as exc:
            logger.info("Client connection lost", extra={"peer": self.peer, "reason": str(exc)})
        finally:
            await self._close()
            logger.info(
                "Client disconnected",
                extra={"peer": self.peer, "user_id": self.dispatcher.session.user_id},
            )

    async def _serve(self) -> None:
        while not self.dispatcher.closing:
            try:
                line = await asyncio.wait_for(
                    self.reader.readuntil(LINE_SEPARATOR),
                    timeout=self.read_timeout_seconds,
                )
            except asyncio.TimeoutError:
                # Idle clients are kept; the timeout only lets us notice shutdown.
                if self.stop_requested():
                    return
                continue
            except asyncio.IncompleteReadError:
                return
            except asyncio.LimitOverrunError as exc:
                try:
                    await self._skip_oversized_line(exc.consumed)
                except asyncio.IncompleteReadError:
                    return
                logger.warning("Request line too long", extra={"peer": self.peer})
                await self._send(failure(GENERIC_ERROR))
                continue

            response = await self.dispatcher.handle_line(line)
            await self._send(response)
            if self.stop_requested():
                return

    async def _skip_oversized_line(self, consumed: int) -> None:
        while True:
            await self.reader.readexactly(consumed)
            try:
                await self.reader.readuntil(LINE_SEPARATOR)
                return
            except asyncio.LimitOverrunError as exc:
                consumed = exc.consumed

    async def _send(self, response: dict[str, Any]) -> None:
        self.writer.write(encode_response(response))
        await self.writer.drain()

    async def _close(self) -> None:
        if self.writer.is_closing():
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            logger.debug("Socket already gone on close", extra={"peer": self.peer})
