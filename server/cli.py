"""Command-line entry point for the UniSocial server."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError as SettingsError

from core.config import Settings, get_settings
from core.logging import configure_logging
from db import Storage, StorageError
from services import build_services

from .listener import Listener

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="unisocial-server",
        description="Line-delimited JSON social network server.",
    )
    parser.add_argument("-p", "--port", type=int, help="TCP port to listen on (default 8080)")
    parser.add_argument(
        "-d",
        "--database",
        help="database URL, SQLite file path or jdbc:sqlite: path (default unisocial.db)",
    )
    parser.add_argument(
        "-m",
        "--max-clients",
        type=int,
        help="maximum concurrent client connections (default 100)",
    )
    parser.add_argument("--host", help="interface to bind (default 0.0.0.0)")
    parser.add_argument("--upload-dir", help="directory for avatar files")
    parser.add_argument("--log-level", help="logging level (default INFO)")
    return parser


def settings_from_args(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    """Overlay command-line flags on the environment-derived settings."""
    overrides: dict[str, Any] = {
        "port": args.port,
        "database_url": args.database,
        "max_clients": args.max_clients,
        "host": args.host,
        "upload_dir": args.upload_dir,
        "log_level": args.log_level,
    }
    values = (base or get_settings()).model_dump()
    values.update({key: value for key, value in overrides.items() if value is not None})
    return Settings(**values)


async def run_server(settings: Settings) -> int:
    storage = Storage(
        settings.database_url,
        busy_timeout_seconds=settings.db_busy_timeout_seconds,
    )
    try:
        await storage.initialize()
        services = build_services(storage, settings)
    except (StorageError, OSError):
        logger.exception("Startup failed", extra={"database_url": settings.database_url})
        await storage.close()
        return EXIT_STARTUP_FAILURE

    listener = Listener.from_settings(services, settings)
    try:
        await listener.start()
    except OSError:
        logger.exception("Could not bind", extra={"host": settings.host, "port": settings.port})
        await storage.close()
        return EXIT_STARTUP_FAILURE

    loop = asyncio.get_running_loop()
    shutdown_tasks: set[asyncio.Task[None]] = set()

    def request_shutdown(signame: str) -> None:
        logger.info("Received %s", signame)
        task = loop.create_task(listener.shutdown())
        shutdown_tasks.add(task)
        task.add_done_callback(shutdown_tasks.discard)

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, request_shutdown, signum.name)
        except NotImplementedError:
            # Proactor loops on Windows; Ctrl+C still surfaces as KeyboardInterrupt.
            logger.debug("Signal handlers unavailable for %s", signum.name)

    try:
        await listener.serve_forever()
    finally:
        await listener.shutdown()
        await storage.close()
    logger.info("Server stopped")
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = settings_from_args(args)
    except SettingsError as exc:
        # argparse exits with status 2 for usage errors.
        parser.error(f"invalid settings: {exc.error_count()} error(s)\n{exc}")

    configure_logging(settings.log_level)
    try:
        return asyncio.run(run_server(settings))
    except KeyboardInterrupt:
        return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
