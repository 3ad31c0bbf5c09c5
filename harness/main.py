"""Telemetry receiver application, in-process server runner and CLI.

Usage:
    python -m harness serve [--host HOST] [--port PORT] [--config FILE]
    python -m harness match CANDIDATE PATTERN
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI

from harness.api.files import router as files_router
from harness.api.telemetry import router as telemetry_router
from harness.config import load_config
from harness.events.store import EventStore
from harness.matching.json_matcher import load_pattern, matches
from harness.net import (
    find_available_port,
    get_free_port,
    get_local_address,
    is_port_available,
)

logger = logging.getLogger("mobile-harness.receiver")

SERVER_START_TIMEOUT = 10.0  # seconds


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Telemetry receiver started (%d stored events)", app.state.event_store.size)
    yield
    logger.info("Telemetry receiver stopped")


def create_app(store: EventStore | None = None, file_root: Path | None = None) -> FastAPI:
    """Create and configure the telemetry receiver application."""
    app = FastAPI(
        title="Mobile Harness Telemetry Receiver",
        version="0.1.0",
        description="Collects application events for end-to-end test correlation",
        lifespan=lifespan,
    )

    app.state.event_store = store if store is not None else EventStore()
    app.state.file_root = file_root
    app.state.receiver_resumed = asyncio.Event()
    app.state.receiver_resumed.set()

    app.include_router(telemetry_router)
    app.include_router(files_router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "events": app.state.event_store.size}

    return app


class TelemetryServer:
    """Runs the receiver with uvicorn as a task on the current event loop."""

    def __init__(
        self,
        store: EventStore,
        host: str = "0.0.0.0",
        port: int | None = None,
        advertise_host: str | None = None,
        file_root: Path | None = None,
    ) -> None:
        self.store = store
        self.host = host
        self.port = port
        self.advertise_host = advertise_host
        self.app = create_app(store, file_root)
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

    @property
    def url(self) -> str:
        host = self.advertise_host or get_local_address() or "127.0.0.1"
        return f"http://{host}:{self.port}"

    @property
    def hosting_url(self) -> str:
        return f"{self.url}/file/"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        if not self.port:
            self.port = get_free_port(self.host)
        elif not is_port_available(self.port, self.host):
            logger.warning("Telemetry port %d is in use by another application", self.port)
            self.port = find_available_port(self.port + 1, host=self.host)
            logger.warning("Using telemetry port %d instead", self.port)
        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_level="warning")
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._serve(self._server), name="telemetry-receiver")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + SERVER_START_TIMEOUT
        while not self._server.started:
            if self._task.done():
                task, self._task, self._server = self._task, None, None
                # Surface bind errors and the like
                task.result()
                raise RuntimeError("Telemetry receiver exited during startup")
            if loop.time() > deadline:
                raise RuntimeError(f"Telemetry receiver did not start within {SERVER_START_TIMEOUT}s")
            await asyncio.sleep(0.05)
        logger.info("Telemetry receiver listening on %s", self.url)

    async def _serve(self, server: uvicorn.Server) -> None:
        try:
            await server.serve()
        except SystemExit as e:
            # uvicorn exits the process when it cannot bind
            raise RuntimeError(
                f"Telemetry receiver failed to start on port {self.port} (exit code {e.code})"
            ) from e

    async def stop(self) -> None:
        if self._server is None or self._task is None:
            return
        self._server.should_exit = True
        await self._task
        self._server = None
        self._task = None

    def pause(self) -> None:
        """Hold incoming batches until :meth:`resume`."""
        self.app.state.receiver_resumed.clear()

    def resume(self) -> None:
        self.app.state.receiver_resumed.set()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _cmd_serve(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    host = args.host or "0.0.0.0"
    port = args.port or config.telemetry_port

    app = create_app(EventStore(), Path.cwd())
    uv_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="debug" if args.verbose else "info",
    )
    server = uvicorn.Server(uv_config)
    try:
        server.run()
    except KeyboardInterrupt:
        pass


def _read_json_arg(value: str) -> object:
    return json.loads(load_pattern(value) or "null")


def _cmd_match(args: argparse.Namespace) -> int:
    try:
        candidate = _read_json_arg(args.candidate)
        pattern = _read_json_arg(args.pattern)
    except (ValueError, RecursionError) as e:
        print(f"Invalid JSON: {e}", file=sys.stderr)
        return 2
    matched = matches(candidate, pattern)
    print("match" if matched else "no match")
    return 0 if matched else 1


def cli() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Mobile harness: telemetry receiver and JSON pattern tools",
    )
    parser.add_argument("--verbose", "-v", action="store_true", default=False)
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the telemetry receiver")
    serve_parser.add_argument("--host", default=None, help="Bind host (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port (default: telemetry.port)")
    serve_parser.add_argument("--config", default=None, help="Path to a tests.properties file")

    match_parser = subparsers.add_parser("match", help="Check a JSON value against a pattern")
    match_parser.add_argument("candidate", help="Candidate JSON text or file")
    match_parser.add_argument("pattern", help="Pattern JSON text or file")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "serve":
        _cmd_serve(args)
    elif args.command == "match":
        sys.exit(_cmd_match(args))
