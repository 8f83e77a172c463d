"""Liveness and readiness probe endpoints.

    GET /healthz -> 200 while the process runs
    GET /readyz  -> 200 once plugins are initialized, 503 before
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterator

import uvicorn
from fastapi import FastAPI, Response, status

logger = logging.getLogger(__name__)

STARTUP_POLL_SECONDS = 0.05


def create_app(ready: Callable[[], bool]) -> FastAPI:
    """Build the probe application around a readiness callback."""
    app = FastAPI(title="tenant-controller probes", docs_url=None, redoc_url=None, openapi_url=None)

    @app.api_route("/healthz", methods=["GET", "HEAD"])
    def healthz() -> Response:
        return Response("OK", media_type="text/plain")

    @app.api_route("/readyz", methods=["GET", "HEAD"])
    def readyz() -> Response:
        if not ready():
            return Response(
                "Service Unavailable",
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                media_type="text/plain",
            )
        return Response("OK", media_type="text/plain")

    return app


class _ProbeServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the controller."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class HealthServer:
    """Serves the probe application with uvicorn on the running loop."""

    def __init__(self, port: int, ready: Callable[[], bool], host: str = "0.0.0.0") -> None:
        self._port = port
        config = uvicorn.Config(
            create_app(ready),
            host=host,
            port=port,
            log_config=None,
            access_log=False,
            lifespan="off",
        )
        self._server = _ProbeServer(config)
        self._task: asyncio.Task[None] | None = None

    @property
    def port(self) -> int:
        """Bound port (useful when started with port 0)."""
        for server in getattr(self._server, "servers", []):
            for sock in server.sockets:
                return sock.getsockname()[1]
        return self._port

    async def start(self) -> None:
        """Start serving and wait until the socket is bound.

        Raises:
            RuntimeError: If the server exits during startup.
        """
        self._task = asyncio.create_task(self._server.serve())
        while not self._server.started:
            if self._task.done():
                raise RuntimeError(f"Health server on port {self._port} failed to start")
            await asyncio.sleep(STARTUP_POLL_SECONDS)
        logger.info("Health probes listening", extra={"port": self.port})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._server.should_exit = True
        try:
            await self._task
        finally:
            self._task = None
