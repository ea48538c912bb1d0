"""
Prometheus scrape endpoint on its own port.

``/metrics`` is kept off the conversion API so that it can be firewalled separately.
The metrics app runs as a second uvicorn server inside the service's event loop, so it
reads the same ChromiumManager as the requests it reports on.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Annotated

import uvicorn
from fastapi import Depends, FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from pdf_service.chromium_manager import ChromiumManager, get_chromium_manager
from pdf_service.prometheus_metrics import update_gauges_from_chromium_manager

logger = logging.getLogger(__name__)

DEFAULT_METRICS_PORT = 9180
# Unprivileged ports only
METRICS_PORT_MIN = 1024
METRICS_PORT_MAX = 65535
STARTUP_TIMEOUT_SECONDS = 10.0
SHUTDOWN_TIMEOUT_SECONDS = 5.0
_ENABLED_VALUES = frozenset({"true", "1", "yes", "on"})

metrics_app = FastAPI(title="PDF Service Metrics", docs_url=None, redoc_url=None, openapi_url=None)


@metrics_app.get("/metrics")
async def metrics(chromium_manager: Annotated[ChromiumManager, Depends(get_chromium_manager)]) -> Response:
    # Counters move as conversions finish; gauges are sampled at scrape time
    update_gauges_from_chromium_manager(chromium_manager)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def get_metrics_port() -> int:
    """
    Port of the metrics server, from ``METRICS_PORT``.

    Values that are not an integer in the unprivileged range are ignored with a
    warning and the default port (9180) is used instead.
    """
    raw = os.environ.get("METRICS_PORT")
    if raw is None:
        return DEFAULT_METRICS_PORT
    try:
        port = int(raw)
    except ValueError:
        port = None
    if port is None or not METRICS_PORT_MIN <= port <= METRICS_PORT_MAX:
        logger.warning(
            "Ignoring METRICS_PORT=%r, expected an integer between %d and %d. Using %d",
            raw,
            METRICS_PORT_MIN,
            METRICS_PORT_MAX,
            DEFAULT_METRICS_PORT,
        )
        return DEFAULT_METRICS_PORT
    return port


def is_metrics_server_enabled() -> bool:
    """The metrics server runs unless ``METRICS_SERVER_ENABLED`` is set to something other than true/1/yes/on."""
    return os.environ.get("METRICS_SERVER_ENABLED", "true").strip().lower() in _ENABLED_VALUES


class MetricsServer:
    """Runs ``metrics_app`` as a background task of the current event loop."""

    def __init__(self, port: int | None = None) -> None:
        self.port = get_metrics_port() if port is None else port
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._server is not None and self._server.started and self._task is not None and not self._task.done()

    async def start(self) -> None:
        """
        Start serving and return once the port is bound.

        Raises:
            TimeoutError: If uvicorn does not report startup in time.
            RuntimeError: If uvicorn exits before it finished starting.
        """
        if self._task is not None:
            logger.warning("Metrics server is already running on port %d", self.port)
            return

        self._server = uvicorn.Server(uvicorn.Config(app=metrics_app, host="", port=self.port, log_level="warning"))
        self._task = asyncio.create_task(self._server.serve(), name="metrics-server")

        try:
            await asyncio.wait_for(self._wait_for_startup(), timeout=STARTUP_TIMEOUT_SECONDS)
        except TimeoutError as e:
            await self.stop()
            raise TimeoutError(f"Metrics server did not start on port {self.port} within {STARTUP_TIMEOUT_SECONDS} seconds") from e

        if not self.is_running:
            await self.stop()
            raise RuntimeError(f"Metrics server exited while starting on port {self.port}")
        logger.info("Metrics server listening on port %d", self.port)

    async def _wait_for_startup(self) -> None:
        assert self._server is not None
        assert self._task is not None
        while not self._server.started and not self._task.done():
            await asyncio.sleep(0.01)

    async def stop(self) -> None:
        """Ask uvicorn to exit and wait for it; a server that does not exit in time is cancelled."""
        server, task = self._server, self._task
        self._server = None
        self._task = None
        if task is None:
            return

        if server is not None:
            server.should_exit = True
        try:
            await asyncio.wait_for(task, timeout=SHUTDOWN_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Metrics server did not exit within %s seconds and was cancelled", SHUTDOWN_TIMEOUT_SECONDS)
        except Exception as e:  # noqa: BLE001
            logger.error("Metrics server exited with an error: %s", e)
        logger.info("Metrics server stopped")
