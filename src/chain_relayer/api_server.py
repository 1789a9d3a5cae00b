"""
HTTP server for metrics scraping and liveness probes.

Provides HTTP endpoints for:
- /metrics - Prometheus metrics endpoint
- /health - Health check endpoint
- /stats - JSON metrics snapshot plus permanently failed relays
"""

import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from .config import MetricsConfig
from .metrics import CONTENT_TYPE, RelayMetrics

logger = logging.getLogger(__name__)

SERVICE_NAME = "chain-relayer"


async def _handle_health(_request: web.Request) -> web.Response:
    """Handle health check endpoint."""
    return web.json_response({"status": "healthy", "service": SERVICE_NAME})


class MetricsServer:
    """
    HTTP server exposing relayer metrics.

    Uses aiohttp's AppRunner so the server shares the relayer's event loop.
    """

    def __init__(
        self,
        config: MetricsConfig,
        metrics: RelayMetrics,
        stats_getter: Callable[[], dict[str, Any]] | None = None,
    ) -> None:
        """
        Initialize the server.

        Args:
            config: Bind address and enable flag
            metrics: Collectors rendered at /metrics
            stats_getter: Callable returning the JSON body for /stats
        """
        self.config = config
        self.metrics = metrics
        self.stats_getter = stats_getter or dict
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.add_routes(
            [
                web.get("/health", _handle_health),
                web.get("/metrics", self._handle_metrics),
                web.get("/stats", self._handle_stats),
            ]
        )
        return app

    async def start(self) -> None:
        """Start the server in the background."""
        if not self.config.enabled:
            logger.info("Metrics server is disabled")
            return
        if self._runner is not None:
            return

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()

        logger.info(f"Metrics server listening on {self.config.host}:{self.config.port}")

    async def stop(self) -> None:
        """Gracefully stop the server."""
        runner, self._runner = self._runner, None
        self._site = None
        if runner is not None:
            await runner.cleanup()
            logger.info("Metrics server stopped")

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        """Handle Prometheus metrics endpoint."""
        return web.Response(
            body=self.metrics.generate(),
            headers={"Content-Type": CONTENT_TYPE},
        )

    async def _handle_stats(self, _request: web.Request) -> web.Response:
        return web.json_response(self.stats_getter())
