"""Read-only HTTP endpoints: status API, health probes and metrics."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from server_status_monitor.errors import StoreError

if TYPE_CHECKING:
    from server_status_monitor.engine import MonitorEngine

logger = logging.getLogger(__name__)

DEFAULT_HTTP_PORT = 8080


class StatusServer:
    """aiohttp server exposing the engine's read-only projections.

    Routes:
        ``/health``, ``/live``, ``/ready``: process probes.
        ``/metrics``: Prometheus exposition.
        ``/api/status``: snapshot of the first active target.
        ``/api/targets/{id}/status``: snapshot of one target.
        ``/api/stats``: engine summary.
    """

    def __init__(self, engine: MonitorEngine) -> None:
        self.engine = engine
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    async def _handle_health(self, _request: web.Request) -> web.Response:
        """Handle /health endpoint."""
        running = self.engine.is_running
        channels = self.engine.dispatcher.channel_status()
        if not running:
            status = "unhealthy"
        elif any(state == "failed" for state in channels.values()):
            status = "degraded"
        else:
            status = "healthy"

        body: dict[str, Any] = {
            "status": status,
            "uptime_seconds": round(self.engine.uptime_seconds, 1),
            "monitored_targets": len(self.engine.poller.monitored_ids()),
            "recovery_watches": len(self.engine.recovery.watching()),
            "channels": channels,
        }
        return web.json_response(body, status=200 if running else 503)

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        """Handle /metrics endpoint (Prometheus format)."""
        return web.Response(
            body=generate_latest(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )

    async def _handle_ready(self, _request: web.Request) -> web.Response:
        """Handle /ready endpoint for k8s readiness probe."""
        if not self.engine.is_running:
            return web.json_response({"ready": False, "reason": "starting"}, status=503)
        return web.json_response({"ready": True}, status=200)

    async def _handle_live(self, _request: web.Request) -> web.Response:
        """Handle /live endpoint for k8s liveness probe."""
        return web.json_response({"live": True}, status=200)

    async def _handle_status(self, _request: web.Request) -> web.Response:
        """Handle /api/status endpoint."""
        try:
            snapshot = await self.engine.get_status_snapshot()
        except StoreError as e:
            logger.error("Status lookup failed: %s", e)
            return web.json_response({"error": "Store unavailable"}, status=500)
        if snapshot is None:
            return web.json_response({"error": "No active server found"}, status=404)
        return web.json_response(snapshot)

    async def _handle_target_status(self, request: web.Request) -> web.Response:
        """Handle /api/targets/{id}/status endpoint."""
        target_id = int(request.match_info["target_id"])
        try:
            snapshot = await self.engine.get_status_snapshot(target_id)
        except StoreError as e:
            logger.error("Status lookup for target %d failed: %s", target_id, e)
            return web.json_response({"error": "Store unavailable"}, status=500)
        if snapshot is None:
            return web.json_response({"error": f"Target {target_id} not found"}, status=404)
        return web.json_response(snapshot)

    async def _handle_stats(self, _request: web.Request) -> web.Response:
        """Handle /api/stats endpoint."""
        try:
            stats = await self.engine.get_stats()
        except StoreError as e:
            logger.error("Stats lookup failed: %s", e)
            return web.json_response({"error": "Store unavailable"}, status=500)
        return web.json_response(stats)

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get("/ready", self._handle_ready)
        app.router.add_get("/live", self._handle_live)
        app.router.add_get("/api/status", self._handle_status)
        app.router.add_get(r"/api/targets/{target_id:\d+}/status", self._handle_target_status)
        app.router.add_get("/api/stats", self._handle_stats)
        return app

    async def start(self, port: int = DEFAULT_HTTP_PORT, host: str = "0.0.0.0") -> None:
        """Start serving on ``host:port``."""
        if self._runner:
            logger.warning("HTTP server already running")
            return

        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, host, port)
        await site.start()

        logger.info("Status HTTP server started on port %d", port)

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            logger.info("Status HTTP server stopped")
