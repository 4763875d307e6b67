"""
Health endpoints for the notification worker.

Liveness, readiness (Redis, the events stream and the database) and a
metrics snapshot, served with aiohttp next to the worker loop.
"""

import asyncio
import time
from collections.abc import Callable
from typing import Any

from aiohttp import web

from urbanwatch.config import get_logger
from urbanwatch.db import health_check as db_health_check
from urbanwatch.services.event_stream import get_queue_stats, get_redis_client

logger = get_logger(__name__)

DEFAULT_PORT = 8081
CHECK_TIMEOUT = 5.0  # seconds


class HealthServer:
    """Serves /health, /ready and /metrics for the notification worker."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        worker_metrics_fn: Callable[[], dict] | None = None,
    ) -> None:
        self.port = port
        self.worker_metrics_fn = worker_metrics_fn
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._start_time = time.time()

    def build_app(self) -> web.Application:
        """Application with the health routes registered."""
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/ready", self._ready_handler)
        app.router.add_get("/metrics", self._metrics_handler)
        return app

    async def start(self) -> None:
        """Start listening."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, "0.0.0.0", self.port)
        await self._site.start()

        logger.info("Health server started", port=self.port)

    async def stop(self) -> None:
        """Stop the health server."""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        logger.info("Health server stopped")

    def _uptime(self) -> float:
        return round(time.time() - self._start_time, 2)

    async def _health_handler(self, _request: web.Request) -> web.Response:
        """Liveness: the process is up."""
        return web.json_response({"status": "healthy", "uptime_seconds": self._uptime()})

    async def _ready_handler(self, _request: web.Request) -> web.Response:
        """
        Readiness check endpoint.

        Returns 200 when Redis answers, the events stream is readable and
        the database accepts queries; 503 otherwise.
        """
        checks: dict[str, Any] = {
            "redis": False,
            "stream": False,
            "database": False,
        }

        try:
            client = await get_redis_client()
            pong = await asyncio.wait_for(client.ping(), timeout=CHECK_TIMEOUT)
            checks["redis"] = pong is True

            stats = await get_queue_stats()
            checks["stream"] = "error" not in stats
        except TimeoutError:
            logger.warning("Redis health check timeout")
        except Exception as e:
            logger.warning("Redis health check failed", error=str(e))

        try:
            checks["database"] = await asyncio.wait_for(db_health_check(), timeout=CHECK_TIMEOUT)
        except TimeoutError:
            logger.warning("Database health check timeout")

        is_ready = all(checks.values())
        return web.json_response(
            {
                "status": "ready" if is_ready else "not_ready",
                "checks": checks,
                "uptime_seconds": self._uptime(),
            },
            status=200 if is_ready else 503,
        )

    async def _metrics_handler(self, _request: web.Request) -> web.Response:
        """Worker counters and events stream statistics."""
        metrics: dict[str, Any] = {"uptime_seconds": self._uptime()}

        if self.worker_metrics_fn:
            try:
                metrics["worker"] = self.worker_metrics_fn()
            except Exception as e:
                logger.warning("Failed to get worker metrics", error=str(e))

        try:
            metrics["stream"] = await get_queue_stats()
        except Exception as e:
            logger.warning("Failed to get stream metrics", error=str(e))
            metrics["stream"] = {"error": str(e)}

        return web.json_response(metrics)


async def run_health_server(
    port: int = DEFAULT_PORT,
    worker_metrics_fn: Callable[[], dict] | None = None,
) -> HealthServer:
    """Create and start a health server."""
    server = HealthServer(port=port, worker_metrics_fn=worker_metrics_fn)
    await server.start()
    return server
