from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from aiohttp import web

from metrics_proxy.application.ports import QueryClientPort
from metrics_proxy.application.service import ResultCache

from .middleware import ActiveRequests

logger = logging.getLogger(__name__)

SERVICE_NAME = "metrics-proxy"
ENDPOINTS = ["/health", "/ready", "/live", "/metrics", "/stats", "/api/v1"]

# (stats key, exposed name, type, help)
_CACHE_METRICS = (
    ("hits", "metrics_proxy_cache_hits_total", "counter", "Total cache hits"),
    ("misses", "metrics_proxy_cache_misses_total", "counter", "Total cache misses"),
    ("evictions", "metrics_proxy_cache_evictions_total", "counter", "Total capacity evictions"),
    ("expired", "metrics_proxy_cache_expired_total", "counter", "Total entries dropped after their TTL"),
    ("cleanup_runs", "metrics_proxy_cache_cleanup_runs_total", "counter", "Background sweep passes"),
    ("size", "metrics_proxy_cache_entries", "gauge", "Current number of entries"),
)


def _exposition(name: str, kind: str, help_text: str, value: Any) -> list[str]:
    return [f"# HELP {name} {help_text}", f"# TYPE {name} {kind}", f"{name} {value}"]


def _unavailable(exc: Exception) -> web.Response:
    return web.json_response({"status": "error", "message": str(exc)}, status=503)


class HealthCheckHandler:
    def __init__(
        self,
        cache: ResultCache,
        client: QueryClientPort,
        active_requests: ActiveRequests,
    ):
        self._cache = cache
        self._client = client
        self._active_requests = active_requests
        self._start_time = time.monotonic()

    def _uptime(self) -> float:
        return time.monotonic() - self._start_time

    async def _cache_stats(self) -> dict[str, Any]:
        # the store lock is a threading lock; keep it off the event loop
        return await asyncio.to_thread(self._cache.stats)

    async def health_check(self, request: web.Request) -> web.Response:
        try:
            stats = await self._cache_stats()
            return web.json_response(
                {
                    "status": "healthy",
                    "uptime_seconds": round(self._uptime(), 2),
                    "cache_enabled": stats.get("enabled", True),
                    "cache_size": stats.get("size", 0),
                    "cache_hits": stats.get("hits", 0),
                    "cache_misses": stats.get("misses", 0),
                    "active_requests": self._active_requests.value,
                    "timestamp": time.time(),
                }
            )
        except Exception as exc:
            logger.exception("Health check error")
            return _unavailable(exc)

    async def readiness_check(self, request: web.Request) -> web.Response:
        """Ready only while the upstream answers its build-info request."""
        try:
            upstream_ok = await self._client.is_healthy()
        except Exception:
            logger.exception("Readiness check error")
            upstream_ok = False

        return web.json_response(
            {
                "status": "ready" if upstream_ok else "not_ready",
                "upstream": "up" if upstream_ok else "down",
                "timestamp": time.time(),
            },
            status=200 if upstream_ok else 503,
        )

    async def liveness_check(self, request: web.Request) -> web.Response:
        try:
            return web.json_response(
                {
                    "status": "alive",
                    "uptime_seconds": round(self._uptime(), 2),
                    "timestamp": time.time(),
                }
            )
        except Exception as exc:
            logger.exception("Liveness check error")
            return _unavailable(exc)

    async def metrics(self, request: web.Request) -> web.Response:
        try:
            stats = await self._cache_stats()
            lines: list[str] = []
            for key, name, kind, help_text in _CACHE_METRICS:
                lines.extend(_exposition(name, kind, help_text, int(stats.get(key, 0))))
            lines.extend(
                _exposition(
                    "metrics_proxy_active_requests",
                    "gauge",
                    "Current in-flight HTTP requests",
                    self._active_requests.value,
                )
            )
            lines.extend(
                _exposition(
                    "metrics_proxy_uptime_seconds", "gauge", "Process uptime in seconds", self._uptime()
                )
            )
            lines.append("")
            return web.Response(text="\n".join(lines), content_type="text/plain", charset="utf-8")
        except Exception:
            logger.exception("Metrics error")
            return web.Response(text="", status=503, content_type="text/plain")

    async def stats(self, request: web.Request) -> web.Response:
        try:
            payload = dict(await self._cache_stats())
            payload["uptime_seconds"] = round(self._uptime(), 2)
            payload["active_requests"] = self._active_requests.value
            payload["timestamp"] = time.time()
            return web.json_response(payload)
        except Exception as exc:
            logger.exception("Stats error")
            return _unavailable(exc)


def add_health_routes(app: web.Application, handler: HealthCheckHandler) -> None:
    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/ready", handler.readiness_check)
    app.router.add_get("/live", handler.liveness_check)
    app.router.add_get("/metrics", handler.metrics)
    app.router.add_get("/stats", handler.stats)

    async def index(request: web.Request) -> web.Response:
        return web.json_response({"service": SERVICE_NAME, "endpoints": ENDPOINTS})

    app.router.add_get("/", index)
