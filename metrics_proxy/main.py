from __future__ import annotations

import asyncio
import logging
import os
import signal

from aiohttp import web

from metrics_proxy.application.service import (
    AlertsService,
    MetricsService,
    QueryService,
    ResultCache,
)
from metrics_proxy.domain.eviction import EvictionPolicy
from metrics_proxy.infrastructure.config import Settings, load_settings
from metrics_proxy.infrastructure.logging import configure_logging
from metrics_proxy.infrastructure.memory_store import CacheStore
from metrics_proxy.infrastructure.prometheus import PrometheusClient
from metrics_proxy.infrastructure.tls import server_ssl_context
from metrics_proxy.transport.http.api_app import create_api_app
from metrics_proxy.transport.http.health_app import HealthCheckHandler
from metrics_proxy.transport.http.middleware import ActiveRequests

logger = logging.getLogger(__name__)


def build_cache_store(settings: Settings) -> CacheStore:
    policy = EvictionPolicy.parse(settings.cache_eviction_policy)
    if settings.cache_max_items > 0 and policy not in (EvictionPolicy.LRU, EvictionPolicy.OLDEST):
        logger.warning(
            "Eviction policy %r cannot evict; new results will not be cached past %d entries",
            settings.cache_eviction_policy,
            settings.cache_max_items,
        )
    return CacheStore(
        default_ttl=settings.cache_ttl,
        max_items=settings.cache_max_items,
        cleanup_interval=settings.cache_cleanup_interval,
        policy=policy,
        stats_enabled=settings.cache_stats_enabled,
    )


async def serve(settings: Settings | None = None) -> None:
    settings = settings or load_settings()

    cache_store = build_cache_store(settings)
    cache = ResultCache(cache_store, enabled=settings.cache_enabled)
    client = PrometheusClient(settings.prometheus_url, timeout=settings.prometheus_timeout)
    active_requests = ActiveRequests()

    app = create_api_app(
        QueryService(cache, client, max_points=settings.query_max_points),
        AlertsService(cache, client),
        MetricsService(cache, client),
        cache,
        health=HealthCheckHandler(cache, client, active_requests),
        active_requests=active_requests,
    )

    if settings.log_level == "DEBUG":
        access_log = logger
    else:
        access_log = None
        logging.getLogger("aiohttp.access").disabled = True

    runner = web.AppRunner(app, access_log=access_log)
    await runner.setup()
    site = web.TCPSite(
        runner, settings.host, settings.port, ssl_context=server_ssl_context(settings)
    )
    await site.start()

    transport = "TLS" if settings.tls_enabled else "plaintext"
    logger.info(
        "metrics-proxy listening on %s:%s (%s), upstream %s, cache %s",
        settings.host,
        settings.port,
        transport,
        settings.prometheus_url,
        "enabled" if settings.cache_enabled else "disabled",
    )

    stop_event = asyncio.Event()

    def _begin_shutdown() -> None:
        logger.info("Received shutdown signal, stopping metrics-proxy...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _begin_shutdown)

    try:
        await stop_event.wait()
    finally:
        cache_store.stop()
        await runner.cleanup()
        await client.close()
        logger.info("metrics-proxy stopped")


def main() -> None:
    configure_logging(
        os.getenv("LOG_LEVEL", "INFO").upper(),
        os.getenv("LOG_FORMAT", "text"),
    )
    try:
        settings = load_settings()
        asyncio.run(serve(settings))
    except Exception:
        logger.exception("Failed to start metrics-proxy")
        raise


if __name__ == "__main__":
    main()
