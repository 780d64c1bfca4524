from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from aiohttp import web
from pydantic_core import to_json

from metrics_proxy.application.service import (
    AlertsService,
    MetricsService,
    QueryService,
    ResultCache,
)
from metrics_proxy.domain.errors import InvalidQueryError, InvalidTimeRangeError
from metrics_proxy.domain.timeparse import parse_seconds, parse_time_param

from .health_app import HealthCheckHandler, add_health_routes
from .middleware import (
    ActiveRequests,
    active_requests_middleware,
    error_middleware,
    request_id_middleware,
)

logger = logging.getLogger(__name__)

DEFAULT_STEP_SECONDS = 60.0


def json_response(payload: Any, status: int = 200) -> web.Response:
    # NaN and Inf sample values are not valid JSON; send them as null
    body = to_json(payload, inf_nan_mode="null")
    return web.Response(body=body, status=status, content_type="application/json")


def _optional_time(raw: Any, name: str) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    try:
        return parse_time_param(raw)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidTimeRangeError(f"Invalid {name} time {raw!r}") from exc


def _step(raw: Any) -> float:
    if raw is None or raw == "":
        return DEFAULT_STEP_SECONDS
    try:
        return parse_seconds(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidQueryError(f"Invalid step {raw!r}") from exc


class ApiHandler:
    def __init__(
        self,
        queries: QueryService,
        alerts: AlertsService,
        metrics: MetricsService,
        cache: ResultCache,
    ):
        self._queries = queries
        self._alerts = alerts
        self._metrics = metrics
        self._cache = cache

    async def instant_query(self, request: web.Request) -> web.Response:
        params = request.query
        result = await self._queries.instant_query(
            params.get("query", ""), _optional_time(params.get("time"), "query")
        )
        return json_response(result)

    async def range_query(self, request: web.Request) -> web.Response:
        params: Mapping[str, Any]
        if request.method == "POST":
            if request.content_type != "application/json":
                raise InvalidQueryError("Content-Type must be application/json")
            try:
                params = await request.json()
            except ValueError as exc:
                raise InvalidQueryError("Invalid request payload") from exc
            if not isinstance(params, dict):
                raise InvalidQueryError("Invalid request payload")
        else:
            params = request.query

        result = await self._queries.range_query(
            params.get("query", ""),
            start=_optional_time(params.get("start"), "start"),
            end=_optional_time(params.get("end"), "end"),
            step=_step(params.get("step")),
        )
        return json_response(result)

    async def validate_query(self, request: web.Request) -> web.Response:
        result = await self._queries.validate_query(request.query.get("query", ""))
        return json_response(result)

    async def alerts(self, request: web.Request) -> web.Response:
        return json_response(await self._alerts.alerts())

    async def alert_groups(self, request: web.Request) -> web.Response:
        group_by = request.query.get("group_by", "severity")
        return json_response(await self._alerts.alert_groups(group_by))

    async def alert_summary(self, request: web.Request) -> web.Response:
        return json_response(await self._alerts.alert_summary())

    async def metric_names(self, request: web.Request) -> web.Response:
        return json_response(await self._metrics.metric_names())

    async def metric_summary(self, request: web.Request) -> web.Response:
        summary = await self._metrics.metric_summary(request.match_info["name"])
        return json_response(summary)

    async def cache_stats(self, request: web.Request) -> web.Response:
        return json_response(await asyncio.to_thread(self._cache.stats))

    async def cache_flush(self, request: web.Request) -> web.Response:
        flushed = await asyncio.to_thread(self._cache.flush)
        logger.info("Cache flushed (%d entries)", flushed)
        return json_response({"status": "ok", "flushed": flushed})


def create_api_app(
    queries: QueryService,
    alerts: AlertsService,
    metrics: MetricsService,
    cache: ResultCache,
    *,
    health: Optional[HealthCheckHandler] = None,
    active_requests: Optional[ActiveRequests] = None,
) -> web.Application:
    active_requests = active_requests or ActiveRequests()
    handler = ApiHandler(queries, alerts, metrics, cache)

    app = web.Application(
        middlewares=[
            request_id_middleware,
            active_requests_middleware(active_requests),
            error_middleware,
        ]
    )
    app.router.add_get("/api/v1/query", handler.instant_query)
    app.router.add_get("/api/v1/query_range", handler.range_query)
    app.router.add_post("/api/v1/query_range", handler.range_query)
    app.router.add_get("/api/v1/query/validate", handler.validate_query)
    app.router.add_get("/api/v1/alerts", handler.alerts)
    app.router.add_get("/api/v1/alerts/groups", handler.alert_groups)
    app.router.add_get("/api/v1/alerts/summary", handler.alert_summary)
    app.router.add_get("/api/v1/metrics", handler.metric_names)
    app.router.add_get("/api/v1/metrics/{name}/summary", handler.metric_summary)
    app.router.add_get("/api/v1/cache/stats", handler.cache_stats)
    app.router.add_delete("/api/v1/cache", handler.cache_flush)

    if health is not None:
        add_health_routes(app, health)
    return app
