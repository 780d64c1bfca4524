from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp

from metrics_proxy.domain.errors import UpstreamError
from metrics_proxy.domain.models import Alert, Sample, Series
from metrics_proxy.domain.timeparse import format_seconds

from .result_adapter import parse_alerts, parse_samples, parse_series

logger = logging.getLogger(__name__)


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return f"{value.timestamp():.3f}"


class PrometheusClient:
    """Async client for the Prometheus HTTP API.

    Every call is bounded by ``timeout`` seconds. Transport failures,
    timeouts and ``status: error`` payloads all surface as ``UpstreamError``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        form: Optional[dict[str, str]] = None,
    ) -> Any:
        session = self._ensure_session()
        url = f"{self._base_url}{path}"
        try:
            async with session.request(
                method, url, params=params, data=form, timeout=self._timeout
            ) as response:
                status = response.status
                try:
                    payload = await response.json(content_type=None)
                except ValueError as exc:
                    raise UpstreamError(
                        "invalid upstream response",
                        detail=f"{path}: HTTP {status} with a non-JSON body",
                    ) from exc
        except asyncio.TimeoutError as exc:
            raise UpstreamError(
                "upstream timeout",
                detail=f"{path}: timed out after {self._timeout.total}s",
            ) from exc
        except aiohttp.ClientError as exc:
            raise UpstreamError("upstream unavailable", detail=f"{path}: {exc}") from exc

        if not isinstance(payload, dict):
            raise UpstreamError(
                "invalid upstream response", detail=f"{path}: HTTP {status} unexpected payload"
            )
        if status >= 400 or payload.get("status") != "success":
            raise UpstreamError(
                "upstream query failed",
                detail=(
                    f"{path}: HTTP {status} "
                    f"{payload.get('errorType', 'error')}: {payload.get('error', 'unknown error')}"
                ),
            )
        for warning in payload.get("warnings") or []:
            logger.warning("Prometheus warning for %s: %s", path, warning)
        return payload.get("data")

    async def query(self, query: str, at: Optional[datetime] = None) -> list[Sample]:
        logger.debug("executing instant query %r", query)
        form = {"query": query}
        if at is not None:
            form["time"] = _format_time(at)
        data = await self._request("POST", "/api/v1/query", form=form)
        return parse_samples(data or {})

    async def query_range(
        self,
        query: str,
        start: datetime,
        end: datetime,
        step: float,
    ) -> list[Series]:
        logger.debug(
            "executing range query %r start=%s end=%s step=%ss",
            query,
            start.isoformat(),
            end.isoformat(),
            step,
        )
        form = {
            "query": query,
            "start": _format_time(start),
            "end": _format_time(end),
            "step": format_seconds(step),
        }
        data = await self._request("POST", "/api/v1/query_range", form=form)
        return parse_series(data or {})

    async def alerts(self) -> list[Alert]:
        logger.debug("fetching alerts")
        data = await self._request("GET", "/api/v1/alerts")
        return parse_alerts(data or {})

    async def metric_names(self) -> list[str]:
        data = await self._request("GET", "/api/v1/label/__name__/values")
        return [str(name) for name in data or []]

    async def labels_for_metric(self, metric_name: str) -> list[str]:
        data = await self._request(
            "GET", "/api/v1/labels", params=[("match[]", metric_name)]
        )
        return sorted(str(label) for label in data or [] if label != "__name__")

    async def is_healthy(self) -> bool:
        try:
            await self._request("GET", "/api/v1/status/buildinfo")
        except UpstreamError as exc:
            logger.warning("Prometheus health check failed: %s", exc.detail)
            return False
        return True
