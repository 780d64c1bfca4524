from __future__ import annotations

import asyncio
import logging
import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

from metrics_proxy.domain.constraints import (
    DEFAULT_MAX_POINTS,
    DEFAULT_RANGE_SECONDS,
    SUMMARY_SAMPLE_LIMIT,
)
from metrics_proxy.domain.errors import (
    InvalidQueryError,
    InvalidTimeRangeError,
    TooManyDataPointsError,
    UnsupportedEvictionPolicyError,
    UpstreamError,
)
from metrics_proxy.domain.models import (
    Alert,
    AlertGroup,
    AlertSummary,
    MetricStats,
    MetricSummary,
    QueryResponse,
    QueryValidation,
    RangeQueryResponse,
    SeverityCount,
)
from metrics_proxy.domain.timeparse import format_since
from metrics_proxy.domain.validation import validate_metric_name, validate_query

from . import cache_keys
from .ports import CacheStorePort, QueryClientPort

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATE_ORDER = {"firing": 0, "pending": 1}
_SEVERITY_RANK = {
    "critical": 0,
    "high": 1,
    "warning": 2,
    "medium": 3,
    "low": 4,
    "info": 5,
}


def _as_count(value: float) -> int:
    return int(value) if math.isfinite(value) else 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ResultCache:
    """Read-through wrapper around the cache store.

    The store lock is only taken for the lookup and the insert, both on a
    worker thread so a busy writer never stalls the event loop. The upstream
    fetch runs in between with no lock held. Failed fetches are never cached.
    """

    store: CacheStorePort
    enabled: bool = True

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
    ) -> T:
        if not self.enabled:
            return await fetch()

        value, found = await asyncio.to_thread(self.store.get, key)
        if found:
            return value

        value = await fetch()
        try:
            if ttl is None:
                await asyncio.to_thread(self.store.set, key, value)
            else:
                await asyncio.to_thread(self.store.set_with_expiration, key, value, ttl)
        except UnsupportedEvictionPolicyError as exc:
            # the fetched result is still good; it just cannot be cached
            logger.error("Not caching %r: %s", key, exc)
        return value

    def stats(self) -> dict[str, Any]:
        payload = self.store.stats()
        payload["enabled"] = self.enabled
        return payload

    def flush(self) -> int:
        return self.store.flush()


@dataclass(frozen=True)
class QueryService:
    cache: ResultCache
    client: QueryClientPort
    max_points: int = DEFAULT_MAX_POINTS
    now: Callable[[], datetime] = field(default=_utcnow)

    async def instant_query(self, query: str, at: Optional[datetime] = None) -> QueryResponse:
        query = validate_query(query)
        query_time = (at or self.now()).replace(microsecond=0)
        key = cache_keys.instant_query_key(query, query_time)

        async def fetch() -> QueryResponse:
            logger.info("Executing instant query %r at %s", query, query_time.isoformat())
            samples = await self.client.query(query, query_time)
            return QueryResponse(query=query, query_time=query_time, data=samples)

        return await self.cache.get_or_fetch(key, fetch)

    async def range_query(
        self,
        query: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        step: float = 60.0,
    ) -> RangeQueryResponse:
        query = validate_query(query)
        if not math.isfinite(step) or step <= 0:
            raise InvalidQueryError("Step must be a positive duration")

        end = end or self.now()
        start = start or end - timedelta(seconds=DEFAULT_RANGE_SECONDS)
        if start > end:
            raise InvalidTimeRangeError("Start time must not be after end time")

        points = int((end - start).total_seconds() // step)
        if points > self.max_points:
            raise TooManyDataPointsError(
                f"Query would return {points} points per series (max {self.max_points})"
            )

        start = cache_keys.align_to_step(start, step)
        end = cache_keys.align_to_step(end, step)
        key = cache_keys.range_query_key(query, start, end, step)

        async def fetch() -> RangeQueryResponse:
            logger.info(
                "Executing range query %r from %s to %s step %ss",
                query,
                start.isoformat(),
                end.isoformat(),
                step,
            )
            series = await self.client.query_range(query, start, end, step)
            return RangeQueryResponse(query=query, start=start, end=end, step=step, series=series)

        return await self.cache.get_or_fetch(key, fetch)

    async def validate_query(self, query: str) -> QueryValidation:
        try:
            query = validate_query(query)
        except InvalidQueryError as exc:
            return QueryValidation(query=query or "", valid=False, message=str(exc))

        try:
            await self.client.query(query, self.now())
        except UpstreamError as exc:
            return QueryValidation(
                query=query, valid=False, message=f"Query validation failed: {exc.detail}"
            )
        return QueryValidation(query=query, valid=True, message="Query is valid")


def _alert_sort_key(alert: Alert) -> tuple[int, str]:
    return _STATE_ORDER.get(alert.state, 2), alert.name


@dataclass(frozen=True)
class AlertsService:
    cache: ResultCache
    client: QueryClientPort
    now: Callable[[], datetime] = field(default=_utcnow)

    async def alerts(self) -> list[Alert]:
        async def fetch() -> list[Alert]:
            logger.info("Retrieving current alerts")
            return sorted(await self.client.alerts(), key=_alert_sort_key)

        return await self.cache.get_or_fetch(cache_keys.ALERTS_KEY, fetch)

    async def alert_groups(self, group_by: str = "severity") -> list[AlertGroup]:
        group_by = group_by or "severity"
        grouped: dict[str, list[Alert]] = defaultdict(list)
        for alert in await self.alerts():
            if group_by == "severity":
                group_key = alert.severity
            else:
                group_key = alert.labels.get(group_by, "unknown")
            grouped[group_key].append(alert)

        return [
            AlertGroup(name=name, count=len(alerts), alerts=alerts)
            for name, alerts in sorted(grouped.items())
        ]

    async def alert_summary(self) -> AlertSummary:
        alerts = await self.alerts()
        states = Counter(alert.state for alert in alerts)
        severities = Counter(alert.severity for alert in alerts)
        now = self.now()

        active = [alert for alert in alerts if alert.active_at is not None]
        most_recent = max(active, key=lambda alert: alert.active_at, default=None)
        since = None
        if most_recent is not None:
            since = format_since((now - most_recent.active_at).total_seconds())

        breakdown = [
            SeverityCount(severity=severity, count=count)
            for severity, count in sorted(
                severities.items(),
                key=lambda item: (_SEVERITY_RANK.get(item[0], len(_SEVERITY_RANK)), item[0]),
            )
        ]
        firing = states.get("firing", 0)
        pending = states.get("pending", 0)
        return AlertSummary(
            firing_count=firing,
            pending_count=pending,
            resolved_count=len(alerts) - firing - pending,
            total_count=len(alerts),
            severity_breakdown=breakdown,
            most_recent_alert=most_recent,
            time_since_last_alert=since,
            last_updated=now,
        )


@dataclass(frozen=True)
class MetricsService:
    cache: ResultCache
    client: QueryClientPort
    now: Callable[[], datetime] = field(default=_utcnow)

    async def metric_names(self) -> list[str]:
        async def fetch() -> list[str]:
            return sorted(await self.client.metric_names())

        return await self.cache.get_or_fetch(cache_keys.METRIC_NAMES_KEY, fetch)

    async def metric_summary(self, metric_name: str) -> MetricSummary:
        metric_name = validate_metric_name(metric_name)

        async def fetch() -> MetricSummary:
            logger.debug("Building summary for metric %s", metric_name)
            now = self.now()
            labels = await self.client.labels_for_metric(metric_name)
            samples = await self.client.query(metric_name, now)
            cardinality = await self.client.query(f"count({metric_name})", now)

            stats: dict[str, float] = {}
            for stat in ("min", "max", "avg"):
                try:
                    result = await self.client.query(f"{stat}_over_time({metric_name}[1h])", now)
                except UpstreamError as exc:
                    logger.warning("Failed to get %s for metric %s: %s", stat, metric_name, exc.detail)
                    continue
                if result:
                    stats[stat] = result[0].value

            return MetricSummary(
                name=metric_name,
                labels=labels,
                cardinality=_as_count(cardinality[0].value if cardinality else 0.0),
                stats=MetricStats(**stats),
                last_updated=now,
                samples=samples[:SUMMARY_SAMPLE_LIMIT],
            )

        return await self.cache.get_or_fetch(cache_keys.metric_summary_key(metric_name), fetch)
