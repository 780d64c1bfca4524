"""Deterministic cache keys for upstream lookups.

Two requests that would produce the same upstream call must map to the same
key, so times are reduced to whole seconds and steps to their shortest form.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

from metrics_proxy.domain.timeparse import format_seconds

ALERTS_KEY = "alerts"
METRIC_NAMES_KEY = "metric_names"


def _unix(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def instant_query_key(query: str, at: datetime) -> str:
    return f"instant:{query}:{_unix(at)}"


def range_query_key(query: str, start: datetime, end: datetime, step: float) -> str:
    return f"range:{query}:{_unix(start)}:{_unix(end)}:{format_seconds(step)}"


def metric_summary_key(metric_name: str) -> str:
    return f"metric_summary:{metric_name}"


def align_to_step(value: datetime, step: float) -> datetime:
    """Round ``value`` down to a multiple of ``step`` seconds since the epoch."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    timestamp = value.timestamp()
    aligned = math.floor(timestamp / step) * step
    return datetime.fromtimestamp(aligned, tz=timezone.utc)
