"""Turn Prometheus HTTP API payloads into the result models we cache.

Only the ``data`` member of a successful response is handled here; envelope
and transport errors are the client's concern.
"""

from __future__ import annotations

from typing import Any, Mapping

from metrics_proxy.domain.errors import UpstreamError
from metrics_proxy.domain.models import Alert, Sample, Series, TimeValuePair
from metrics_proxy.domain.timeparse import from_unix, parse_rfc3339


def parse_value(raw: Any) -> float:
    # Prometheus encodes sample values as strings, including "NaN" and "+Inf"
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise UpstreamError("invalid sample value", detail=f"invalid sample value {raw!r}") from exc


def _split_metric(metric: Mapping[str, str] | None) -> tuple[str, dict[str, str]]:
    labels = dict(metric or {})
    name = labels.pop("__name__", "")
    return name, labels


def _sample_from_pair(pair: Any, metric: Mapping[str, str] | None = None) -> Sample:
    if not isinstance(pair, (list, tuple)) or len(pair) != 2:
        raise UpstreamError("malformed sample", detail=f"malformed sample {pair!r}")
    name, labels = _split_metric(metric)
    return Sample(
        metric_name=name,
        labels=labels,
        value=parse_value(pair[1]),
        timestamp=from_unix(pair[0]),
    )


def parse_samples(data: Mapping[str, Any]) -> list[Sample]:
    """Parse an instant query result. Vectors and scalars are supported."""
    if not data:
        return []
    result_type = data.get("resultType")
    result = data.get("result")

    if result_type == "vector":
        return [_sample_from_pair(item.get("value"), item.get("metric")) for item in result or []]
    if result_type == "scalar":
        return [_sample_from_pair(result)]
    if result_type == "matrix":
        # a range selector in an instant query: keep the latest point of each series
        samples = []
        for series in parse_series(data):
            if series.data_points:
                last = series.data_points[-1]
                samples.append(
                    Sample(
                        metric_name=series.metric_name,
                        labels=series.labels,
                        value=last.value,
                        timestamp=last.timestamp,
                    )
                )
        return samples

    raise UpstreamError(
        "unsupported result type", detail=f"unsupported instant result type {result_type!r}"
    )


def parse_series(data: Mapping[str, Any]) -> list[Series]:
    if not data:
        return []
    result_type = data.get("resultType")
    if result_type != "matrix":
        raise UpstreamError(
            "unsupported result type", detail=f"expected matrix result, got {result_type!r}"
        )

    series = []
    for item in data.get("result") or []:
        name, labels = _split_metric(item.get("metric"))
        points = [
            TimeValuePair(timestamp=from_unix(ts), value=parse_value(value))
            for ts, value in item.get("values") or []
        ]
        series.append(Series(metric_name=name, labels=labels, data_points=points))
    return series


def parse_alerts(data: Mapping[str, Any]) -> list[Alert]:
    alerts = []
    for item in data.get("alerts") or []:
        labels = dict(item.get("labels") or {})
        annotations = dict(item.get("annotations") or {})
        active_at = item.get("activeAt")
        value = item.get("value")
        alerts.append(
            Alert(
                name=labels.get("alertname", ""),
                state=str(item.get("state", "")).lower(),
                severity=labels.get("severity") or "unknown",
                labels=labels,
                annotations=annotations,
                summary=annotations.get("summary") or annotations.get("description") or "",
                active_at=parse_rfc3339(active_at) if active_at else None,
                value=parse_value(value) if value not in (None, "") else 0.0,
            )
        )
    return alerts
