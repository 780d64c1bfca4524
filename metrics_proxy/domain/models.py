from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _Result(BaseModel):
    # cached results are shared between requests; treat them as read-only
    model_config = ConfigDict(frozen=True)


class Sample(_Result):
    metric_name: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    value: float
    timestamp: datetime


class TimeValuePair(_Result):
    timestamp: datetime
    value: float


class Series(_Result):
    metric_name: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    data_points: list[TimeValuePair] = Field(default_factory=list)


class QueryResponse(_Result):
    query: str
    query_time: datetime
    status: str = "success"
    data: list[Sample] = Field(default_factory=list)


class RangeQueryResponse(_Result):
    query: str
    start: datetime
    end: datetime
    step: float
    status: str = "success"
    series: list[Series] = Field(default_factory=list)


class QueryValidation(_Result):
    query: str
    valid: bool
    message: str


class Alert(_Result):
    name: str
    state: str
    severity: str = "unknown"
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    summary: str = ""
    active_at: Optional[datetime] = None
    value: float = 0.0


class AlertGroup(_Result):
    name: str
    count: int
    alerts: list[Alert] = Field(default_factory=list)


class SeverityCount(_Result):
    severity: str
    count: int


class AlertSummary(_Result):
    firing_count: int = 0
    pending_count: int = 0
    resolved_count: int = 0
    total_count: int = 0
    severity_breakdown: list[SeverityCount] = Field(default_factory=list)
    most_recent_alert: Optional[Alert] = None
    time_since_last_alert: Optional[str] = None
    last_updated: datetime


class MetricStats(_Result):
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0


class MetricSummary(_Result):
    name: str
    labels: list[str] = Field(default_factory=list)
    cardinality: int = 0
    stats: MetricStats = Field(default_factory=MetricStats)
    last_updated: datetime
    samples: list[Sample] = Field(default_factory=list)
