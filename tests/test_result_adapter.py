import math
from datetime import datetime, timezone

import pytest

from metrics_proxy.domain.errors import UpstreamError
from metrics_proxy.infrastructure.result_adapter import (
    parse_alerts,
    parse_samples,
    parse_series,
    parse_value,
)

pytestmark = [pytest.mark.unit]


class TestSamples:
    def test_vector(self):
        data = {
            "resultType": "vector",
            "result": [
                {"metric": {"__name__": "up", "job": "api"}, "value": [1700000000, "1"]},
                {"metric": {"__name__": "up", "job": "db"}, "value": [1700000000.5, "0"]},
            ],
        }
        samples = parse_samples(data)

        assert [s.labels["job"] for s in samples] == ["api", "db"]
        assert samples[0].metric_name == "up"
        assert "__name__" not in samples[0].labels
        assert samples[0].value == 1.0
        assert samples[0].timestamp == datetime.fromtimestamp(1700000000, tz=timezone.utc)

    def test_scalar(self):
        samples = parse_samples({"resultType": "scalar", "result": [1700000000, "42.5"]})

        assert len(samples) == 1
        assert samples[0].metric_name == ""
        assert samples[0].labels == {}
        assert samples[0].value == 42.5

    def test_matrix_keeps_last_point(self):
        data = {
            "resultType": "matrix",
            "result": [
                {"metric": {"__name__": "x"}, "values": [[1, "1"], [2, "2"], [3, "3"]]},
                {"metric": {"__name__": "y"}, "values": []},
            ],
        }
        samples = parse_samples(data)

        assert len(samples) == 1
        assert samples[0].metric_name == "x"
        assert samples[0].value == 3.0

    def test_empty_vector(self):
        assert parse_samples({"resultType": "vector", "result": []}) == []

    def test_string_result_is_unsupported(self):
        with pytest.raises(UpstreamError) as exc_info:
            parse_samples({"resultType": "string", "result": [1, "hello"]})
        assert "string" in exc_info.value.detail

    def test_special_values(self):
        assert math.isnan(parse_value("NaN"))
        assert parse_value("+Inf") == math.inf
        assert parse_value("-Inf") == -math.inf

    def test_bad_value(self):
        with pytest.raises(UpstreamError, match="invalid sample value"):
            parse_value("not-a-number")

    def test_malformed_pair(self):
        with pytest.raises(UpstreamError, match="malformed sample"):
            parse_samples({"resultType": "vector", "result": [{"metric": {}, "value": [1]}]})

    @pytest.mark.parametrize("data", [None, {}])
    def test_missing_data_is_empty(self, data):
        assert parse_samples(data) == []


class TestSeries:
    def test_matrix(self):
        data = {
            "resultType": "matrix",
            "result": [
                {
                    "metric": {"__name__": "http_requests_total", "code": "200"},
                    "values": [[1700000000, "10"], [1700000060, "12"]],
                }
            ],
        }
        series = parse_series(data)

        assert len(series) == 1
        assert series[0].metric_name == "http_requests_total"
        assert series[0].labels == {"code": "200"}
        assert [p.value for p in series[0].data_points] == [10.0, 12.0]
        assert series[0].data_points[1].timestamp == datetime.fromtimestamp(1700000060, tz=timezone.utc)

    def test_non_matrix_is_rejected(self):
        with pytest.raises(UpstreamError):
            parse_series({"resultType": "vector", "result": []})

    def test_missing_data_is_empty(self):
        assert parse_series({}) == []
        assert parse_series(None) == []


class TestAlerts:
    def test_parse_alerts(self):
        data = {
            "alerts": [
                {
                    "labels": {"alertname": "HighCPU", "severity": "critical", "instance": "a"},
                    "annotations": {"summary": "CPU is high", "description": "long text"},
                    "state": "FIRING",
                    "activeAt": "2024-01-01T00:00:00.123456789Z",
                    "value": "9.5e+01",
                },
                {
                    "labels": {"alertname": "DiskSlow"},
                    "annotations": {"description": "disk is slow"},
                    "state": "pending",
                    "activeAt": "0001-01-01T00:00:00Z",
                },
            ]
        }
        first, second = parse_alerts(data)

        assert first.name == "HighCPU"
        assert first.state == "firing"
        assert first.severity == "critical"
        assert first.summary == "CPU is high"
        assert first.value == 95.0
        assert first.active_at == datetime(2024, 1, 1, 0, 0, 0, 123456, tzinfo=timezone.utc)

        assert second.severity == "unknown"
        assert second.summary == "disk is slow"
        assert second.active_at is None
        assert second.value == 0.0

    def test_no_alerts(self):
        assert parse_alerts({}) == []
        assert parse_alerts({"alerts": None}) == []
