from datetime import datetime, timedelta, timezone

import pytest

from metrics_proxy.application import cache_keys

pytestmark = [pytest.mark.unit]

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_instant_key_uses_whole_seconds():
    at = T0 + timedelta(milliseconds=750)
    assert cache_keys.instant_query_key("up", at) == f"instant:up:{int(T0.timestamp())}"


def test_naive_datetimes_are_treated_as_utc():
    naive = T0.replace(tzinfo=None)
    assert cache_keys.instant_query_key("up", naive) == cache_keys.instant_query_key("up", T0)


def test_range_key_formats_step_compactly():
    end = T0 + timedelta(hours=1)
    key = cache_keys.range_query_key("rate(x[5m])", T0, end, 60.0)
    assert key == f"range:rate(x[5m]):{int(T0.timestamp())}:{int(end.timestamp())}:60"
    assert cache_keys.range_query_key("q", T0, end, 0.5).endswith(":0.5")


def test_range_key_keeps_large_steps_distinct():
    end = T0 + timedelta(days=60)
    first = cache_keys.range_query_key("up", T0, end, 1234567.0)
    second = cache_keys.range_query_key("up", T0, end, 1234568.0)
    assert first != second
    assert first.endswith(":1234567")


def test_distinct_queries_get_distinct_keys():
    assert cache_keys.instant_query_key("up", T0) != cache_keys.instant_query_key("down", T0)
    assert cache_keys.metric_summary_key("up") == "metric_summary:up"


@pytest.mark.parametrize(
    "offset, step, expected_offset",
    [
        (timedelta(seconds=59), 60, timedelta(0)),
        (timedelta(seconds=61), 60, timedelta(seconds=60)),
        (timedelta(minutes=7, seconds=3), 300, timedelta(minutes=5)),
        (timedelta(seconds=10), 15, timedelta(0)),
    ],
)
def test_align_to_step(offset, step, expected_offset):
    assert cache_keys.align_to_step(T0 + offset, step) == T0 + expected_offset


def test_align_to_step_returns_utc():
    local = datetime(2024, 1, 1, 14, 0, 30, tzinfo=timezone(timedelta(hours=2)))
    aligned = cache_keys.align_to_step(local, 60)
    assert aligned.tzinfo == timezone.utc
    assert aligned == T0
