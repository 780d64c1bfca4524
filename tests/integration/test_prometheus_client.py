import asyncio
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from aiohttp import web

from metrics_proxy.domain.errors import UpstreamError
from metrics_proxy.infrastructure.prometheus import PrometheusClient

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


def _success(data, **extra):
    return web.json_response({"status": "success", "data": data, **extra})


class FakePrometheus:
    """Just enough of the Prometheus HTTP API to drive the client."""

    def __init__(self):
        self.requests = []
        self.healthy = True

    async def query(self, request: web.Request) -> web.Response:
        form = await request.post()
        self.requests.append(("query", dict(form)))
        query = form.get("query")
        if query == "bad(":
            return web.json_response(
                {"status": "error", "errorType": "bad_data", "error": "parse error at char 4"},
                status=400,
            )
        if query == "slow":
            await asyncio.sleep(1.0)
        if query == "warn":
            return _success({"resultType": "vector", "result": []}, warnings=["partial response"])
        if query == "empty":
            return _success(None)
        if query == "scalar(1)":
            return _success({"resultType": "scalar", "result": [1700000000, "1"]})
        return _success(
            {
                "resultType": "vector",
                "result": [
                    {"metric": {"__name__": query, "job": "api"}, "value": [1700000000, "1"]},
                ],
            }
        )

    async def query_range(self, request: web.Request) -> web.Response:
        form = await request.post()
        self.requests.append(("query_range", dict(form)))
        start = float(form["start"])
        step = float(form["step"])
        return _success(
            {
                "resultType": "matrix",
                "result": [
                    {
                        "metric": {"__name__": "up"},
                        "values": [[start, "1"], [start + step, "0"]],
                    }
                ],
            }
        )

    async def alerts(self, request: web.Request) -> web.Response:
        return _success(
            {
                "alerts": [
                    {
                        "labels": {"alertname": "InstanceDown", "severity": "critical"},
                        "annotations": {"summary": "instance down"},
                        "state": "firing",
                        "activeAt": "2024-01-01T00:00:00Z",
                        "value": "1e+00",
                    }
                ]
            }
        )

    async def label_values(self, request: web.Request) -> web.Response:
        return _success(["up", "go_goroutines"])

    async def labels(self, request: web.Request) -> web.Response:
        self.requests.append(("labels", request.query.getall("match[]", [])))
        return _success(["__name__", "job", "instance"])

    async def buildinfo(self, request: web.Request) -> web.Response:
        if not self.healthy:
            return web.Response(text="<html>bad gateway</html>", status=502, content_type="text/html")
        return _success({"version": "2.50.0"})

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/v1/query", self.query)
        app.router.add_post("/api/v1/query_range", self.query_range)
        app.router.add_get("/api/v1/alerts", self.alerts)
        app.router.add_get("/api/v1/label/__name__/values", self.label_values)
        app.router.add_get("/api/v1/labels", self.labels)
        app.router.add_get("/api/v1/status/buildinfo", self.buildinfo)
        return app


@pytest_asyncio.fixture
async def prometheus():
    fake = FakePrometheus()
    runner = web.AppRunner(fake.app(), access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]

    client = PrometheusClient(f"http://127.0.0.1:{port}/", timeout=0.3)
    try:
        yield fake, client
    finally:
        await client.close()
        await runner.cleanup()


async def test_instant_query_posts_form(prometheus):
    fake, client = prometheus
    at = datetime(2024, 1, 1, tzinfo=timezone.utc)

    samples = await client.query("up", at)

    assert len(samples) == 1
    assert samples[0].metric_name == "up"
    assert samples[0].labels == {"job": "api"}
    assert samples[0].value == 1.0
    assert fake.requests[0] == ("query", {"query": "up", "time": f"{at.timestamp():.3f}"})


async def test_instant_query_without_time(prometheus):
    fake, client = prometheus
    samples = await client.query("scalar(1)")
    assert samples[0].value == 1.0
    assert fake.requests[0] == ("query", {"query": "scalar(1)"})


async def test_range_query(prometheus):
    fake, client = prometheus
    start = datetime.fromtimestamp(1700000000, tz=timezone.utc)
    end = datetime.fromtimestamp(1700000600, tz=timezone.utc)

    series = await client.query_range("up", start, end, 60.0)

    assert len(series) == 1
    assert [p.value for p in series[0].data_points] == [1.0, 0.0]
    _, form = fake.requests[0]
    assert form["step"] == "60"
    assert form["start"] == "1700000000.000"
    assert form["end"] == "1700000600.000"


async def test_range_query_sends_large_steps_exactly(prometheus):
    fake, client = prometheus
    start = datetime.fromtimestamp(1700000000, tz=timezone.utc)
    end = datetime.fromtimestamp(1710000000, tz=timezone.utc)

    await client.query_range("up", start, end, 1234567.0)

    _, form = fake.requests[0]
    assert form["step"] == "1234567"


async def test_null_data_is_an_empty_result(prometheus):
    _, client = prometheus
    assert await client.query("empty") == []


async def test_error_payload_becomes_upstream_error(prometheus):
    _, client = prometheus
    with pytest.raises(UpstreamError) as exc_info:
        await client.query("bad(")

    assert str(exc_info.value) == "upstream query failed"
    assert "bad_data" in exc_info.value.detail
    assert "parse error at char 4" in exc_info.value.detail
    assert "HTTP 400" in exc_info.value.detail


async def test_timeout_becomes_upstream_error(prometheus):
    _, client = prometheus
    with pytest.raises(UpstreamError, match="upstream timeout"):
        await client.query("slow")


async def test_warnings_are_logged(prometheus, caplog):
    _, client = prometheus
    with caplog.at_level("WARNING", logger="metrics_proxy.infrastructure.prometheus"):
        assert await client.query("warn") == []
    assert "partial response" in caplog.text


async def test_alerts_and_metadata(prometheus):
    fake, client = prometheus

    alerts = await client.alerts()
    assert alerts[0].name == "InstanceDown"
    assert alerts[0].severity == "critical"
    assert alerts[0].summary == "instance down"

    assert await client.metric_names() == ["up", "go_goroutines"]
    assert await client.labels_for_metric("up") == ["instance", "job"]
    assert ("labels", ["up"]) in fake.requests


async def test_health(prometheus):
    fake, client = prometheus
    assert await client.is_healthy() is True

    fake.healthy = False
    assert await client.is_healthy() is False


async def test_non_json_body_becomes_upstream_error(prometheus):
    fake, client = prometheus
    fake.healthy = False
    with pytest.raises(UpstreamError, match="invalid upstream response"):
        await client._request("GET", "/api/v1/status/buildinfo")


async def test_unreachable_upstream():
    client = PrometheusClient("http://127.0.0.1:1", timeout=2.0)
    try:
        with pytest.raises(UpstreamError, match="upstream unavailable"):
            await client.metric_names()
        assert await client.is_healthy() is False
    finally:
        await client.close()
