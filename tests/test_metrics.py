import os
import re

import pytest

from mcp_hello_world.observability.metrics import CONTENT_TYPE


async def test_metrics_endpoint_returns_prometheus_text(api_client) -> None:
    resp = await api_client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == CONTENT_TYPE

    body = resp.text
    assert "# HELP" in body
    assert "# TYPE" in body
    for name in (
        "mcp_hello_world_http_requests_total",
        "mcp_hello_world_http_request_duration_seconds",
        "mcp_hello_world_handshake_total",
        "mcp_hello_world_handshake_duration_seconds",
        "mcp_hello_world_uptime_seconds",
    ):
        assert name in body


async def test_metrics_count_health_requests(api_client) -> None:
    health = await api_client.get("/healthz")
    assert health.status_code == 200

    body = (await api_client.get("/metrics")).text
    assert re.search(r'mcp_hello_world_http_requests_total\{.*method="GET".*route="/healthz"', body)
    assert (
        'mcp_hello_world_http_requests_total{method="GET",route="/healthz",status_code="200"} 1' in body
    )
    assert (
        'mcp_hello_world_http_request_duration_seconds_count{method="GET",route="/healthz",status_code="200"} 1'
        in body
    )


async def test_each_request_is_counted_exactly_once(api_client, app) -> None:
    registry = app.state.metrics
    for _ in range(3):
        await api_client.get("/healthz")
    await api_client.post("/healthz")

    ok = {"method": "GET", "route": "/healthz", "status_code": "200"}
    rejected = {"method": "POST", "route": "/healthz", "status_code": "405"}
    assert registry.value("mcp_hello_world_http_requests_total", ok) == 3
    assert registry.value("mcp_hello_world_http_request_duration_seconds", ok) == 3
    assert registry.value("mcp_hello_world_http_requests_total", rejected) == 1


async def test_unmatched_routes_share_one_label(api_client, app) -> None:
    await api_client.get("/nope")
    await api_client.get("/also-nope")

    labels = {"method": "GET", "route": "unknown", "status_code": "404"}
    assert app.state.metrics.value("mcp_hello_world_http_requests_total", labels) == 2


@pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH", "OPTIONS"])
async def test_metrics_rejects_other_methods(api_client, method: str) -> None:
    resp = await api_client.request(method, "/metrics")
    assert resp.status_code == 405

    payload = resp.json()
    assert payload["error"]["code"] == 405
    assert payload["error"]["allowed_methods"] == ["GET"]
    assert resp.headers["allow"] == "GET"


async def test_metrics_rejects_head(api_client) -> None:
    resp = await api_client.head("/metrics")
    assert resp.status_code == 405
    assert resp.headers["allow"] == "GET"


async def test_metrics_expose_process_metrics(api_client) -> None:
    body = (await api_client.get("/metrics")).text

    assert "# TYPE mcp_hello_world_process_cpu_seconds_total counter" in body
    assert "mcp_hello_world_process_start_time_seconds " in body


@pytest.mark.skipif(not os.path.isdir("/proc/self/fd"), reason="needs /proc")
async def test_metrics_expose_memory_and_file_descriptors(api_client) -> None:
    body = (await api_client.get("/metrics")).text

    values = dict(line.split(" ", 1) for line in body.splitlines() if not line.startswith("#"))
    assert float(values["mcp_hello_world_process_resident_memory_bytes"]) > 0
    assert float(values["mcp_hello_world_process_open_fds"]) > 0
