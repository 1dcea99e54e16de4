import structlog
from starlette.datastructures import Headers

from mcp_hello_world.config import Settings
from mcp_hello_world.observability.context import (
    DeploymentMetadata,
    build_request_context,
    resolve_request_id,
)


def test_inbound_request_id_is_used_verbatim() -> None:
    headers = Headers(headers={"X-Request-ID": "  test-request-123"})
    assert resolve_request_id(headers, "x-request-id") == "  test-request-123"


def test_missing_or_empty_request_id_generates_distinct_ids() -> None:
    empty = Headers(headers={"x-request-id": ""})
    first = resolve_request_id(empty, "x-request-id")
    second = resolve_request_id(Headers(headers={}), "x-request-id")

    assert first and second
    assert first != second
    assert len(first) == 36


def test_deployment_metadata_defaults() -> None:
    metadata = DeploymentMetadata.from_settings(Settings())
    assert metadata == DeploymentMetadata(region="unknown", build_sha="dev", instance_id="local")


def test_deployment_metadata_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("REGION", "us-central1")
    monkeypatch.setenv("BUILD_SHA", "abc123")
    monkeypatch.setenv("INSTANCE_ID", "instance-456")

    metadata = DeploymentMetadata.from_settings(Settings())
    assert metadata.as_log_context() == {
        "region": "us-central1",
        "build_sha": "abc123",
        "instance_id": "instance-456",
    }


def test_request_logger_carries_correlation_and_deployment_fields() -> None:
    deployment = DeploymentMetadata(region="eu-west1", build_sha="f00d", instance_id="i-1")

    with structlog.testing.capture_logs() as logs:
        context = build_request_context(
            Headers(headers={"x-request-id": "req-42"}),
            header_name="x-request-id",
            method="POST",
            path="/mcp",
            deployment=deployment,
        )
        context.logger.info("hello")

    assert context.request_id == "req-42"
    assert context.method == "POST"
    assert context.elapsed() >= 0
    assert logs == [
        {
            "event": "hello",
            "log_level": "info",
            "request_id": "req-42",
            "region": "eu-west1",
            "build_sha": "f00d",
            "instance_id": "i-1",
        }
    ]
