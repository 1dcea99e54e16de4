import asyncio
import json

import pytest
from pydantic import ValidationError
from starlette.datastructures import Headers

from mcp_hello_world.config import Settings
from mcp_hello_world.models.schemas import HandshakeEnvelope, HandshakeError, HandshakeRequest
from mcp_hello_world.observability.context import DeploymentMetadata, build_request_context
from mcp_hello_world.observability.metrics import MetricsRegistry, register_service_metrics
from mcp_hello_world.services.handshake import (
    Handshake,
    HandshakeState,
    StreamCloser,
    build_greeting,
    detect_client,
    format_sse_frame,
)


def _handshake(payload: HandshakeRequest | None, user_agent: str | None = None) -> Handshake:
    context = build_request_context(
        Headers(headers={}),
        header_name="x-request-id",
        method="POST",
        path="/mcp",
        deployment=DeploymentMetadata(),
    )
    return Handshake(
        payload,
        context=context,
        user_agent=user_agent,
        metrics=register_service_metrics(MetricsRegistry()),
        settings=Settings(HANDSHAKE_CLOSE_DELAY_MS=5),
    )


@pytest.mark.parametrize(
    ("user_agent", "expected"),
    [
        ("mcp-inspector/1.0.0", "mcp-inspector"),
        ("node-fetch mcp-inspector", "mcp-inspector"),
        ("MCP-Inspector/1.0.0", "unknown"),
        ("curl/8.0", "unknown"),
        (None, "unknown"),
    ],
)
def test_detect_client(user_agent, expected) -> None:
    assert detect_client(user_agent) == expected


def test_sse_frame_format() -> None:
    frame = format_sse_frame(build_greeting(3))

    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    assert frame.count("\n") == 2
    payload = json.loads(frame[len("data: ") :])
    assert payload["id"] == 3
    assert payload["result"]["message"] == "Hello, World"


def test_envelope_requires_exactly_one_outcome() -> None:
    with pytest.raises(ValidationError):
        HandshakeEnvelope(id=1)
    with pytest.raises(ValidationError):
        HandshakeEnvelope(
            id=1,
            result=build_greeting(1).result,
            error=HandshakeError(code=-32603, message="Internal error"),
        )


def test_error_envelope_omits_data_when_absent() -> None:
    envelope = HandshakeEnvelope(id=None, error=HandshakeError(code=-32603, message="Internal error"))
    assert envelope.to_wire() == {"jsonrpc": "2.0", "id": None, "error": {"code": -32603, "message": "Internal error"}}


def test_id_defaults_to_null() -> None:
    assert _handshake(None).rpc_id is None
    assert _handshake(HandshakeRequest()).rpc_id is None
    assert _handshake(HandshakeRequest(id=0)).rpc_id == 0


async def test_stream_moves_through_states_and_closes() -> None:
    handshake = _handshake(HandshakeRequest(id=1))
    assert handshake.state is HandshakeState.RECEIVED

    response = handshake.respond()
    chunks = [chunk async for chunk in response.body_iterator]

    assert len(chunks) == 1
    assert chunks[0].startswith("data: ")
    assert handshake.state is HandshakeState.CLOSED


async def test_cancelled_stream_closes_quietly() -> None:
    handshake = _handshake(HandshakeRequest(id=1))
    stream = handshake.respond().body_iterator

    assert (await stream.__anext__()).startswith("data: ")
    waiting = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0)
    waiting.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiting

    assert handshake.state is HandshakeState.CLOSED


def test_failed_handshake_cannot_stream() -> None:
    handshake = _handshake(None)
    handshake._fail(RuntimeError("boom"))

    assert handshake.state is HandshakeState.FAILED
    with pytest.raises(RuntimeError):
        handshake._transition(HandshakeState.STREAMING)


async def test_stream_closer_fires_after_delay() -> None:
    closer = StreamCloser(0.01)
    closer.arm()
    assert closer.armed

    await asyncio.wait_for(closer.wait(), timeout=1)
    assert closer.closed
    assert not closer.armed


async def test_stream_closer_close_is_idempotent() -> None:
    closer = StreamCloser(10)
    closer.arm()
    closer.close()
    closer.close()
    closer.arm()

    assert closer.closed
    await asyncio.wait_for(closer.wait(), timeout=1)


def test_stream_closer_requires_positive_delay() -> None:
    with pytest.raises(ValueError):
        StreamCloser(0)
