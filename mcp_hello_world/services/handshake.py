"""One-shot MCP handshake over Server-Sent Events.

A handshake moves RECEIVED -> STREAMING -> CLOSED, or RECEIVED -> FAILED when
the envelope cannot be built. Exactly one ``data:`` frame is written; the
stream is closed by a timer armed only after that write has been handed to the
transport, so the frame can never be cut off by the close.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from enum import Enum

from fastapi.responses import JSONResponse, StreamingResponse
from starlette.responses import Response

from mcp_hello_world.config import Settings
from mcp_hello_world.models.schemas import (
    HandshakeEnvelope,
    HandshakeError,
    HandshakeRequest,
    HandshakeResult,
    RpcId,
)
from mcp_hello_world.observability.context import RequestContext
from mcp_hello_world.observability.metrics import HANDSHAKE_DURATION, HANDSHAKE_TOTAL, MetricsRegistry
from mcp_hello_world.timeutil import utc_now_iso

GREETING = "Hello, World"
SERVER_NAME = "mcp-hello-world"
PROTOCOL_VERSION = "0.1.0"
INSPECTOR_SIGNATURE = "mcp-inspector"
UNKNOWN_CLIENT = "unknown"
INTERNAL_ERROR_CODE = -32603

SSE_HEADERS = {
    "Cache-Control": "no-store",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
}


class HandshakeState(str, Enum):
    RECEIVED = "received"
    STREAMING = "streaming"
    CLOSED = "closed"
    FAILED = "failed"


_TRANSITIONS: dict[HandshakeState, frozenset[HandshakeState]] = {
    HandshakeState.RECEIVED: frozenset({HandshakeState.STREAMING, HandshakeState.FAILED}),
    HandshakeState.STREAMING: frozenset({HandshakeState.CLOSED}),
    HandshakeState.CLOSED: frozenset(),
    HandshakeState.FAILED: frozenset(),
}


def detect_client(user_agent: str | None) -> str:
    if user_agent and INSPECTOR_SIGNATURE in user_agent:
        return INSPECTOR_SIGNATURE
    return UNKNOWN_CLIENT


def format_sse_frame(envelope: HandshakeEnvelope) -> str:
    return f"data: {json.dumps(envelope.to_wire(), separators=(',', ':'))}\n\n"


def build_greeting(rpc_id: RpcId, *, version: str = PROTOCOL_VERSION) -> HandshakeEnvelope:
    return HandshakeEnvelope(
        id=rpc_id,
        result=HandshakeResult(
            message=GREETING,
            timestamp=utc_now_iso(),
            server=SERVER_NAME,
            version=version,
        ),
    )


class StreamCloser:
    """Cancellable timer that releases a waiting stream.

    ``close()`` may be called any number of times, before or after the timer
    fires; only the first call has an effect.
    """

    def __init__(self, delay: float) -> None:
        if delay <= 0:
            raise ValueError("Close delay must be positive")
        self._delay = delay
        self._released = asyncio.Event()
        self._handle: asyncio.TimerHandle | None = None

    @property
    def closed(self) -> bool:
        return self._released.is_set()

    @property
    def armed(self) -> bool:
        return self._handle is not None and not self.closed

    def arm(self) -> None:
        if self._handle is not None or self.closed:
            return
        self._handle = asyncio.get_running_loop().call_later(self._delay, self.close)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._released.set()

    async def wait(self) -> None:
        await self._released.wait()


class Handshake:
    """A single handshake exchange, from the parsed body to the closed stream."""

    def __init__(
        self,
        payload: HandshakeRequest | None,
        *,
        context: RequestContext,
        user_agent: str | None,
        metrics: MetricsRegistry,
        settings: Settings,
    ) -> None:
        self.state = HandshakeState.RECEIVED
        self.rpc_id: RpcId = payload.id if payload is not None else None
        self.client = detect_client(user_agent)
        self._context = context
        self._metrics = metrics
        self._settings = settings
        self._log = context.logger.bind(client=self.client)

    def _transition(self, target: HandshakeState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid handshake transition {self.state.value} -> {target.value}")
        self.state = target

    def _record(self, status: str) -> float:
        duration = self._context.elapsed()
        labels = {"client": self.client, "status": status}
        self._metrics.increment(HANDSHAKE_TOTAL, labels)
        self._metrics.observe(HANDSHAKE_DURATION, labels, duration)
        return duration

    def respond(self) -> Response:
        self._log.info("mcp.handshake.start", rpc_id=self.rpc_id)
        try:
            frame = format_sse_frame(build_greeting(self.rpc_id, version=self._settings.app_version))
        except Exception as exc:  # noqa: BLE001 - reported as a JSON-RPC internal error
            return self._fail(exc)

        return StreamingResponse(
            self._stream(frame),
            status_code=200,
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    async def _stream(self, frame: str) -> AsyncIterator[str]:
        self._transition(HandshakeState.STREAMING)
        closer = StreamCloser(self._settings.handshake_close_delay)
        try:
            yield frame
            # Resumed only once the frame has been handed to the server.
            duration = self._record("success")
            self._log.info(
                "mcp.handshake.success",
                latency_ms=round(duration * 1000.0, 2),
                duration_s=duration,
            )
            closer.arm()
            await closer.wait()
        finally:
            closer.close()
            self._transition(HandshakeState.CLOSED)

    def _fail(self, exc: Exception) -> JSONResponse:
        self._transition(HandshakeState.FAILED)
        duration = self._record("error")
        self._log.error(
            "mcp.handshake.error",
            error=str(exc),
            error_type=type(exc).__name__,
            duration_s=duration,
            exc_info=exc,
        )
        envelope = HandshakeEnvelope(
            id=self.rpc_id,
            error=HandshakeError(
                code=INTERNAL_ERROR_CODE,
                message="Internal error",
                data=(str(exc) or type(exc).__name__) if self._settings.diagnostics_enabled else None,
            ),
        )
        return JSONResponse(status_code=500, content=envelope.to_wire())
