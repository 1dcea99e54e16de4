from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import Response

from mcp_hello_world.api.common import (
    add_method_guard,
    get_app_settings,
    get_metrics_registry,
    get_request_context,
)
from mcp_hello_world.config import Settings
from mcp_hello_world.models.schemas import HandshakeRequest
from mcp_hello_world.observability.context import RequestContext
from mcp_hello_world.observability.metrics import MetricsRegistry
from mcp_hello_world.services.handshake import Handshake

router = APIRouter(tags=["mcp"])

_ALLOWED = ["POST", "OPTIONS"]


@router.post("/mcp")
async def mcp_handshake(
    request: Request,
    payload: HandshakeRequest | None = Body(default=None),
    context: RequestContext = Depends(get_request_context),
    registry: MetricsRegistry = Depends(get_metrics_registry),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    handshake = Handshake(
        payload,
        context=context,
        user_agent=request.headers.get("user-agent"),
        metrics=registry,
        settings=settings,
    )
    return handshake.respond()


@router.options("/mcp", include_in_schema=False)
async def mcp_options() -> Response:
    # Browsers' CORS preflights are answered by CORSMiddleware before reaching this.
    return Response(status_code=204, headers={"Allow": ", ".join(_ALLOWED)})


add_method_guard(router, "/mcp", allowed=_ALLOWED, hint="Use POST for MCP requests.")
