from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from mcp_hello_world.api.common import add_method_guard, get_metrics_registry
from mcp_hello_world.observability.metrics import CONTENT_TYPE, MetricsRegistry


router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def metrics(registry: MetricsRegistry = Depends(get_metrics_registry)) -> Response:
    return Response(content=registry.snapshot(), media_type=CONTENT_TYPE)


add_method_guard(router, "/metrics", allowed=["GET"], hint="Use GET for metrics.")
