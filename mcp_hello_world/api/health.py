from __future__ import annotations

from time import perf_counter

from fastapi import APIRouter, Request

from mcp_hello_world.api.common import add_method_guard, get_app_settings
from mcp_hello_world.models.schemas import HealthResponse
from mcp_hello_world.timeutil import utc_now_iso

router = APIRouter(tags=["health"])


@router.get("/healthz", response_model=HealthResponse)
async def healthz(request: Request) -> HealthResponse:
    uptime = perf_counter() - request.app.state.started_at
    return HealthResponse(
        uptime_s=max(0, int(uptime)),
        timestamp=utc_now_iso(),
        version=get_app_settings(request).app_version,
    )


add_method_guard(router, "/healthz", allowed=["GET"], hint="Use GET for health checks.")
