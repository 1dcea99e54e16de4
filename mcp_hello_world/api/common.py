from __future__ import annotations

from fastapi import APIRouter, Request

from mcp_hello_world.api.errors import MethodNotAllowed
from mcp_hello_world.config import Settings
from mcp_hello_world.observability.context import RequestContext
from mcp_hello_world.observability.metrics import MetricsRegistry

ALL_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics_registry(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


def get_request_context(request: Request) -> RequestContext:
    return request.state.request_context


def add_method_guard(router: APIRouter, path: str, *, allowed: list[str], hint: str) -> None:
    """Answer every method outside ``allowed`` on ``path`` with a 405."""

    async def method_not_allowed() -> None:
        raise MethodNotAllowed(allowed, hint)

    router.add_api_route(
        path,
        method_not_allowed,
        methods=[m for m in ALL_METHODS if m not in allowed],
        include_in_schema=False,
    )
