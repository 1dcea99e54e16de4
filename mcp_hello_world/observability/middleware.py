from __future__ import annotations

from time import perf_counter
from typing import TYPE_CHECKING, Any, Callable

import structlog
from starlette.datastructures import Headers, MutableHeaders

from mcp_hello_world.observability.context import DeploymentMetadata, build_request_context
from mcp_hello_world.observability.metrics import (
    HTTP_REQUEST_DURATION,
    HTTP_REQUESTS_TOTAL,
    MetricsRegistry,
)

if TYPE_CHECKING:
    from mcp_hello_world.api.errors import ErrorReporter


_SECURITY_HEADERS = {
    "x-content-type-options": "nosniff",
    "x-frame-options": "SAMEORIGIN",
}


def resolve_route(scope: dict[str, Any]) -> str:
    """Route template of the matched endpoint, ``unknown`` when routing found nothing."""

    route = scope.get("route")
    path = getattr(route, "path", None)
    return path or "unknown"


class RequestContextMiddleware:
    """Adds request_id context, access logs, and HTTP metrics.

    Finalization (metrics + access log) runs exactly once per request, after the
    response has been handed to the server or the request was abandoned.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        *,
        metrics: MetricsRegistry,
        reporter: ErrorReporter,
        deployment: DeploymentMetadata,
        request_id_header: str = "x-request-id",
    ) -> None:
        self.app = app
        self._metrics = metrics
        self._reporter = reporter
        self._deployment = deployment
        self._request_id_header = request_id_header.lower()

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "GET")
        path = scope.get("path", "")
        context = build_request_context(
            Headers(scope=scope),
            header_name=self._request_id_header,
            method=method,
            path=path,
            deployment=self._deployment,
        )
        scope.setdefault("state", {})["request_context"] = context

        structlog.contextvars.bind_contextvars(
            request_id=context.request_id,
            path=path,
            method=method,
        )

        status_code: int = 500
        response_started = False

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code, response_started

            if message.get("type") == "http.response.start":
                response_started = True
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers[self._request_id_header] = context.request_id
                for name, value in _SECURITY_HEADERS.items():
                    if name not in headers:
                        headers[name] = value

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            if response_started:
                context.logger.exception("request.aborted", status_code=status_code)
                raise
            response = self._reporter.render_exception(exc, context)
            await response(scope, receive, send_wrapper)
        finally:
            elapsed = perf_counter() - context.started_at
            labels = {"method": method, "route": resolve_route(scope), "status_code": str(status_code)}

            # Update metrics first so they update even if logging misbehaves.
            self._metrics.increment(HTTP_REQUESTS_TOTAL, labels)
            self._metrics.observe(HTTP_REQUEST_DURATION, labels, elapsed)

            structlog.get_logger("access").info(
                "http_request",
                route=labels["route"],
                status_code=status_code,
                elapsed_ms=round(elapsed * 1000.0, 2),
            )

            structlog.contextvars.clear_contextvars()
