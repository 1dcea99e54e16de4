"""Translate internal failures into the uniform wire error body.

Every error response leaves the service through ``ErrorReporter``: HTTP and
validation errors via the FastAPI exception handlers registered here, anything
else via ``RequestContextMiddleware``. Request counting for these responses is
done by the middleware's finalization, so nothing here touches the metrics.
"""

from __future__ import annotations

import traceback
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mcp_hello_world.observability.context import RequestContext

KNOWN_ROUTES = ("/mcp", "/healthz", "/metrics")


class MethodNotAllowed(StarletteHTTPException):
    def __init__(self, allowed_methods: list[str], hint: str) -> None:
        super().__init__(
            status_code=405,
            detail=f"Method Not Allowed. {hint}",
            headers={"Allow": ", ".join(allowed_methods)},
        )
        self.allowed_methods = list(allowed_methods)


class PayloadTooLarge(StarletteHTTPException):
    def __init__(self, limit: int) -> None:
        super().__init__(status_code=413, detail=f"Request body exceeds {limit} bytes")


class RateLimitExceeded(StarletteHTTPException):
    def __init__(self, retry_after: int) -> None:
        super().__init__(
            status_code=429,
            detail=f"Rate limit exceeded, retry in {retry_after} seconds",
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after


def resolve_status(exc: BaseException) -> int:
    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int) and 400 <= status_code <= 599:
        return status_code
    return 500


class ErrorReporter:
    def __init__(self, *, diagnostics: bool = False) -> None:
        self._diagnostics = diagnostics

    def render_exception(
        self,
        exc: BaseException,
        context: RequestContext | None,
        *,
        extra: dict[str, Any] | None = None,
    ) -> JSONResponse:
        status_code = resolve_status(exc)
        message = getattr(exc, "detail", None) or str(exc) or "Error"
        if not isinstance(message, str):
            message = str(message)

        error: dict[str, Any] = {
            "message": "Internal Server Error" if status_code >= 500 else message,
            "code": status_code,
        }
        if extra:
            error.update(extra)
        if self._diagnostics:
            error["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            error["details"] = message

        logger = context.logger if context is not None else structlog.get_logger("request")
        if status_code >= 500:
            logger.error(
                "request.failed",
                status_code=status_code,
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=exc,
            )
        else:
            logger.info("request.rejected", status_code=status_code, error=message)

        headers = dict(getattr(exc, "headers", None) or {})
        return JSONResponse(
            status_code=status_code,
            content={"error": error, "requestId": context.request_id if context is not None else None},
            headers=headers or None,
        )


def _request_context(request: Request) -> RequestContext | None:
    return getattr(request.state, "request_context", None)


def register_error_handlers(app: FastAPI, reporter: ErrorReporter) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        extra: dict[str, Any] = {}
        if exc.status_code == 404:
            extra = {"path": request.url.path, "suggestion": f"Try one of: {', '.join(KNOWN_ROUTES)}"}
        elif exc.status_code == 405:
            allowed = getattr(exc, "allowed_methods", None)
            if allowed is None:
                allow_header = (exc.headers or {}).get("Allow", "")
                allowed = sorted(m.strip() for m in allow_header.split(",") if m.strip())
            extra = {"allowed_methods": allowed}
        elif isinstance(exc, RateLimitExceeded):
            extra = {"retryAfter": exc.retry_after}
        return reporter.render_exception(exc, _request_context(request), extra=extra)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = "Invalid request body"
        if errors:
            message = f"{message}: {errors[0].get('msg', 'validation failed')}"
        client_error = StarletteHTTPException(status_code=400, detail=message)
        return reporter.render_exception(client_error, _request_context(request))
