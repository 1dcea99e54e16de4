"""FastAPI application entrypoint."""

from __future__ import annotations

import platform
from contextlib import asynccontextmanager
from time import perf_counter

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mcp_hello_world.api.errors import ErrorReporter, register_error_handlers
from mcp_hello_world.api.health import router as health_router
from mcp_hello_world.api.mcp import router as mcp_router
from mcp_hello_world.api.metrics import router as metrics_router
from mcp_hello_world.config import Settings, get_settings
from mcp_hello_world.observability.context import DeploymentMetadata
from mcp_hello_world.observability.logging import configure_logging
from mcp_hello_world.observability.metrics import MetricsRegistry, register_service_metrics
from mcp_hello_world.observability.middleware import RequestContextMiddleware
from mcp_hello_world.security.body_limit import BodySizeLimitMiddleware
from mcp_hello_world.security.rate_limiter import RateLimiter, enforce_rate_limit

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger.info(
        "server.start",
        address=f"http://{settings.host}:{settings.port}",
        environment=settings.environment,
        python_version=platform.python_version(),
        **app.state.deployment.as_log_context(),
    )
    try:
        yield
    finally:
        logger.info("server.stop", uptime_s=round(perf_counter() - app.state.started_at, 3))


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    configure_logging(settings.log_level)

    started_at = perf_counter()
    registry = register_service_metrics(
        MetricsRegistry(),
        started_at=started_at,
        cold_start=bool(settings.k_service),
    )
    deployment = DeploymentMetadata.from_settings(settings)
    reporter = ErrorReporter(diagnostics=settings.diagnostics_enabled)

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
        dependencies=[Depends(enforce_rate_limit)],
    )
    application.state.settings = settings
    application.state.metrics = registry
    application.state.deployment = deployment
    application.state.started_at = started_at
    application.state.rate_limiter = RateLimiter(settings=settings)

    register_error_handlers(application, reporter)
    application.include_router(health_router)
    application.include_router(metrics_router)
    application.include_router(mcp_router)

    application.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_body_bytes)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        allow_credentials=False,
        expose_headers=[settings.request_id_header],
    )
    # Added last so it wraps CORS preflights too.
    application.add_middleware(
        RequestContextMiddleware,
        metrics=registry,
        reporter=reporter,
        deployment=deployment,
        request_id_header=settings.request_id_header,
    )

    return application
