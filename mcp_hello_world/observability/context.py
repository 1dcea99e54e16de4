"""Per-request correlation context: request id, deployment metadata and a bound logger."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any

import structlog

from mcp_hello_world.config import Settings


@dataclass(frozen=True)
class DeploymentMetadata:
    region: str = "unknown"
    build_sha: str = "dev"
    instance_id: str = "local"

    @classmethod
    def from_settings(cls, settings: Settings) -> DeploymentMetadata:
        return cls(region=settings.region, build_sha=settings.build_sha, instance_id=settings.instance_id)

    def as_log_context(self) -> dict[str, str]:
        return {"region": self.region, "build_sha": self.build_sha, "instance_id": self.instance_id}


@dataclass(frozen=True)
class RequestContext:
    request_id: str
    method: str
    path: str
    started_at: float
    deployment: DeploymentMetadata
    logger: Any = field(repr=False, compare=False)

    def elapsed(self) -> float:
        return perf_counter() - self.started_at


def resolve_request_id(headers: Mapping[str, str], header_name: str) -> str:
    """Return the inbound correlation id verbatim, or a fresh UUID4 when absent or empty."""

    inbound = headers.get(header_name) if header_name else None
    if inbound:
        return inbound
    return str(uuid.uuid4())


def build_request_context(
    headers: Mapping[str, str],
    *,
    header_name: str,
    method: str,
    path: str,
    deployment: DeploymentMetadata,
) -> RequestContext:
    request_id = resolve_request_id(headers, header_name)
    logger = structlog.get_logger("request").bind(request_id=request_id, **deployment.as_log_context())
    return RequestContext(
        request_id=request_id,
        method=method,
        path=path,
        started_at=perf_counter(),
        deployment=deployment,
        logger=logger,
    )
