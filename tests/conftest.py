from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from mcp_hello_world.config import Settings, get_settings
from mcp_hello_world.main import create_app

_ENV_VARS = (
    "NODE_ENV",
    "LOG_LEVEL",
    "REGION",
    "BUILD_SHA",
    "INSTANCE_ID",
    "K_SERVICE",
    "REQUEST_ID_HEADER",
    "HANDSHAKE_CLOSE_DELAY_MS",
    "MAX_BODY_BYTES",
    "RATE_LIMIT_ENABLED",
    "RATE_LIMIT_REQUESTS",
    "RATE_LIMIT_WINDOW_SECONDS",
)


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep the handshake's close grace period short so streaming tests stay fast.
    monkeypatch.setenv("HANDSHAKE_CLOSE_DELAY_MS", "10")
    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def app(settings: Settings) -> FastAPI:
    return create_app(settings)


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
