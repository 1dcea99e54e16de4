from __future__ import annotations

import argparse

import uvicorn

from mcp_hello_world.config import get_settings
from mcp_hello_world.main import create_app


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="MCP hello-world streaming handshake server")
    parser.add_argument("--host", default=settings.host, help="Interface to bind (HOST)")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen on (PORT)")
    args = parser.parse_args()

    settings = settings.model_copy(update={"host": args.host, "port": args.port})
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        # Logging is configured by create_app; keep uvicorn from replacing it.
        log_config=None,
    )


if __name__ == "__main__":
    main()
