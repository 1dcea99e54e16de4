from __future__ import annotations

from typing import Any, Callable

from starlette.datastructures import Headers

from mcp_hello_world.api.errors import PayloadTooLarge


class BodySizeLimitMiddleware:
    """Fails request body reads with 413 once more than ``max_bytes`` arrive.

    A declared Content-Length over the limit fails the first read. Chunked
    bodies are counted as they stream in, so an oversized body is never
    buffered whole. The error is raised from ``receive``, inside the route, so
    the registered HTTP exception handler renders it.
    """

    def __init__(self, app: Callable[..., Any], *, max_bytes: int) -> None:
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        declared = Headers(scope=scope).get("content-length")
        oversized_declared = bool(declared and declared.isdigit() and int(declared) > self.max_bytes)
        received = 0

        async def limited_receive() -> dict[str, Any]:
            nonlocal received
            if oversized_declared:
                raise PayloadTooLarge(self.max_bytes)

            message = await receive()
            if message.get("type") == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    raise PayloadTooLarge(self.max_bytes)
            return message

        await self.app(scope, limited_receive, send)
