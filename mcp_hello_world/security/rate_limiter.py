"""In-process token-bucket rate limiting keyed by client address."""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable

from fastapi import Request

from mcp_hello_world.api.errors import RateLimitExceeded
from mcp_hello_world.config import Settings


@dataclass
class _TokenBucket:
    tokens: float
    last_refill: float


class RateLimiter:
    """Allows ``rate_limit_requests`` per window per client, refilled continuously."""

    def __init__(self, *, settings: Settings, clock: Callable[[], float] = time.monotonic) -> None:
        self.enabled = settings.rate_limit_enabled
        self._capacity = float(settings.rate_limit_requests)
        window = float(settings.rate_limit_window_seconds)
        self._refill_rate = self._capacity / window
        self._bucket_ttl = window * 5
        self._clock = clock
        self._lock = asyncio.Lock()
        self._buckets: dict[str, _TokenBucket] = {}

    async def acquire(self, identifier: str) -> tuple[bool, float]:
        """Consume one token for ``identifier``; returns ``(allowed, retry_after_seconds)``."""

        if not self.enabled:
            return True, 0.0

        now = self._clock()
        async with self._lock:
            bucket = self._buckets.get(identifier)
            if bucket is None:
                bucket = _TokenBucket(tokens=self._capacity, last_refill=now)
            else:
                elapsed = max(0.0, now - bucket.last_refill)
                bucket.tokens = min(self._capacity, bucket.tokens + elapsed * self._refill_rate)
                bucket.last_refill = now

            allowed = bucket.tokens >= 1.0
            if allowed:
                bucket.tokens -= 1.0
            self._buckets[identifier] = bucket
            self._cleanup_locked(now)

            if allowed:
                return True, 0.0
            return False, (1.0 - bucket.tokens) / self._refill_rate

    def _cleanup_locked(self, now: float) -> None:
        expired = [key for key, bucket in self._buckets.items() if now - bucket.last_refill > self._bucket_ttl]
        for key in expired:
            self._buckets.pop(key, None)


def client_identifier(request: Request) -> str:
    client = request.client
    return (client.host if client else None) or "anonymous"


async def enforce_rate_limit(request: Request) -> None:
    """FastAPI dependency that rejects requests once the client's quota is exhausted."""

    limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is None or not limiter.enabled:
        return

    allowed, retry_after = await limiter.acquire(client_identifier(request))
    if not allowed:
        raise RateLimitExceeded(max(1, math.ceil(retry_after)))
