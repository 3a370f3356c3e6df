"""Rate-limiting middleware: Redis fixed window per client IP.

Each request to a limited path prefix increments the counter
``rl:{scope}:{ip}:{bucket}`` where ``bucket`` is the index of the current
window.  The key gets an expiry on its first hit, so counters clean
themselves up.  Counters live in Redis, so every replica enforces the same
budget.

The limiter fails open: if Redis is unreachable (or not yet initialised)
the request is let through and a warning is logged.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field
from redis.asyncio import Redis
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class RateLimitConfig(BaseModel):
    """Rate-limiting configuration parameters.

    Attributes:
        enabled: Master toggle.  When ``False`` the middleware is a
            pass-through.
        requests: Request budget per client IP within one window.
        window_seconds: Window length.
        path_prefixes: Only paths starting with one of these are limited.
    """

    enabled: bool = True
    requests: int = Field(default=20, ge=1)
    window_seconds: int = Field(default=60, ge=1)
    path_prefixes: list[str] = Field(default_factory=lambda: ["/api/v1/admin"])


# ---------------------------------------------------------------------------
# Counter
# ---------------------------------------------------------------------------


class FixedWindowCounter:
    """Redis fixed-window counter.

    ``client_provider`` is called on every hit so the middleware can be
    constructed before the Redis client exists.
    """

    def __init__(self, client_provider: Callable[[], Redis | None], *, window_seconds: int) -> None:
        self._client_provider = client_provider
        self._window_seconds = window_seconds

    def key_for(self, scope: str, ip: str, now: float | None = None) -> str:
        bucket = int((now if now is not None else time.time()) // self._window_seconds)
        return f"rl:{scope}:{ip}:{bucket}"

    async def hit(self, key: str) -> int | None:
        """Increment *key* and return the new count, or ``None`` if Redis is unavailable."""
        client = self._client_provider()
        if client is None:
            return None
        try:
            count = await client.incr(key)
            if int(count) == 1:
                await client.expire(key, self._window_seconds)
        except RedisError as exc:
            logger.warning("Rate limiter unavailable for %s: %s", key, exc)
            return None
        return int(count)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _scope_for(prefix: str) -> str:
    """``/api/v1/billing/checkout`` -> ``checkout``."""
    return prefix.rstrip("/").rsplit("/", 1)[-1] or "root"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Starlette middleware enforcing per-IP fixed-window limits.

    Responses on limited paths carry ``X-RateLimit-Limit`` and
    ``X-RateLimit-Remaining``; an exceeded budget answers ``429`` with a
    ``Retry-After`` header.
    """

    def __init__(
        self,
        app: Any,
        config: RateLimitConfig | None = None,
        client_provider: Callable[[], Redis | None] | None = None,
    ) -> None:
        super().__init__(app)
        self._config: RateLimitConfig = config or RateLimitConfig()
        self._counter = FixedWindowCounter(
            client_provider or (lambda: None),
            window_seconds=self._config.window_seconds,
        )
        logger.info(
            "RateLimitMiddleware initialised (enabled=%s, limit=%d/%ds)",
            self._config.enabled,
            self._config.requests,
            self._config.window_seconds,
        )

    def _matching_prefix(self, path: str) -> str | None:
        for prefix in self._config.path_prefixes:
            if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
                return prefix
        return None

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._config.enabled:
            return await call_next(request)

        prefix = self._matching_prefix(request.url.path)
        if prefix is None:
            return await call_next(request)

        ip = request.client.host if request.client else "unknown"
        now = time.time()
        key = self._counter.key_for(_scope_for(prefix), ip, now)
        count = await self._counter.hit(key)
        if count is None:
            return await call_next(request)

        limit = self._config.requests
        if count > limit:
            window = self._config.window_seconds
            retry_after = max(int(window - (now % window)), 1)
            logger.warning(
                "Rate limit exceeded: ip=%s path=%s count=%d limit=%d",
                ip,
                request.url.path,
                count,
                limit,
            )
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later.", "retry_after": retry_after},
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(limit - count, 0))
        return response
