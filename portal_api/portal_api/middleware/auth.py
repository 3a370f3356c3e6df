"""Bearer session authentication for the portal API.

A valid token yields a :class:`~portal_api.security.Principal` on
``request.state.principal``; anything else on a protected path is a 401.
Health, release metadata, the OpenAPI docs and the Stripe webhook are
public (the webhook authenticates by signature).
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from portal_api.security import TokenManager

logger = logging.getLogger(__name__)

PUBLIC_PATHS: frozenset[str] = frozenset(
    {"/api/v1/health", "/api/v1/releases/latest", "/api/v1/billing/webhooks", "/openapi.json", "/favicon.ico"}
)
PUBLIC_PREFIXES: tuple[str, ...] = ("/docs", "/redoc")


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def _reject(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"detail": detail, "authenticated": False},
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthenticationMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: Any, token_manager: TokenManager) -> None:
        super().__init__(app)
        self._token_manager = token_manager

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if is_public_path(request.url.path):
            return await call_next(request)

        header = request.headers.get("authorization")
        if not header:
            return _reject("Missing Authorization header")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return _reject("Authorization header must use Bearer scheme")

        try:
            request.state.principal = self._token_manager.validate(token.strip())
        except PermissionError as exc:
            logger.info("Rejected session token on %s: %s", request.url.path, exc)
            return _reject(f"Invalid token: {exc}")

        return await call_next(request)
