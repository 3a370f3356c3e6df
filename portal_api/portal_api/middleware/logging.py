"""Request logging with a per-request correlation id.

The correlation id comes from the ``X-Correlation-ID`` header (or a fresh
UUID-4), is echoed on the response and is held in a context variable for
the duration of the request.  :class:`CorrelationIdFilter` copies it onto
every log record, so webhook and entitlement logs emitted deep inside a
request can be joined with the access line written here.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("portal.access")

CORRELATION_HEADER = "X-Correlation-ID"

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


class CorrelationIdFilter(logging.Filter):
    """Stamp ``record.correlation_id`` from the current request, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "correlation_id", None) is None:
            record.correlation_id = correlation_id_var.get()
        return True


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Write one access line per request.

    The line carries method, path, status and duration plus the caller's
    tenant when the session was authenticated.  Header values are never
    logged; the Stripe signature and session token stay out of log storage.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        token = correlation_id_var.set(correlation_id)
        start = time.monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            principal = getattr(request.state, "principal", None)
            context: dict[str, Any] = {
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
                "client": request.client.host if request.client else None,
                "tenant_id": getattr(principal, "tenant_id", None),
            }
            logger.log(
                _level_for(status_code),
                "%s %s -> %d",
                request.method,
                request.url.path,
                status_code,
                extra={"request": context, "correlation_id": correlation_id},
            )
            correlation_id_var.reset(token)
