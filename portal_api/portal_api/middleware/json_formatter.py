"""Single-line JSON log output, enabled with ``PORTAL_STRUCTURED_LOGGING=true``.

Besides the standard fields, a record carries any of the context attributes
in ``CONTEXT_FIELDS`` that were attached through ``extra=`` or by
:class:`~portal_api.middleware.logging.CorrelationIdFilter`.
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

CONTEXT_FIELDS: tuple[str, ...] = ("correlation_id", "tenant_id", "event_id", "event_type", "request")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)
