"""JSON log formatter.

Emits each log record as a single-line JSON object so log aggregators
can index fields without regex parsing.  Enabled with
``PORTLIO_STRUCTURED_LOGGING=true``.

Output schema per line::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "portlio_api.access",
        "message": "request completed",
        "correlation_id": "...",  // present when emitted by RequestLoggingMiddleware
        "request": { ... },
        "exc_info": "Traceback ..."
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_data = getattr(record, "request", None)
        if request_data is not None:
            payload["request"] = request_data
            correlation_id = request_data.get("correlation_id") if isinstance(request_data, dict) else None
            if correlation_id:
                payload["correlation_id"] = correlation_id

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)
