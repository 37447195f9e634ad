"""JSON log output, one object per line."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

# Attributes every LogRecord has; anything else came from extra= or a filter
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "workflow_tag",
}

_CONTEXT_IDS = ("session_id", "file_id")


class JSONFormatter(logging.Formatter):
    """Render records as JSON for log shipping.

    Keys: timestamp (ISO-8601 UTC), level, logger, message, and optionally
    context (session_id, file_id and any extra= fields) and exception.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        for key in _CONTEXT_IDS:
            if context.get(key) is None:
                context.pop(key, None)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)
