"""
Structured Logging Module
One JSON object per log line, selected with LOG_FORMAT=json

Useful when the daily sweep runs from cron and its output is shipped
somewhere else: every saved receipt and every skip can be queried with jq
instead of grepping free-form text.
"""

import json
import logging
from typing import Any, Dict

REDACTED = "[REDACTED]"


class JSONFormatter(logging.Formatter):
    """
    Render log records as JSON

    Context is attached with ``extra={"extra_fields": {...}}``. Any key that
    contains one of SENSITIVE_FIELDS is written as "[REDACTED]", so a
    careless log call cannot leak the app password or a webhook URL.
    """

    SENSITIVE_FIELDS = (
        "password", "token", "secret", "credential", "api_key",
        "webhook",
    )

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key, value in getattr(record, "extra_fields", {}).items():
            entry[key] = REDACTED if self._is_sensitive(key) else value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # json.dumps escapes control characters, so a message stays on one line
        return json.dumps(entry, default=str)

    def _is_sensitive(self, key: str) -> bool:
        lowered = key.lower()
        return any(marker in lowered for marker in self.SENSITIVE_FIELDS)
