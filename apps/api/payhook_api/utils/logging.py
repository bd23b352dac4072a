"""Structured JSON logging utilities.

- JSON format for log aggregation
- Includes request_id, provider and payment_id from context variables
- Standard fields: timestamp, level, message, module, func, line
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from payhook_api.context import payment_id_var, provider_var, request_id_var
from payhook_api.utils.sanitize import sanitize_exc, sanitize_obj, sanitize_str

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS: frozenset[str] = frozenset({
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
})


class JSONFormatter(logging.Formatter):
    """JSON log formatter with request context.

    Formats log records as JSON with standard fields:
    - timestamp: ISO 8601 UTC
    - level: log level (INFO, ERROR, etc.)
    - message: log message
    - module / func / line: call site
    - request_id, provider, payment_id: from context variables (if set)
    - any extra kwargs, sanitized
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": sanitize_str(record.getMessage()),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }

        for key, var in (
            ("request_id", request_id_var),
            ("provider", provider_var),
            ("payment_id", payment_id_var),
        ):
            value = var.get()
            if value:
                log_data[key] = value

        if record.exc_info:
            log_data["exc_info"] = sanitize_exc(record.exc_info)

        # Explicit extras win over context values
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = sanitize_obj(value)

        return json.dumps(log_data, default=str)


def configure_json_logging(log_level: str = "INFO") -> None:
    """Configure root logger with JSON formatter.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level.upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)
