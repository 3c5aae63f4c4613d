# cmdhub/utils/logging.py
"""Structured logging with JSON format and request context.

Provides:
- JSON-formatted log output for structured logging
- Request correlation ID and operator ID via ContextVar for async-safe tracking
- Reconciliation fields (scope, action, command) passed through ``extra``
- Centralized logger configuration
"""

import json
import logging
from contextvars import ContextVar
from typing import Any

# Request correlation ID for tracking requests across async contexts
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
# Dashboard operator behind the current request (X-User-Id)
operator_var: ContextVar[str] = ContextVar("operator", default="")

# Record attributes copied into the JSON payload when present
EXTRA_FIELDS = ("scope", "action", "command")


def set_request_context(request_id: str, operator: str = "") -> None:
    """Set the correlation ID and operator for the current context.

    Args:
        request_id: Unique identifier for the request.
        operator: Who issued the request, empty if unknown.
    """
    request_id_var.set(request_id)
    operator_var.set(operator)


def get_request_id() -> str:
    """Get the request correlation ID for the current context.

    Returns:
        Current request ID, or empty string if not set.
    """
    return request_id_var.get()


def get_operator() -> str:
    return operator_var.get()


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON with timestamp, level, logger name,
    message, the request context and any reconciliation fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = get_request_id()
        if request_id:
            log_data["request_id"] = request_id
        operator = get_operator()
        if operator:
            log_data["operator"] = operator

        for name in EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def configure_structured_logging(level: int | str = logging.INFO) -> None:
    """Configure structured JSON logging for the application.

    Installs a StreamHandler with StructuredFormatter on the root logger.
    Calling it again only changes the level.

    Args:
        level: Logging level or level name (default: logging.INFO).
    """
    if any(isinstance(h.formatter, StructuredFormatter) for h in logging.root.handlers):
        logging.root.setLevel(level)
        return

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(level)
