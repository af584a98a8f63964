"""Structured JSON logging module.

This module provides JSON-formatted logging with request context tracking
for the classifier service and a plain-text variant for the CLI.

Author: Matthew Hong
"""

import json
import logging
import sys
from contextvars import ContextVar
from typing import Any, TextIO

# Context variable for thread-safe request ID tracking
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

EXTRA_FIELDS = (
    "endpoint",
    "latency_ms",
    "status_code",
    "model",
    "label",
    "confidence",
    "fallback_used",
    "port",
)

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Formats log records as JSON objects with standardized fields:
    - timestamp: ISO format timestamp
    - level: Log level (INFO, WARNING, ERROR, etc.)
    - logger: Logger name
    - message: Log message
    - request_id: Optional request context ID
    - endpoint, latency_ms, status_code, model, label, confidence,
      fallback_used: Optional extra fields
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string representation
        """
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Setup logging for the application.

    Configures the root logger with a single stream handler using either the
    JSON formatter or a plain-text format.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON output (plain text when False)
        stream: Output stream (default: stdout)
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
