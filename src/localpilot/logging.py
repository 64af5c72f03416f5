"""
LocalPilot Structured Logging

Provides a configured logger for LocalPilot using stdlib logging
with structured context.

Usage:
    import logging

    logger = logging.getLogger(__name__)
    logger.info("Tool executed", extra={"session_id": "s-123", "tool_name": "file_reader"})

For machine-readable output, configure with JSON lines:
    from localpilot.logging import configure_logging
    configure_logging(json_output=True, level="INFO")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Structured context keys lifted from LogRecord extras, in display order.
CONTEXT_KEYS = (
    "session_id",
    "request_id",
    "tool_name",
    "server",
    "risk_tier",
    "state",
    "failure_reason",
    "provider",
    "duration_ms",
    "count",
)


class PilotFormatter(logging.Formatter):
    """Structured log formatter for LocalPilot.

    Outputs either human-readable or JSON format depending on configuration.
    """

    def __init__(self, json_output: bool = False):
        super().__init__()
        self._json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self._json_output:
            return json.dumps(log_data, default=str)

        extra_str = ""
        extra_keys = {
            k: v
            for k, v in log_data.items()
            if k not in ("timestamp", "level", "logger", "message", "exception")
        }
        if extra_keys:
            extra_str = " | " + " ".join(f"{k}={v}" for k, v in extra_keys.items())

        line = f"[{log_data['timestamp']}] {record.levelname:8s} {record.name}: {record.getMessage()}{extra_str}"
        if "exception" in log_data:
            line += "\n" + log_data["exception"]
        return line


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """Configure the ``localpilot`` logger hierarchy.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: If True, emit one JSON object per line.
    """
    root_logger = logging.getLogger("localpilot")
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(PilotFormatter(json_output=json_output))
    root_logger.addHandler(handler)

    root_logger.propagate = False


def get_logger(name: str = "localpilot") -> logging.Logger:
    """Get a LocalPilot logger instance.

    Args:
        name: Logger name (usually the module path, e.g. "localpilot.engine").
    """
    return logging.getLogger(name)
