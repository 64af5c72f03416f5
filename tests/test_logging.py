"""Tests for LocalPilot structured logging."""

import json
import logging

from localpilot.logging import PilotFormatter, configure_logging, get_logger


def make_record(name: str = "localpilot", msg: str = "Tool executed", level: int = logging.INFO):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestPilotFormatter:
    def test_human_readable_format(self):
        output = PilotFormatter(json_output=False).format(make_record(name="localpilot.engine"))
        assert "localpilot.engine" in output
        assert "Tool executed" in output
        assert "INFO" in output

    def test_json_format(self):
        record = make_record(name="localpilot.safety", msg="Approval requested", level=logging.WARNING)
        data = json.loads(PilotFormatter(json_output=True).format(record))
        assert data["logger"] == "localpilot.safety"
        assert data["message"] == "Approval requested"
        assert data["level"] == "WARNING"
        assert "timestamp" in data

    def test_context_fields_in_human_format(self):
        record = make_record()
        record.tool_name = "shell_executor"  # type: ignore[attr-defined]
        record.risk_tier = "DANGEROUS"  # type: ignore[attr-defined]
        output = PilotFormatter(json_output=False).format(record)
        assert "tool_name=shell_executor" in output
        assert "risk_tier=DANGEROUS" in output

    def test_context_fields_in_json(self):
        record = make_record()
        record.session_id = "s-1"  # type: ignore[attr-defined]
        record.duration_ms = 12.5  # type: ignore[attr-defined]
        data = json.loads(PilotFormatter(json_output=True).format(record))
        assert data["session_id"] == "s-1"
        assert data["duration_ms"] == 12.5

    def test_unknown_extras_are_not_emitted(self):
        record = make_record()
        record.api_key = "sk-secret"  # type: ignore[attr-defined]
        output = PilotFormatter(json_output=True).format(record)
        assert "sk-secret" not in output

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            import sys

            record = logging.LogRecord(
                name="localpilot",
                level=logging.ERROR,
                pathname="test.py",
                lineno=1,
                msg="failed",
                args=(),
                exc_info=sys.exc_info(),
            )
        data = json.loads(PilotFormatter(json_output=True).format(record))
        assert "ValueError: boom" in data["exception"]


class TestGetLogger:
    def test_returns_logger(self):
        logger = get_logger("localpilot.test")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "localpilot.test"

    def test_default_name(self):
        assert get_logger().name == "localpilot"


class TestConfigureLogging:
    def test_configure_info(self):
        configure_logging(level="INFO")
        assert get_logger("localpilot").level == logging.INFO

    def test_configure_debug(self):
        configure_logging(level="debug")
        assert get_logger("localpilot").level == logging.DEBUG

    def test_configure_json(self):
        configure_logging(json_output=True)
        logger = get_logger("localpilot")
        assert len(logger.handlers) == 1
        formatter = logger.handlers[0].formatter
        assert isinstance(formatter, PilotFormatter)
        assert formatter._json_output is True

    def test_reconfigure_replaces_handler(self):
        configure_logging()
        configure_logging()
        assert len(get_logger("localpilot").handlers) == 1
