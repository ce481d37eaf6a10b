"""Tests for structured logging configuration."""

import json
import logging
import sys

from erlc.core.logging import (
    ContextFilter,
    JSONFormatter,
    get_log_context,
    get_logger,
    get_logging_config,
)


def make_record(msg: str = "Fetched players", exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="erlc.test",
        level=logging.INFO,
        pathname="client.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    """Tests for JSONFormatter output."""

    def test_core_fields(self):
        """Core fields are always present."""
        output = JSONFormatter().format(make_record())
        data = json.loads(output)

        assert data["level"] == "INFO"
        assert data["logger"] == "erlc.test"
        assert data["message"] == "Fetched players"
        assert "timestamp" in data
        assert data["source"]["file"] == "client.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        """Test JSON formatting with request context fields."""
        record = make_record("Request failed")
        record.trace_id = "4bf92f3577b34da6a3ce929d0e0e4736"
        record.method = "GET"
        record.path = "/server/players"
        record.attempt = 2
        record.duration_ms = 87.25

        data = json.loads(JSONFormatter().format(record))

        assert data["trace_id"] == "4bf92f3577b34da6a3ce929d0e0e4736"
        assert data["method"] == "GET"
        assert data["path"] == "/server/players"
        assert data["attempt"] == 2
        assert data["duration_ms"] == 87.25

    def test_json_format_with_extra_fields(self):
        """Unknown attributes are grouped under "extra"."""
        record = make_record()
        record.server_name = "Test RP"

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"] == {"server_name": "Test RP"}

    def test_empty_context_fields_are_omitted(self):
        record = make_record()
        ContextFilter().filter(record)
        record.span_id = "-"

        data = json.loads(JSONFormatter().format(record))

        assert "trace_id" not in data
        assert "span_id" not in data
        assert "extra" not in data

    def test_json_format_with_exception(self):
        try:
            raise ValueError("bad payload")
        except ValueError:
            record = make_record("An error occurred", exc_info=sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        assert "exception" in data
        assert "ValueError: bad payload" in data["exception"]


class TestContextFilter:
    """Test context filter."""

    def test_adds_default_context(self):
        record = make_record()
        assert ContextFilter().filter(record) is True
        assert record.trace_id is None
        assert record.event_type is None

    def test_preserves_existing_context(self):
        record = make_record()
        record.trace_id = "existing"
        ContextFilter().filter(record)
        assert record.trace_id == "existing"


class TestLoggingConfig:
    """Tests for get_logging_config."""

    def test_text_format(self):
        config = get_logging_config(log_level="debug", log_format="text")

        assert config["handlers"]["console"]["formatter"] == "standard"
        assert config["handlers"]["console"]["level"] == "DEBUG"
        assert config["loggers"]["erlc"]["level"] == "DEBUG"
        assert "json" not in config["formatters"]

    def test_structured_format(self):
        config = get_logging_config(log_level="INFO", log_format="structured")

        assert config["handlers"]["console"]["formatter"] == "structured"
        assert "trace_id" in config["formatters"]["structured"]["format"]

    def test_json_format(self):
        config = get_logging_config(log_level="INFO", log_format="JSON")

        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["formatters"]["json"]["()"] == "erlc.core.logging.JSONFormatter"

    def test_httpx_logger_is_quiet(self):
        config = get_logging_config(log_level="DEBUG", log_format="text")
        assert config["loggers"]["httpx"]["level"] == "WARNING"

    def test_does_not_disable_existing_loggers(self):
        assert get_logging_config("INFO", "text")["disable_existing_loggers"] is False


class TestLogContext:
    """Test log context helpers."""

    def test_drops_empty_values(self):
        context = get_log_context(trace_id="abc", method="GET", path=None, attempt=1)
        assert context == {"trace_id": "abc", "method": "GET", "attempt": 1}

    def test_get_logger(self):
        assert get_logger().name == "erlc"
        assert get_logger("erlc.client").name == "erlc.client"
