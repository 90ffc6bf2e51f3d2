"""Tests for certomat.logging.setup."""

from __future__ import annotations

import json
import logging
import sys

from flask import Flask, g

from certomat.config.settings import LoggingSettings
from certomat.logging.setup import (
    RequestContextFilter,
    StructuredFormatter,
    TextFormatter,
    configure_logging,
)


def _record(msg="hello %s", args=("world",), level=logging.INFO, **extra):
    record = logging.LogRecord("certomat.test", level, __file__, 10, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ===========================================================================
# Formatters
# ===========================================================================


class TestStructuredFormatter:
    def test_standard_fields(self):
        data = json.loads(StructuredFormatter().format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "certomat.test"
        assert data["message"] == "hello world"
        assert "timestamp" in data

    def test_context_fields_included_when_set(self):
        record = _record(request_id="abc", client_ip="10.0.0.1", method="POST", path="/")
        data = json.loads(StructuredFormatter().format(record))
        assert data["request_id"] == "abc"
        assert data["client_ip"] == "10.0.0.1"
        assert data["method"] == "POST"
        assert data["path"] == "/"

    def test_missing_context_fields_omitted(self):
        data = json.loads(StructuredFormatter().format(_record()))
        assert "request_id" not in data
        assert "method" not in data

    def test_extra_fields(self):
        record = _record(host="www.example.com", status=200, duration_ms=1.5)
        data = json.loads(StructuredFormatter().format(record))
        assert data["host"] == "www.example.com"
        assert data["status"] == 200
        assert data["duration_ms"] == 1.5

    def test_private_attributes_skipped(self):
        data = json.loads(StructuredFormatter().format(_record(_secret="x")))
        assert "_secret" not in data

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()
        data = json.loads(StructuredFormatter().format(record))
        assert "ValueError: boom" in data["exception"]

    def test_unserializable_extra_is_stringified(self):
        data = json.loads(StructuredFormatter().format(_record(obj=object())))
        assert data["obj"].startswith("<object object")


class TestTextFormatter:
    def test_format_line(self):
        record = _record(request_id="rid", client_ip="127.0.0.1")
        line = TextFormatter().format(record)
        assert "INFO" in line
        assert "[rid]" in line
        assert "127.0.0.1" in line
        assert line.endswith("certomat.test: hello world")


# ===========================================================================
# RequestContextFilter
# ===========================================================================


class TestRequestContextFilter:
    def test_defaults_outside_request(self):
        record = _record()
        assert RequestContextFilter().filter(record) is True
        assert record.request_id == "-"
        assert record.client_ip == "-"
        assert record.method is None
        assert record.path is None

    def test_existing_values_kept(self):
        record = _record(request_id="given")
        RequestContextFilter().filter(record)
        assert record.request_id == "given"

    def test_request_context(self):
        app = Flask(__name__)
        with app.test_request_context(
            "/issue",
            method="POST",
            environ_base={"REMOTE_ADDR": "192.0.2.7"},
        ):
            g.request_id = "req-1"
            record = _record()
            RequestContextFilter().filter(record)
        assert record.request_id == "req-1"
        assert record.client_ip == "192.0.2.7"
        assert record.method == "POST"
        assert record.path == "/issue"


# ===========================================================================
# configure_logging
# ===========================================================================


class TestConfigureLogging:
    def test_sets_level_and_single_handler(self):
        root = configure_logging(LoggingSettings(level="DEBUG", format="text"))
        assert root.name == "certomat"
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert root.propagate is False
        assert isinstance(root.handlers[0].formatter, TextFormatter)

    def test_json_format(self):
        root = configure_logging(LoggingSettings(level="INFO", format="json"))
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)

    def test_handler_has_context_filter(self):
        root = configure_logging(LoggingSettings(level="INFO", format="text"))
        assert any(isinstance(f, RequestContextFilter) for f in root.handlers[0].filters)

    def test_repeated_calls_do_not_stack_handlers(self):
        configure_logging(LoggingSettings(level="INFO", format="text"))
        root = configure_logging(LoggingSettings(level="INFO", format="text"))
        assert len(root.handlers) == 1

    def test_unknown_level_falls_back_to_info(self):
        root = configure_logging(LoggingSettings(level="CHATTY", format="text"))
        assert root.level == logging.INFO

    def test_agent_logger_stays_at_info(self):
        configure_logging(LoggingSettings(level="WARNING", format="text"))
        assert logging.getLogger("certomat.agent").level == logging.INFO
        assert logging.getLogger("certomat.access").level == logging.INFO

    def test_agent_logger_follows_debug(self):
        configure_logging(LoggingSettings(level="DEBUG", format="text"))
        assert logging.getLogger("certomat.agent").level == logging.DEBUG

    def test_quietens_third_party(self):
        configure_logging(LoggingSettings(level="DEBUG", format="text"))
        assert logging.getLogger("werkzeug").level == logging.WARNING
