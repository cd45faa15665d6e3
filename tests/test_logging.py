"""Tests for logging setup and context propagation."""

import json
import logging
import sys

import pytest

from stepflow.core.logging import (
    StructuredFormatter,
    TraceContextFilter,
    clear_logging_context,
    get_logging_context,
    logging_context,
    set_logging_context,
    setup_logging,
)


@pytest.fixture(autouse=True)
def clean_context():
    clear_logging_context()
    yield
    clear_logging_context()


def make_record(message="hello", **extra_fields):
    record = logging.LogRecord("stepflow.test", logging.INFO, __file__, 10, message, None, None)
    if extra_fields:
        record.extra_fields = extra_fields
    return record


class TestContext:

    def test_logging_context_restores_previous_fields(self):
        set_logging_context(request_id="req-1")

        with logging_context(trace_id="trace-1"):
            assert get_logging_context() == {"request_id": "req-1", "trace_id": "trace-1"}

        assert get_logging_context() == {"request_id": "req-1"}

    def test_logging_context_restores_after_error(self):
        with pytest.raises(RuntimeError):
            with logging_context(trace_id="trace-1"):
                raise RuntimeError("boom")

        assert get_logging_context() == {}

    def test_filter_merges_explicit_fields_over_context(self):
        context_filter = TraceContextFilter()
        context_filter.set_context(trace_id="trace-1", request_id="req-1")
        record = make_record(request_id="req-2")

        assert context_filter.filter(record)
        assert record.extra_fields == {"trace_id": "trace-1", "request_id": "req-2"}


class TestStructuredFormatter:

    def test_correlation_ids_are_top_level(self):
        record = make_record(trace_id="trace-1", request_id="req-1", step="A")

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "hello"
        assert entry["trace_id"] == "trace-1"
        assert entry["request_id"] == "req-1"
        assert entry["context"] == {"step": "A"}
        assert entry["level"] == "INFO"

    def test_exception_details(self):
        try:
            raise ValueError("bad value")
        except ValueError:
            record = logging.LogRecord(
                "stepflow.test", logging.ERROR, __file__, 10, "failed", None, sys.exc_info()
            )

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["exception"]["type"] == "ValueError"
        assert entry["exception"]["message"] == "bad value"
        assert "context" not in entry


class TestSetupLogging:

    def test_handlers_are_replaced_not_duplicated(self, tmp_path):
        log_file = tmp_path / "logs" / "stepflow.log"

        setup_logging(level="INFO", log_file=str(log_file))
        root = setup_logging(level="INFO", log_file=str(log_file), structured=True)

        assert len(root.handlers) == 2
        assert log_file.parent.is_dir()
        assert all(isinstance(handler.formatter, StructuredFormatter) for handler in root.handlers)

        for handler in root.handlers:
            handler.close()

    def test_simulator_logger_follows_debug(self):
        setup_logging(level="DEBUG")
        assert logging.getLogger("stepflow.core.simulator").level == logging.DEBUG

        setup_logging(level="WARNING")
        assert logging.getLogger("stepflow.core.simulator").level == logging.WARNING
