"""Tests for the structured logging system (booking_kernel/logging_config.py)."""

import json
import logging
from io import StringIO

import pytest

from booking_engines.recurrence import expand_recurrence
from booking_kernel.exceptions import OverlapError
from booking_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from tests.factories import ROOM_ID, T0, at, make_pattern, window


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite default."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "booking_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("reservation_created", extra={"status": "confirmed", "count": 3})

        record = _parse_log(stream)
        assert record["status"] == "confirmed"
        assert record["count"] == 3

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", resource_id="room-1")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["resource_id"] == "room-1"

    def test_context_wins_over_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(actor_id="bound"):
            get_logger("test").info("msg", extra={"actor_id": "extra"})

        assert _parse_log(stream)["actor_id"] == "bound"

    def test_datetime_and_set_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("msg", extra={"as_of": T0, "roles": {"b", "a"}})

        record = _parse_log(stream)
        assert record["as_of"] == T0.isoformat()
        assert record["roles"] == ["a", "b"]

    def test_booking_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise OverlapError(ROOM_ID, window(at(6, 10)), ())
        except OverlapError:
            get_logger("test").error("booking_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "OVERLAP"
        assert record["exc_type"] == "OverlapError"
        assert record["exc_resource_id"] == ROOM_ID
        assert "traceback" in record

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "reservation_id" not in record

    def test_debug_filtered_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.debug("second")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first"]


class TestLogContext:

    def test_bind_restores_previous_value(self):
        LogContext.set(series_id="outer")
        with LogContext.bind(series_id="inner"):
            assert LogContext.get_all()["series_id"] == "inner"
        assert LogContext.get_all()["series_id"] == "outer"

    def test_bind_ignores_none(self):
        with LogContext.bind(request_id=None, actor_id="a"):
            assert LogContext.get_all() == {"actor_id": "a"}

    def test_clear(self):
        LogContext.set(reservation_id="r1")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert len(logging.getLogger("booking_kernel").handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("services.approval_workflow").name == (
            "booking_kernel.services.approval_workflow"
        )


class TestEngineTrace:

    def test_traced_engine_emits_fingerprint(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)

        expand_recurrence(window(at(6, 9)), make_pattern(max_instances=2))
        expand_recurrence(window(at(6, 9)), make_pattern(max_instances=2))

        traces = [r for r in _parse_all_logs(stream) if r["message"] == "BOOKING_ENGINE_TRACE"]
        assert len(traces) == 2
        assert traces[0]["engine_name"] == "recurrence"
        assert traces[0]["input_fingerprint"] == traces[1]["input_fingerprint"]
        assert len(traces[0]["input_fingerprint"]) == 16
