"""Tests for the structured logging system (royalty_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from royalty_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state around each test, then restore the suite's config."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


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
        assert record["logger"] == "royalty_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("run_calculated", extra={"statements": 42, "status": "CALCULATED"})

        record = _parse_log(stream)
        assert record["statements"] == 42
        assert record["status"] == "CALCULATED"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(run_id="run-456", actor_id="actor-1"):
            get_logger("test").info("test_msg")
        get_logger("test").info("after_block")

        inside, after = _parse_all_logs(stream)
        assert inside["run_id"] == "run-456"
        assert inside["actor_id"] == "actor-1"
        assert "run_id" not in after

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_royalty_exception_fields_extracted(self):
        """Royalty engine exceptions carry a .code and structured fields."""
        from royalty_kernel.exceptions import InvalidOwnershipSplitError

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InvalidOwnershipSplitError(9000, "asset-1")
        except InvalidOwnershipSplitError:
            get_logger("test").error("split_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INVALID_OWNERSHIP_SPLIT"
        assert record["exc_type"] == "InvalidOwnershipSplitError"
        assert record["exc_total_bps"] == 9000
        assert record["exc_asset_id"] == "asset-1"

    def test_carried_forward_error_names_absorbing_statement(self):
        from royalty_kernel.exceptions import StatementCarriedForwardError

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise StatementCarriedForwardError("dec-1", "jan-1", action="append line")
        except StatementCarriedForwardError:
            get_logger("test").warning("adjust_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "STATEMENT_CARRIED_FORWARD"
        assert record["exc_absorbing_statement_id"] == "jan-1"
        assert record["exc_expected"] == []

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "run_id" not in record
        assert "statement_id" not in record

    def test_uuid_and_date_serialized(self):
        from datetime import date

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "with_uuid", extra={"statement_id_value": uid, "period_start": date(2025, 1, 1)}
        )

        record = _parse_log(stream)
        assert record["statement_id_value"] == str(uid)
        assert record["period_start"] == "2025-01-01"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # default level is INFO, so the debug line is dropped
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= record.keys()


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_bind_and_get(self):
        with LogContext.bind(run_id="x", statement_id="y"):
            assert LogContext.get_all() == {"run_id": "x", "statement_id": "y"}

    def test_clear(self):
        with LogContext.bind(run_id="x"):
            LogContext.clear()
            assert LogContext.get_all() == {}

    def test_nested_bind_restores_outer(self):
        with LogContext.bind(run_id="outer"):
            with LogContext.bind(run_id="inner", actor_id=None):
                assert LogContext.get_all() == {"run_id": "inner"}
            assert LogContext.get_all() == {"run_id": "outer"}

    def test_bind_stringifies_values(self):
        uid = uuid4()
        with LogContext.bind(statement_id=uid):
            assert LogContext.get_all()["statement_id"] == str(uid)

    def test_bind_restores_none(self):
        assert "statement_id" not in LogContext.get_all()
        with LogContext.bind(statement_id="temp"):
            assert LogContext.get_all()["statement_id"] == "temp"
        assert "statement_id" not in LogContext.get_all()

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(actor_id="a-1"):
                raise RuntimeError("boom")
        assert "actor_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(run_id="r", producer="ignored"):
            assert LogContext.get_all() == {"run_id": "r"}

    def test_all_fields(self):
        with LogContext.bind(run_id="r", statement_id="s", actor_id="a"):
            assert LogContext.get_all() == {
                "run_id": "r",
                "statement_id": "s",
                "actor_id": "a",
            }


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is a no-op
        assert logging.getLogger("royalty_kernel").handlers == [h1]

    def test_get_logger_returns_child(self):
        assert get_logger("services.calculation").name == "royalty_kernel.services.calculation"

    def test_logger_hierarchy(self):
        """Child loggers inherit the royalty_kernel root config."""
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "royalty_kernel.deep.nested.module"

    def test_reset_clears_handlers(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        reset_logging()
        assert logging.getLogger("royalty_kernel").handlers == []
