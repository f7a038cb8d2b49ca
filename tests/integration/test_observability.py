"""
Integration tests for shopsync/observability.py

Tests structured logging, correlation IDs, run-scoped log fields, and timing.
"""
import asyncio
import json
import logging
import sys
import time as time_module

import pytest

from shopsync.observability import (
    HumanReadableFormatter,
    StructuredFormatter,
    Timer,
    correlation_context,
    generate_correlation_id,
    get_correlation_id,
    get_log_fields,
    get_logger,
    log_context,
    set_correlation_id,
)


def make_record(msg="Test message", name="test.logger", level=logging.INFO, **extra):
    record = logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def clean_correlation_id():
    """Tests must not leak a correlation ID into each other."""
    with correlation_context("outer"):
        set_correlation_id(None)
        yield


class TestCorrelationId:
    """Tests for correlation ID management."""

    def test_generate_correlation_id_not_empty(self):
        cid = generate_correlation_id()
        assert cid
        assert len(cid) == 8

    def test_generated_ids_differ(self):
        assert generate_correlation_id() != generate_correlation_id()

    def test_set_and_get_correlation_id(self):
        set_correlation_id("test-correlation-123")
        assert get_correlation_id() == "test-correlation-123"

    def test_context_sets_and_restores(self):
        """correlation_context restores the previous ID on exit."""
        set_correlation_id("before")

        with correlation_context("sync-run") as cid:
            assert cid == "sync-run"
            assert get_correlation_id() == "sync-run"

        assert get_correlation_id() == "before"

    def test_context_generates_id_when_missing(self):
        with correlation_context() as cid:
            assert cid
            assert get_correlation_id() == cid

    def test_context_restores_after_exception(self):
        with pytest.raises(RuntimeError):
            with correlation_context("failing"):
                raise RuntimeError("boom")

        assert get_correlation_id() is None


class TestLogContext:
    """Tests for run-scoped log fields."""

    def test_fields_bound_inside_block(self):
        with log_context(run_id=12, shop="demo.myshopify.com"):
            assert get_log_fields() == {"run_id": 12, "shop": "demo.myshopify.com"}

        assert get_log_fields() == {}

    def test_nested_blocks_merge(self):
        with log_context(run_id=12):
            with log_context(resource="payouts"):
                assert get_log_fields() == {"run_id": 12, "resource": "payouts"}
            assert get_log_fields() == {"run_id": 12}

    def test_formatters_include_bound_fields(self):
        with log_context(run_id=12):
            parsed = json.loads(StructuredFormatter().format(make_record()))
            human = HumanReadableFormatter().format(make_record())

        assert parsed["run_id"] == 12
        assert human.endswith("| {'run_id': 12}")

    def test_explicit_extra_wins(self):
        with log_context(run_id=12):
            parsed = json.loads(StructuredFormatter().format(make_record(run_id=13)))

        assert parsed["run_id"] == 13

    @pytest.mark.asyncio
    async def test_tasks_inherit_fields(self):
        async def read_fields():
            return get_log_fields()

        with log_context(run_id=12):
            task = asyncio.create_task(read_fields())
        assert await task == {"run_id": 12}


class TestTimer:
    """Tests for Timer context manager."""

    def test_measures_elapsed_time(self):
        with Timer("test_operation") as timer:
            time_module.sleep(0.05)

        assert timer.elapsed_ms >= 45
        assert timer.elapsed_ms < 1000

    def test_timer_name(self):
        with Timer("my_operation") as timer:
            pass

        assert timer.name == "my_operation"

    def test_logs_duration_at_debug(self, caplog):
        logger = get_logger("test.timer")

        with caplog.at_level(logging.DEBUG, logger="test.timer"):
            with Timer("orders_page", logger):
                pass

        record = next(r for r in caplog.records if r.name == "test.timer")
        assert record.levelno == logging.DEBUG
        assert record.getMessage() == "orders_page completed"
        assert record.duration_ms >= 0

    def test_slow_operation_logs_warning(self, caplog):
        logger = get_logger("test.timer.slow")

        with caplog.at_level(logging.DEBUG, logger="test.timer.slow"):
            with Timer("slow_call", logger, warn_threshold_ms=0):
                time_module.sleep(0.01)

        record = next(r for r in caplog.records if r.name == "test.timer.slow")
        assert record.levelno == logging.WARNING


class TestStructuredFormatter:
    """Tests for JSON log formatter."""

    def test_formats_as_json(self):
        output = StructuredFormatter().format(make_record())
        parsed = json.loads(output)

        assert parsed["message"] == "Test message"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test.logger"

    def test_includes_timestamp(self):
        parsed = json.loads(StructuredFormatter().format(make_record()))

        assert "T" in parsed["timestamp"]
        assert parsed["timestamp"].endswith("Z")

    def test_includes_correlation_id(self):
        with correlation_context("test-correlation-456"):
            parsed = json.loads(StructuredFormatter().format(make_record()))

        assert parsed["correlation_id"] == "test-correlation-456"

    def test_omits_correlation_id_when_unset(self):
        parsed = json.loads(StructuredFormatter().format(make_record()))
        assert "correlation_id" not in parsed

    def test_includes_extra_fields(self):
        record = make_record(run_id=7, shop="demo.myshopify.com")
        parsed = json.loads(StructuredFormatter().format(record))

        assert parsed["run_id"] == 7
        assert parsed["shop"] == "demo.myshopify.com"

    def test_non_serializable_extra_is_stringified(self):
        record = make_record(watermark=object())
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["watermark"].startswith("<object object")

    def test_includes_exception(self):
        try:
            raise ValueError("bad payload")
        except ValueError:
            record = make_record()
            record.exc_info = sys.exc_info()

        parsed = json.loads(StructuredFormatter().format(record))
        assert "ValueError: bad payload" in parsed["exception"]


class TestHumanReadableFormatter:
    """Tests for console log formatter."""

    def test_contains_level_logger_and_message(self):
        output = HumanReadableFormatter().format(make_record(level=logging.WARNING))

        assert "WARNING" in output
        assert "test.logger" in output
        assert output.endswith("Test message")

    def test_includes_correlation_id_in_brackets(self):
        with correlation_context("abc12345"):
            output = HumanReadableFormatter().format(make_record())

        assert "test.logger [abc12345] - Test message" in output

    def test_appends_extras(self):
        output = HumanReadableFormatter().format(make_record(orders=3))
        assert output.endswith("| {'orders': 3}")


class TestGetLogger:
    """Tests for get_logger function."""

    def test_returns_logger(self):
        logger = get_logger("test.module")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "test.module"
