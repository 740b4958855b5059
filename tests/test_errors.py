"""
Tests for error capture helpers and run context.
"""

from datetime import timezone

import pytest

from opportunity_engine.core.context import (
    clear_context,
    get_context_dict,
    get_iteration,
    get_run_id,
    set_iteration,
    start_run_context,
)
from opportunity_engine.core.errors import (
    CircuitOpenError,
    ErrorHandler,
    GeneratorParseError,
    capture_exception,
    capture_message,
    init_sentry,
    is_sentry_enabled,
)


class TestExceptions:
    def test_circuit_open_retry_after(self):
        error = CircuitOpenError("dataforseo-api", 1_700_000_060_000)

        assert error.retry_after_datetime.tzinfo == timezone.utc
        assert error.retry_after_datetime.timestamp() == 1_700_000_060
        assert "dataforseo-api" in str(error)

    def test_parse_error_preview(self):
        error = GeneratorParseError("No JSON array", "Sorry, I can't")
        assert error.preview == "Sorry, I can't"
        assert "Sorry" in str(error)


class TestCapture:
    def test_sentry_disabled_without_dsn(self):
        assert init_sentry("") is False
        assert not is_sentry_enabled()

    def test_capture_without_sentry_returns_none(self):
        assert capture_exception(ValueError("boom"), context={"iteration": 2}) is None
        assert capture_message("partial run", level="warning") is None


class TestErrorHandler:
    def test_suppresses_and_records(self):
        with ErrorHandler("persist_opportunity", context={"keyword": "a"}) as handler:
            raise RuntimeError("unique violation")

        assert isinstance(handler.error, RuntimeError)

    def test_no_error(self):
        with ErrorHandler("persist_opportunity") as handler:
            pass
        assert handler.error is None

    def test_reraise(self):
        with pytest.raises(ValueError):
            with ErrorHandler("load_landscape", reraise=True):
                raise ValueError("bad json")

    def test_keyboard_interrupt_propagates(self):
        with pytest.raises(KeyboardInterrupt):
            with ErrorHandler("persist_opportunity"):
                raise KeyboardInterrupt


class TestRunContext:
    def test_run_lifecycle(self):
        run_id = start_run_context()
        try:
            assert run_id.startswith("run_")
            assert len(run_id) == len("run_") + 16
            set_iteration(3)
            assert get_context_dict() == {"run_id": run_id, "iteration": 3}
        finally:
            clear_context()

        assert get_run_id() is None
        assert get_iteration() is None

    def test_explicit_run_id(self):
        try:
            assert start_run_context("run_fixed") == "run_fixed"
            assert get_run_id() == "run_fixed"
        finally:
            clear_context()
