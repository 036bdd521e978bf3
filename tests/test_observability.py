"""Tests for metrics collection and timed operations."""
import pytest

from noteplan_mcp.observability import MetricsCollector, metrics, timed_operation, traced


class TestMetricsCollector:
    """Per-operation counters."""

    def test_record_and_summarize(self):
        collector = MetricsCollector()
        collector.record("noteplan_search", 10.0, backend="ripgrep")
        collector.record("noteplan_search", 30.0, error_code="ERR_TIMEOUT", backend="fallback")
        stats = collector.snapshot()["noteplan_search"]
        assert stats["calls"] == 2
        assert stats["failures"] == 1
        assert stats["avgMs"] == 20.0
        assert stats["lastErrorCode"] == "ERR_TIMEOUT"
        assert stats["backends"] == {"ripgrep": 1, "fallback": 1}
        summary = collector.summary()
        assert summary["calls"] == 2
        assert summary["successRate"] == 0.5

    def test_reset(self):
        collector = MetricsCollector()
        collector.record("x", 1.0)
        collector.reset()
        assert collector.snapshot() == {}
        assert collector.summary()["successRate"] == 1.0


class TestTimedOperation:
    """The context manager used around every tool call."""

    def setup_method(self):
        metrics.reset()

    def test_exception_is_recorded_and_reraised(self):
        with pytest.raises(RuntimeError):
            with timed_operation("failing_op"):
                raise RuntimeError("bad")
        assert metrics.snapshot()["failing_op"]["errorCodes"] == {"RuntimeError": 1}

    def test_handled_failure_is_recorded(self):
        """Tools that return an error envelope mark the op dict instead of raising."""
        with timed_operation("handled_op") as op:
            op["success"] = False
            op["error_code"] = "ERR_NOT_FOUND"
        stats = metrics.snapshot()["handled_op"]
        assert stats["failures"] == 1
        assert stats["lastErrorCode"] == "ERR_NOT_FOUND"

    def test_backend_is_counted(self):
        with timed_operation("noteplan_search") as op:
            op["backend"] = "space-fts"
        assert metrics.snapshot()["noteplan_search"]["backends"] == {"space-fts": 1}

    def test_traced_decorator(self):
        @traced("listing")
        def listing():
            return [1, 2, 3]

        assert listing() == [1, 2, 3]
        stats = metrics.snapshot()["listing"]
        assert stats["calls"] == 1
        assert stats["failures"] == 0
