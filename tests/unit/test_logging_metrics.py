"""
Unit tests for structured logging and the metrics collector.
"""

import json
import logging
import threading

import pytest

import shared.logging as shared_logging
from shared.logging import (
    JSONFormatter,
    PerformanceLogger,
    StructuredLogger,
    TraceContext,
    get_span_id,
    get_trace_id,
    init_structured_logger,
)
from shared.metrics import MetricsCollector


def make_record(msg="hello", **extra):
    record = logging.LogRecord("quantcore.test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ============================================================================
# Logging
# ============================================================================

@pytest.mark.unit
class TestJSONFormatter:
    """Test JSON log records."""

    def test_basic_fields(self):
        payload = json.loads(JSONFormatter("quantcore", "test").format(make_record()))
        assert payload["message"] == "hello"
        assert payload["service"] == "quantcore"
        assert payload["environment"] == "test"
        assert payload["level"] == "INFO"
        assert "trace_id" not in payload

    def test_extra_fields_merged(self):
        record = make_record(extra_fields={"var_95": 0.021, "positions": 4})
        payload = json.loads(JSONFormatter("quantcore").format(record))
        assert payload["var_95"] == 0.021
        assert payload["positions"] == 4

    def test_non_json_values_stringified(self):
        record = make_record(extra_fields={"when": object()})
        payload = json.loads(JSONFormatter("quantcore").format(record))
        assert isinstance(payload["when"], str)

    def test_trace_ids_included(self):
        with TraceContext(trace_id="trace-1", span_id="span-1"):
            payload = json.loads(JSONFormatter("quantcore").format(make_record()))
        assert payload["trace_id"] == "trace-1"
        assert payload["span_id"] == "span-1"


@pytest.mark.unit
class TestTraceContext:
    """Test trace propagation."""

    def test_ids_reset_on_exit(self):
        assert get_trace_id() is None
        with TraceContext() as ctx:
            assert get_trace_id() == ctx.trace_id
            assert get_span_id() == ctx.span_id
        assert get_trace_id() is None
        assert get_span_id() is None

    def test_child_span_shares_trace(self):
        with TraceContext() as parent:
            with parent.child() as child:
                assert get_trace_id() == parent.trace_id
                assert child.parent_span_id == parent.span_id
                assert get_span_id() == child.span_id
            assert get_span_id() == parent.span_id


@pytest.mark.unit
class TestStructuredLogger:
    """Test the service logger."""

    def test_level_by_name(self):
        structured = StructuredLogger("quantcore.test.level", "quantcore", level="warning")
        assert structured.logger.level == logging.WARNING

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            StructuredLogger("quantcore.test.bad", "quantcore", level="LOUD")

    def test_propagation_to_root(self, caplog):
        structured = StructuredLogger("quantcore.test.propagate", "quantcore", level="DEBUG", propagate=True)
        with caplog.at_level(logging.DEBUG, logger="quantcore.test.propagate"):
            structured.info("Model trained", iterations=12)
        record = caplog.records[-1]
        assert record.message == "Model trained"
        assert record.extra_fields == {"iterations": 12}

    def test_logger_cached_per_service_and_environment(self):
        first = init_structured_logger("quantcore.test.cache", environment="staging")
        again = init_structured_logger("quantcore.test.cache", environment="staging")
        other = init_structured_logger("quantcore.test.cache", environment="production")
        assert first is again
        assert other is not first
        # loggers are only reachable through the factory that configured them
        assert not hasattr(shared_logging, "get_logger")

    def test_performance_logger_records_duration(self, caplog):
        structured = StructuredLogger("quantcore.test.perf", "quantcore", level="DEBUG", propagate=True)
        with caplog.at_level(logging.DEBUG, logger="quantcore.test.perf"):
            with PerformanceLogger(structured, "optimize") as perf:
                pass
        assert perf.duration_ms is not None and perf.duration_ms >= 0
        assert caplog.records[-1].message == "optimize completed"

    def test_performance_logger_logs_failure(self, caplog):
        structured = StructuredLogger("quantcore.test.fail", "quantcore", level="DEBUG", propagate=True)
        with caplog.at_level(logging.DEBUG, logger="quantcore.test.fail"):
            with pytest.raises(RuntimeError):
                with PerformanceLogger(structured, "train"):
                    raise RuntimeError("boom")
        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert record.extra_fields["error_type"] == "RuntimeError"


# ============================================================================
# Metrics
# ============================================================================

@pytest.mark.unit
class TestMetricsCollector:
    """Test counters, gauges and latencies."""

    def test_counters_and_gauges(self):
        metrics = MetricsCollector()
        metrics.increment("alerts")
        metrics.increment("alerts", 2)
        metrics.set_gauge("var_95", 0.02)

        summary = metrics.get_summary()
        assert summary["counters"] == {"alerts": 3}
        assert summary["gauges"] == {"var_95": 0.02}

    def test_time_operation(self):
        metrics = MetricsCollector()
        for _ in range(3):
            with metrics.time_operation("predict"):
                pass
        latency = metrics.get_summary()["latencies"]["predict"]
        assert latency["count"] == 3
        assert latency["min"] <= latency["mean"] <= latency["max"]

    def test_time_operation_records_on_error(self):
        metrics = MetricsCollector()
        with pytest.raises(ValueError):
            with metrics.time_operation("optimize"):
                raise ValueError("bad input")
        assert metrics.get_summary()["latencies"]["optimize"]["count"] == 1

    def test_concurrent_increments(self):
        metrics = MetricsCollector()

        def bump():
            for _ in range(1000):
                metrics.increment("ticks")

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert metrics.get_summary()["counters"]["ticks"] == 4000

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.increment("alerts")
        metrics.reset()
        assert metrics.get_summary() == {"latencies": {}, "counters": {}, "gauges": {}}
