"""Tests for metric events and sinks."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from filebridge.utils.metrics import (
    CacheMetric,
    FanoutMetricsSink,
    InMemoryMetricsSink,
    MetricsSink,
    OpenTelemetryMetricsSink,
    RequestMetric,
    ToolMetric,
)


class TestInMemoryMetricsSink:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryMetricsSink(), MetricsSink)

    def test_counts_by_kind(self) -> None:
        sink = InMemoryMetricsSink()
        sink.record(RequestMetric(method="ping", success=True, duration=0.01))
        sink.record(RequestMetric(method="tools/call", success=False, duration=0.02, error_code=-32003))
        sink.record(ToolMetric(tool_name="read_file", success=True, duration=0.1))
        sink.record(CacheMetric(method="tools/list", hit=True))
        sink.record(CacheMetric(method="tools/list", hit=False))

        assert sink.requests == {("ping", "success"): 1, ("tools/call", "error"): 1}
        assert sink.tool_executions == {("read_file", "success"): 1}
        assert sink.cache_lookups == {"hit": 1, "miss": 1}
        assert len(sink.of_kind("cache")) == 2

    def test_summary(self) -> None:
        sink = InMemoryMetricsSink()
        sink.record(RequestMetric(method="ping", success=True, duration=0.002))
        sink.record(RequestMetric(method="ping", success=False, duration=0.004))
        sink.record(CacheMetric(method="tools/list", hit=True))

        summary = sink.summary()

        assert summary["requests"] == {"total": 2, "errors": 1, "avg_duration_ms": 3.0}
        assert summary["tools"]["total"] == 0
        assert summary["cache"] == {"hits": 1, "misses": 0, "hit_rate": 1.0}
        assert summary["uptime_seconds"] >= 0

    def test_event_log_bounded(self) -> None:
        sink = InMemoryMetricsSink(keep_events=3)
        for _ in range(10):
            sink.record(CacheMetric(method="m", hit=True))
        assert len(sink.events) == 3
        assert sink.cache_lookups["hit"] == 10


class TestOpenTelemetryMetricsSink:
    def test_records_on_instruments(self) -> None:
        meter = MagicMock()
        with patch("filebridge.utils.metrics.get_meter", return_value=meter):
            sink = OpenTelemetryMetricsSink()

        sink.record(RequestMetric(method="ping", success=True, duration=0.5, caller_id="a"))
        sink.record(ToolMetric(tool_name="t", success=False, duration=1.0))
        sink.record(CacheMetric(method="tools/list", hit=False))

        counter = meter.create_counter.return_value
        histogram = meter.create_histogram.return_value
        counter.add.assert_any_call(1, {"method": "ping", "status": "success", "user_id": "a"})
        counter.add.assert_any_call(1, {"method": "tools/list", "result": "miss"})
        histogram.record.assert_any_call(1.0, {"tool_name": "t", "status": "error"})

    def test_noop_without_sdk(self) -> None:
        OpenTelemetryMetricsSink().record(CacheMetric(method="m", hit=True))


class TestFanoutMetricsSink:
    def test_forwards_and_isolates_failures(self) -> None:
        broken = MagicMock()
        broken.record.side_effect = RuntimeError("sink down")
        healthy = InMemoryMetricsSink()

        FanoutMetricsSink([broken, healthy]).record(CacheMetric(method="m", hit=True))

        broken.record.assert_called_once()
        assert healthy.cache_lookups["hit"] == 1
