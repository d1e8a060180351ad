"""Metric events and the sinks that record them.

The runtime emits three kinds of event (one per non-cached request, one per
terminal tool outcome, one per cache lookup) to a :class:`MetricsSink`.

- ``InMemoryMetricsSink`` keeps counters for the system tools and tests.
- ``OpenTelemetryMetricsSink`` maps events onto OpenTelemetry instruments.
- ``FanoutMetricsSink`` forwards each event to several sinks.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel

from filebridge.utils.telemetry import get_meter

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


class RequestMetric(BaseModel):
    """Outcome of one non-cached dispatch."""

    kind: Literal["request"] = "request"
    method: str
    success: bool
    duration: float
    caller_id: str = "anonymous"
    error_code: int | None = None

    @property
    def status(self) -> str:
        return "success" if self.success else "error"


class ToolMetric(BaseModel):
    """Terminal outcome of one supervised tool call (all attempts together)."""

    kind: Literal["tool"] = "tool"
    tool_name: str
    success: bool
    duration: float
    attempts: int = 1
    caller_id: str = "anonymous"


class CacheMetric(BaseModel):
    """One cache lookup for a cacheable method."""

    kind: Literal["cache"] = "cache"
    method: str
    hit: bool


MetricEvent = RequestMetric | ToolMetric | CacheMetric


@runtime_checkable
class MetricsSink(Protocol):
    """Receives metric events.  Implementations must not raise."""

    def record(self, event: MetricEvent) -> None: ...


class InMemoryMetricsSink:
    """Thread-safe in-process counters plus the raw event log.

    Satisfies the :class:`MetricsSink` protocol.
    """

    def __init__(self, *, keep_events: int = 1000) -> None:
        self._lock = threading.Lock()
        self._keep_events = keep_events
        self._started = time.monotonic()
        self.events: list[MetricEvent] = []
        self.requests: Counter[tuple[str, str]] = Counter()
        self.tool_executions: Counter[tuple[str, str]] = Counter()
        self.cache_lookups: Counter[str] = Counter()
        self._request_time = 0.0
        self._tool_time = 0.0

    def record(self, event: MetricEvent) -> None:
        with self._lock:
            self.events.append(event)
            if len(self.events) > self._keep_events:
                del self.events[: len(self.events) - self._keep_events]

            if isinstance(event, RequestMetric):
                self.requests[(event.method, event.status)] += 1
                self._request_time += event.duration
            elif isinstance(event, ToolMetric):
                status = "success" if event.success else "error"
                self.tool_executions[(event.tool_name, status)] += 1
                self._tool_time += event.duration
            else:
                self.cache_lookups["hit" if event.hit else "miss"] += 1

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started

    def of_kind(self, kind: str) -> list[MetricEvent]:
        with self._lock:
            return [e for e in self.events if e.kind == kind]

    def summary(self) -> dict[str, Any]:
        """Aggregate view used by ``get_server_info`` and ``health_check``."""
        with self._lock:
            total_requests = sum(self.requests.values())
            failed_requests = sum(n for (_, status), n in self.requests.items() if status == "error")
            total_tools = sum(self.tool_executions.values())
            failed_tools = sum(
                n for (_, status), n in self.tool_executions.items() if status == "error"
            )
            hits = self.cache_lookups["hit"]
            lookups = hits + self.cache_lookups["miss"]
            return {
                "uptime_seconds": round(self.uptime, 3),
                "requests": {
                    "total": total_requests,
                    "errors": failed_requests,
                    "avg_duration_ms": _avg_ms(self._request_time, total_requests),
                },
                "tools": {
                    "total": total_tools,
                    "errors": failed_tools,
                    "avg_duration_ms": _avg_ms(self._tool_time, total_tools),
                },
                "cache": {
                    "hits": hits,
                    "misses": lookups - hits,
                    "hit_rate": round(hits / lookups, 3) if lookups else 0.0,
                },
            }


class OpenTelemetryMetricsSink:
    """Records events on OpenTelemetry counters and histograms.

    Satisfies the :class:`MetricsSink` protocol.  Without a configured SDK
    the instruments are no-ops.
    """

    def __init__(self, meter_name: str = "filebridge") -> None:
        meter = get_meter(meter_name)
        self._requests = meter.create_counter(
            "filebridge.requests", description="Dispatched JSON-RPC requests"
        )
        self._request_duration = meter.create_histogram(
            "filebridge.request.duration", unit="s", description="Request dispatch duration"
        )
        self._tool_executions = meter.create_counter(
            "filebridge.tool.executions", description="Supervised tool calls"
        )
        self._tool_duration = meter.create_histogram(
            "filebridge.tool.duration", unit="s", description="Supervised tool call duration"
        )
        self._cache_lookups = meter.create_counter(
            "filebridge.cache.lookups", description="Response cache lookups"
        )

    def record(self, event: MetricEvent) -> None:
        if isinstance(event, RequestMetric):
            attrs: dict[str, Any] = {
                "method": event.method,
                "status": event.status,
                "user_id": event.caller_id,
            }
            if event.error_code is not None:
                attrs["error_code"] = event.error_code
            self._requests.add(1, attrs)
            self._request_duration.record(
                event.duration, {"method": event.method, "status": event.status}
            )
        elif isinstance(event, ToolMetric):
            status = "success" if event.success else "error"
            self._tool_executions.add(
                1, {"tool_name": event.tool_name, "status": status, "user_id": event.caller_id}
            )
            self._tool_duration.record(
                event.duration, {"tool_name": event.tool_name, "status": status}
            )
        else:
            self._cache_lookups.add(
                1, {"method": event.method, "result": "hit" if event.hit else "miss"}
            )


class FanoutMetricsSink:
    """Forwards every event to each wrapped sink; one failing sink never blocks the rest."""

    def __init__(self, sinks: Iterable[MetricsSink]) -> None:
        self._sinks = list(sinks)

    def record(self, event: MetricEvent) -> None:
        for sink in self._sinks:
            try:
                sink.record(event)
            except Exception:
                logger.exception("Metrics sink %r failed to record %s event", sink, event.kind)


def _avg_ms(total_seconds: float, count: int) -> float:
    return round(total_seconds / count * 1000, 3) if count else 0.0
