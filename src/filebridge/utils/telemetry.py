"""OpenTelemetry helpers for filebridge.

Provides a thin wrapper around the OpenTelemetry API so the rest of the
codebase can call ``get_tracer()`` / ``get_meter()`` without caring whether
the SDK is installed.  When the SDK is *not* configured the API returns no-op
implementations.

Usage::

    from filebridge.utils.telemetry import get_tracer

    _tracer = get_tracer(__name__)

    with _tracer.start_as_current_span("dispatch") as span:
        span.set_attribute(ATTR_METHOD, "tools/list")

To activate real tracing and metrics, call :func:`configure_telemetry` once at startup
(requires the ``otel`` extra: ``pip install filebridge[otel]``).
"""

from __future__ import annotations

from typing import Any

from opentelemetry import metrics, trace

# ---------------------------------------------------------------------------
# Semantic attribute keys used throughout filebridge instrumentation
# ---------------------------------------------------------------------------

ATTR_METHOD = "filebridge.rpc.method"
ATTR_REQUEST_ID = "filebridge.rpc.id"
ATTR_NOTIFICATION = "filebridge.rpc.notification"
ATTR_ERROR_CODE = "filebridge.rpc.error_code"
ATTR_CACHE_HIT = "filebridge.cache.hit"
ATTR_TOOL_NAME = "filebridge.tool.name"
ATTR_TOOL_ATTEMPT = "filebridge.tool.attempt"
ATTR_TOOL_MAX_RETRIES = "filebridge.tool.max_retries"
ATTR_TOOL_TIMEOUT = "filebridge.tool.timeout"
ATTR_CALLER_ID = "filebridge.caller.id"

_INSTRUMENTATION_NAME = "filebridge"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return a :class:`~opentelemetry.trace.Tracer` for *name* (no-op without the SDK)."""
    return trace.get_tracer(name or _INSTRUMENTATION_NAME)


def get_meter(name: str | None = None) -> metrics.Meter:
    """Return a :class:`~opentelemetry.metrics.Meter` for *name* (no-op without the SDK)."""
    return metrics.get_meter(name or _INSTRUMENTATION_NAME)


def configure_telemetry(
    *,
    service_name: str = "filebridge",
    export_to_console: bool = False,
    otlp_endpoint: str | None = None,
    metric_export_interval: float = 60.0,
) -> None:
    """Configure OpenTelemetry tracing and metrics (requires ``filebridge[otel]``).

    Installs an SDK ``TracerProvider`` and ``MeterProvider`` sharing one
    resource, so spans and the counters recorded by
    :class:`~filebridge.utils.metrics.OpenTelemetryMetricsSink` are exported.

    Parameters
    ----------
    service_name:
        The ``service.name`` resource attribute.
    export_to_console:
        If ``True``, export spans and metrics as JSON to stdout.  Leave off
        when serving over stdio, where stdout carries the protocol.
    otlp_endpoint:
        If set, export spans and metrics via OTLP/gRPC to this endpoint.
    metric_export_interval:
        Seconds between metric exports.

    Raises
    ------
    ImportError
        If the ``opentelemetry-sdk`` package is not installed.
    """
    try:
        from opentelemetry.sdk.metrics import MeterProvider  # pyright: ignore[reportMissingImports]
        from opentelemetry.sdk.metrics.export import (  # pyright: ignore[reportMissingImports]
            PeriodicExportingMetricReader,
        )
        from opentelemetry.sdk.resources import Resource  # pyright: ignore[reportMissingImports]
        from opentelemetry.sdk.trace import TracerProvider  # pyright: ignore[reportMissingImports]
        from opentelemetry.sdk.trace.export import (  # pyright: ignore[reportMissingImports]
            BatchSpanProcessor,
            SimpleSpanProcessor,
        )
    except ImportError as exc:
        msg = (
            "opentelemetry-sdk is required for configure_telemetry(). "
            "Install it with: pip install filebridge[otel]"
        )
        raise ImportError(msg) from exc

    resource = Resource.create({"service.name": service_name})
    tracer_provider = TracerProvider(resource=resource)
    metric_readers: list[Any] = []
    interval_ms = metric_export_interval * 1000

    if export_to_console:
        span_exporter, metric_exporter = _console_exporters()
        tracer_provider.add_span_processor(SimpleSpanProcessor(span_exporter))
        metric_readers.append(
            PeriodicExportingMetricReader(metric_exporter, export_interval_millis=interval_ms)
        )

    if otlp_endpoint:
        span_exporter, metric_exporter = _otlp_exporters(otlp_endpoint)
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
        metric_readers.append(
            PeriodicExportingMetricReader(metric_exporter, export_interval_millis=interval_ms)
        )

    trace.set_tracer_provider(tracer_provider)
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))


def _console_exporters() -> tuple[Any, Any]:
    from opentelemetry.sdk.metrics.export import ConsoleMetricExporter  # pyright: ignore[reportMissingImports]
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter  # pyright: ignore[reportMissingImports]

    return ConsoleSpanExporter(), ConsoleMetricExporter()


def _otlp_exporters(endpoint: str) -> tuple[Any, Any]:
    try:
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (  # pyright: ignore[reportMissingImports]
            OTLPMetricExporter,
        )
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # pyright: ignore[reportMissingImports]
            OTLPSpanExporter,
        )
    except ImportError as exc:
        msg = (
            "opentelemetry-exporter-otlp is required for OTLP export. "
            "Install it with: pip install filebridge[otel]"
        )
        raise ImportError(msg) from exc

    return OTLPSpanExporter(endpoint=endpoint), OTLPMetricExporter(endpoint=endpoint)
