"""OpenTelemetry + Prometheus wiring for the mirror, scanner and parser."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from sessionvault import config

logger = logging.getLogger("sessionvault.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_sync_counter: Any | None = None
_sync_latency_hist: Any | None = None
_copied_files_counter: Any | None = None
_index_latency_hist: Any | None = None
_parser_failure_counter: Any | None = None

_prom_enabled = False
_prom_sync_counter: Any | None = None
_prom_sync_latency_hist: Any | None = None
_prom_copied_files_counter: Any | None = None
_prom_index_latency_hist: Any | None = None
_prom_parser_failure_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _sync_counter, _sync_latency_hist, _copied_files_counter, _index_latency_hist, _parser_failure_counter
    global _prom_enabled, _prom_sync_counter, _prom_sync_latency_hist, _prom_copied_files_counter
    global _prom_index_latency_hist, _prom_parser_failure_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (SESSIONVAULT_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "sessionvault"

    resource = Resource.create({"service.name": service_name, "service.namespace": "sessionvault"})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("sessionvault")

    _sync_counter = meter.create_counter(
        "sessionvault_sync_cycles_total",
        unit="1",
        description="Completed mirror sync cycles",
    )
    _sync_latency_hist = meter.create_histogram(
        "sessionvault_sync_duration_ms",
        unit="ms",
        description="Duration of mirror sync cycles",
    )
    _copied_files_counter = meter.create_counter(
        "sessionvault_copied_files_total",
        unit="1",
        description="Files copied into the working directory",
    )
    _index_latency_hist = meter.create_histogram(
        "sessionvault_index_build_ms",
        unit="ms",
        description="Duration of index rebuilds",
    )
    _parser_failure_counter = meter.create_counter(
        "sessionvault_parser_failures_total",
        unit="1",
        description="Malformed records skipped while parsing",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("sessionvault")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_sync_counter = Counter(
                "sessionvault_sync_cycles_total",
                "Completed mirror sync cycles",
                ["result"],
            )
            _prom_sync_latency_hist = Histogram(
                "sessionvault_sync_duration_ms",
                "Duration of mirror sync cycles",
                ["result"],
            )
            _prom_copied_files_counter = Counter(
                "sessionvault_copied_files_total",
                "Files copied into the working directory",
                ["source"],
            )
            _prom_index_latency_hist = Histogram(
                "sessionvault_index_build_ms",
                "Duration of index rebuilds",
            )
            _prom_parser_failure_counter = Counter(
                "sessionvault_parser_failures_total",
                "Malformed records skipped while parsing",
                ["parser"],
            )
            _prom_enabled = True
            logger.info("Prometheus metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus metrics not started: %s", exc)
            _prom_enabled = False

    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
        if _meter_provider is not None:
            _meter_provider.shutdown()
        if _trace_provider is not None:
            _trace_provider.shutdown()
    except Exception as exc:  # noqa: BLE001
        logger.warning("OpenTelemetry shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_sync(result: str, duration_ms: float, *, copied_by_source: dict[int, int] | None = None) -> None:
    labels = {"result": result or "unknown"}
    duration = max(0.0, float(duration_ms))
    if _enabled and _sync_counter is not None:
        _sync_counter.add(1, labels)
    if _enabled and _sync_latency_hist is not None:
        _sync_latency_hist.record(duration, labels)
    if _prom_enabled and _prom_sync_counter is not None:
        _prom_sync_counter.labels(**labels).inc()
    if _prom_enabled and _prom_sync_latency_hist is not None:
        _prom_sync_latency_hist.labels(**labels).observe(duration)

    for source_index, copied in (copied_by_source or {}).items():
        if copied <= 0:
            continue
        if _enabled and _copied_files_counter is not None:
            _copied_files_counter.add(copied, {"source": str(source_index)})
        if _prom_enabled and _prom_copied_files_counter is not None:
            _prom_copied_files_counter.labels(source=str(source_index)).inc(copied)


def record_index_build(duration_ms: float) -> None:
    duration = max(0.0, float(duration_ms))
    if _enabled and _index_latency_hist is not None:
        _index_latency_hist.record(duration)
    if _prom_enabled and _prom_index_latency_hist is not None:
        _prom_index_latency_hist.observe(duration)


def record_parser_failure(parser: str) -> None:
    labels = {"parser": parser or "unknown"}
    if _enabled and _parser_failure_counter is not None:
        _parser_failure_counter.add(1, labels)
    if _prom_enabled and _prom_parser_failure_counter is not None:
        _prom_parser_failure_counter.labels(**labels).inc()
