"""OpenTelemetry wiring for transcript ingest.

Everything here is a no-op until `initialize()` runs with
`SNATCH_OTEL_ENABLED` set and the SDK importable. The SDK is imported lazily
so the core never depends on it.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from snatch import config

logger = logging.getLogger("snatch.observability")

# name -> (kind, unit, description)
_INSTRUMENTS: dict[str, tuple[str, str, str]] = {
    "ingestion": ("counter", "1", "Transcript parse and tree-build operations"),
    "ingestion_latency": ("histogram", "ms", "Latency of transcript parse and tree-build operations"),
    "parser_failures": ("counter", "1", "Parses aborted by an I/O or strict-mode decode failure"),
    "lines_skipped": ("counter", "1", "Malformed lines skipped by the lenient parser"),
    "tokens": ("counter", "1", "Token usage observed in ingested transcripts"),
}

_initialized = False
_enabled = False
_tracer: Any | None = None
_providers: list[Any] = []
_instruments: dict[str, Any] = {}


def _signal_endpoint(base: str, signal: str) -> str:
    """OTLP/HTTP endpoint for `signal` ("traces" or "metrics") under `base`."""
    endpoint = (base or "").strip().rstrip("/")
    if not endpoint:
        return ""
    suffix = f"/v1/{signal}"
    if endpoint.endswith(suffix):
        return endpoint
    if endpoint.endswith("/v1"):
        endpoint = endpoint[: -len("/v1")]
    return endpoint + suffix


def _labels(**values: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in values.items()}


def is_enabled() -> bool:
    return _enabled


def _create_instruments(meter: Any) -> dict[str, Any]:
    created = {}
    for name, (kind, unit, description) in _INSTRUMENTS.items():
        factory = meter.create_histogram if kind == "histogram" else meter.create_counter
        metric_name = f"snatch_{name}_{unit}" if kind == "histogram" else f"snatch_{name}_total"
        created[name] = factory(metric_name, unit=unit, description=description)
    return created


def initialize() -> None:
    """Install tracer and meter providers exporting over OTLP/HTTP."""
    global _initialized, _enabled, _tracer, _providers, _instruments

    if _initialized:
        return
    _initialized = True

    if not config.OTEL_ENABLED:
        logger.debug("OpenTelemetry disabled (SNATCH_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable (install snatch[otel]): %s", exc)
        return

    service_name = config.OTEL_SERVICE_NAME or "snatch"
    resource = Resource.create({"service.name": service_name, "service.namespace": "snatch"})

    tracer_provider = TracerProvider(resource=resource)
    span_exporter = OTLPSpanExporter(endpoint=_signal_endpoint(config.OTEL_ENDPOINT, "traces") or None)
    tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    trace.set_tracer_provider(tracer_provider)

    metric_exporter = OTLPMetricExporter(endpoint=_signal_endpoint(config.OTEL_ENDPOINT, "metrics") or None)
    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[PeriodicExportingMetricReader(metric_exporter)],
    )
    metrics.set_meter_provider(meter_provider)

    _providers = [meter_provider, tracer_provider]
    _instruments = _create_instruments(metrics.get_meter("snatch"))
    _tracer = trace.get_tracer("snatch")
    _enabled = True
    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)


def shutdown() -> None:
    """Flush and drop the providers; safe to call when never initialized."""
    global _initialized, _enabled, _tracer, _providers, _instruments
    if not _initialized:
        return
    for provider in _providers:
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("OpenTelemetry provider shutdown failed: %s", exc)
    _providers = []
    _instruments = {}
    _tracer = None
    _enabled = False
    _initialized = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None) -> Iterator[Any]:
    if not _enabled or _tracer is None:
        yield None
        return
    clean = {key: value for key, value in (attributes or {}).items() if value is not None}
    with _tracer.start_as_current_span(name, attributes=clean) as span:
        yield span


def _instrument(name: str) -> Any | None:
    return _instruments.get(name) if _enabled else None


def record_ingestion(entity: str, result: str, duration_ms: float, *, source: str = "") -> None:
    labels = _labels(entity=entity, result=result, source=source)
    counter = _instrument("ingestion")
    if counter is not None:
        counter.add(1, labels)
    latency = _instrument("ingestion_latency")
    if latency is not None:
        latency.record(max(0.0, float(duration_ms)), labels)


def record_parser_failure(parser: str, *, source: str = "") -> None:
    counter = _instrument("parser_failures")
    if counter is not None:
        counter.add(1, _labels(parser=parser, source=source))


def record_lines_skipped(count: int, *, source: str = "") -> None:
    counter = _instrument("lines_skipped")
    if counter is not None and count > 0:
        counter.add(int(count), _labels(source=source))


def record_tokens(*, model: str, token_input: int, token_output: int, source: str = "") -> None:
    counter = _instrument("tokens")
    if counter is None:
        return
    base = _labels(model=model, source=source)
    for direction, amount in (("input", token_input), ("output", token_output)):
        if amount > 0:
            counter.add(int(amount), {**base, "direction": direction})
