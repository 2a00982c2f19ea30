from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from crm_billing.core.config import Settings, get_settings


_provider: TracerProvider | None = None
_exporters_attached = False


def _tracer_provider(settings: Settings) -> TracerProvider:
    global _provider

    if _provider is None:
        resource = Resource.create({"service.name": settings.otel_service_name, "service.version": settings.app_version})
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def configure_tracing(settings: Settings | None = None) -> TracerProvider | None:
    """Install the SDK tracer provider and its exporters once per process."""
    global _exporters_attached

    settings = settings or get_settings()
    if not settings.otel_enabled:
        return None

    provider = _tracer_provider(settings)
    if _exporters_attached:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    _exporters_attached = True
    return provider


def attach_memory_exporter(settings: Settings | None = None) -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _tracer_provider(settings or get_settings()).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def set_span_counts(span: trace.Span, **counts: int) -> None:
    for key, value in counts.items():
        span.set_attribute(key, value)


def server_request_hook(span: trace.Span | None, scope: dict[str, Any]) -> None:
    if span is None or not span.is_recording():
        return
    headers = dict(scope.get("headers", []))
    correlation_raw = headers.get(b"x-correlation-id")
    if correlation_raw:
        span.set_attribute("correlation_id", correlation_raw.decode("utf-8"))
