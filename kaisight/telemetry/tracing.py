from __future__ import annotations

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from kaisight.telemetry.logging import get_logger

_configured = False


def configure_tracing(service_name: str, endpoint: str | None) -> None:
    global _configured
    if _configured or endpoint is None:
        return

    resource = Resource.create({SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    get_logger(__name__).info("tracing.enabled", endpoint=endpoint, service_name=service_name)
    _configured = True


def get_tracer(name: str) -> trace.Tracer:
    """Tracer for `name`; a no-op tracer until tracing is configured."""
    return trace.get_tracer(name)


__all__ = ["configure_tracing", "get_tracer"]
