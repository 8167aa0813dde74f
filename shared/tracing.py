"""Tracing utilities built on OpenTelemetry."""

import os
from contextlib import contextmanager
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

from shared.errors import AccessLayerException

ATTRIBUTE_PREFIX = "authz."


def configure_tracing(service_name: str, otel_exporter: Optional[str] = None, app=None) -> None:
    """Export spans over OTLP/HTTP and instrument ``app`` when given."""
    endpoint = otel_exporter or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "http://localhost:4318")

    provider = TracerProvider(resource=Resource.create({
        "service.name": service_name,
        "service.version": "1.0.0",
        "deployment.environment": os.getenv("AUTHZ_ENV", "local"),
    }))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{endpoint.rstrip('/')}/v1/traces")))
    trace.set_tracer_provider(provider)

    if app is not None:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")


def get_tracer(name: str):
    return trace.get_tracer(name)


def _set_attributes(span, attributes):
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(ATTRIBUTE_PREFIX + key, value)


@contextmanager
def trace_operation(operation_name: str, **attributes):
    """Run the body inside a span named ``operation_name``.

    Aborting errors mark the span failed with their error code; the
    exception is re-raised unchanged.
    """
    with get_tracer(__name__).start_as_current_span(operation_name) as span:
        _set_attributes(span, attributes)
        try:
            yield span
        except AccessLayerException as exc:
            span.set_status(Status(StatusCode.ERROR, exc.message))
            span.set_attribute(ATTRIBUTE_PREFIX + "error_code", exc.code)
            raise
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise


def add_span_attributes(**attributes):
    """Add attributes to the current span, if one is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        _set_attributes(span, attributes)
