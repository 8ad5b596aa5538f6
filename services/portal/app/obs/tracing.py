"""
OpenTelemetry distributed tracing for the PAL portal backend.
Provides tracing for FastAPI requests and database calls.
"""
from typing import Optional, Dict, Any
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.propagate import set_global_textmap
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator
from app.config import settings


def setup_tracing():
    """Configure OpenTelemetry tracing for the application."""
    resource = Resource.create({
        "service.name": getattr(settings, 'OTEL_SERVICE_NAME_API', 'pal-api'),
        "service.version": "1.0.0",
        "deployment.environment": getattr(settings, 'ENVIRONMENT', 'development'),
    })

    tracer_provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(tracer_provider)

    otlp_endpoint = getattr(settings, 'OTEL_EXPORTER_OTLP_ENDPOINT', None)

    # Spans are still created without an exporter so trace ids propagate
    exporter = None
    if otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
    elif getattr(settings, 'ENABLE_TRACING', False):
        exporter = ConsoleSpanExporter()

    if exporter is not None:
        tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

    set_global_textmap(TraceContextTextMapPropagator())

    return tracer_provider


def instrument_fastapi(app):
    """Instrument FastAPI application with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)
    return app


def instrument_sqlalchemy(engine):
    """Instrument a SQLAlchemy engine with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument(engine=engine)
    return True


def get_tracer(name: str):
    """Get a tracer instance."""
    return trace.get_tracer(name)


def get_current_trace_id() -> Optional[str]:
    """Get the current trace ID from the active span."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.is_valid:
            return format(span_context.trace_id, '032x')
    return None


def add_span_attributes(attributes: Dict[str, Any]):
    """Add attributes to the current active span."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        for key, value in attributes.items():
            current_span.set_attribute(key, value)


def add_span_error(error: Exception, attributes: Optional[Dict[str, Any]] = None):
    """Add error information to the current active span."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        current_span.set_status(trace.Status(trace.StatusCode.ERROR, str(error)))
        current_span.set_attribute("error", True)
        current_span.set_attribute("error.type", type(error).__name__)
        current_span.set_attribute("error.message", str(error))

        if attributes:
            for key, value in attributes.items():
                current_span.set_attribute(key, value)
