"""OpenTelemetry tracing helpers for API and worker services."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

_SERVICE_NAME_ATTRIBUTE = "service.name"


def _create_tracer_provider(service_name: str, endpoint: str | None) -> TracerProvider:
    provider = TracerProvider(resource=Resource(attributes={_SERVICE_NAME_ATTRIBUTE: service_name}))
    if endpoint:
        # gRPC exporter is only loaded when a collector endpoint is configured.
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
    return provider


def initialise_tracing(
    *,
    service_name: str,
    endpoint: str | None = None,
    instrument_logging: bool = True,
) -> None:
    """Install a tracer provider for ``service_name`` unless one is already active.

    Without an exporter endpoint spans are still created (so trace ids propagate
    through queue messages) but nothing is exported.
    """
    current_provider = trace.get_tracer_provider()
    if (
        isinstance(current_provider, TracerProvider)
        and getattr(current_provider.resource, "attributes", {}).get(_SERVICE_NAME_ATTRIBUTE)
        == service_name
    ):
        return

    trace.set_tracer_provider(_create_tracer_provider(service_name, endpoint))
    if instrument_logging:
        LoggingInstrumentor().instrument(set_logging_format=True)


def instrument_fastapi_app(app: FastAPI) -> None:
    FastAPIInstrumentor().instrument_app(app)


def instrument_sqlalchemy_engine(engine: Any) -> None:
    SQLAlchemyInstrumentor().instrument(engine=engine)


@contextmanager
def span_from_traceparent(name: str, traceparent: str | None, **attributes: Any) -> Iterator[Span]:
    """Start a span, continuing the trace carried by a queue message when present."""

    tracer = trace.get_tracer("mindlock")
    context = None
    if traceparent:
        context = TraceContextTextMapPropagator().extract(carrier={"traceparent": traceparent})
    with tracer.start_as_current_span(name, context=context) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def inject_traceparent(headers: dict[str, str]) -> dict[str, str]:
    """Inject the current trace context into a message carrier."""

    carrier: dict[str, str] = dict(headers)
    TraceContextTextMapPropagator().inject(carrier)
    return carrier


def current_traceparent() -> str | None:
    """Return the ``traceparent`` of the active span, if any."""

    if trace.get_current_span().get_span_context().trace_id == 0:
        return None
    return inject_traceparent({}).get("traceparent")


__all__ = [
    "current_traceparent",
    "initialise_tracing",
    "instrument_fastapi_app",
    "instrument_sqlalchemy_engine",
    "inject_traceparent",
    "span_from_traceparent",
]
