"""Observability utilities."""

from .metrics import (
    APPLE_RECEIPT_RESPONSES,
    MONTHLY_REPORTS_GENERATED,
    PURCHASE_VALIDATION_OUTCOMES,
    QUEUE_DEPTH_GAUGE,
    REQUEST_COUNTER,
    REQUEST_LATENCY_SECONDS,
    PrometheusMiddleware,
    metrics_router,
    record_apple_response,
    record_validation_outcome,
    report_queue_depth,
)
from .tracing import (
    current_traceparent,
    initialise_tracing,
    inject_traceparent,
    instrument_fastapi_app,
    instrument_sqlalchemy_engine,
    span_from_traceparent,
)

__all__ = [
    "APPLE_RECEIPT_RESPONSES",
    "MONTHLY_REPORTS_GENERATED",
    "PURCHASE_VALIDATION_OUTCOMES",
    "PrometheusMiddleware",
    "QUEUE_DEPTH_GAUGE",
    "REQUEST_COUNTER",
    "REQUEST_LATENCY_SECONDS",
    "current_traceparent",
    "initialise_tracing",
    "inject_traceparent",
    "instrument_fastapi_app",
    "instrument_sqlalchemy_engine",
    "metrics_router",
    "record_apple_response",
    "record_validation_outcome",
    "report_queue_depth",
    "span_from_traceparent",
]
