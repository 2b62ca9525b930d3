"""Prometheus metrics for the API and the queue workers."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_LATENCY_SECONDS = Histogram(
    "http_request_latency_seconds",
    "Latency of HTTP requests in seconds.",
    labelnames=("method", "path"),
)
REQUEST_COUNTER = Counter(
    "http_requests_total",
    "Total number of HTTP requests processed.",
    labelnames=("method", "path", "status"),
)
QUEUE_DEPTH_GAUGE = Gauge(
    "worker_queue_depth",
    "Messages received from a worker queue and not yet processed.",
    labelnames=("queue_name",),
)
PURCHASE_VALIDATION_OUTCOMES = Counter(
    "purchase_validation_outcomes_total",
    "Purchase validation job outcomes by kind.",
    labelnames=("outcome",),
)
APPLE_RECEIPT_RESPONSES = Counter(
    "apple_receipt_responses_total",
    "verifyReceipt responses by environment and Apple status code.",
    labelnames=("environment", "status"),
)
MONTHLY_REPORTS_GENERATED = Counter(
    "monthly_reports_generated_total",
    "Monthly donation reports generated or regenerated.",
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware that records request metrics for Prometheus scraping."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        method = request.method
        path = request.url.path
        start_time = time.perf_counter()
        status = "500"

        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            REQUEST_LATENCY_SECONDS.labels(method=method, path=path).observe(time.perf_counter() - start_time)
            REQUEST_COUNTER.labels(method=method, path=path, status=status).inc()


metrics_router = APIRouter(tags=["observability"])


@metrics_router.get("/metrics", include_in_schema=False)
def metrics_endpoint() -> Response:
    """Expose Prometheus metrics for scraping."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def report_queue_depth(queue_name: str, depth: int | float) -> None:
    """Report the depth of a named worker queue."""
    QUEUE_DEPTH_GAUGE.labels(queue_name=queue_name).set(max(0.0, float(depth)))


def record_validation_outcome(outcome: str) -> None:
    PURCHASE_VALIDATION_OUTCOMES.labels(outcome=outcome).inc()


def record_apple_response(environment: str, status: int | str) -> None:
    APPLE_RECEIPT_RESPONSES.labels(environment=environment, status=str(status)).inc()


__all__ = [
    "APPLE_RECEIPT_RESPONSES",
    "MONTHLY_REPORTS_GENERATED",
    "PURCHASE_VALIDATION_OUTCOMES",
    "PrometheusMiddleware",
    "QUEUE_DEPTH_GAUGE",
    "REQUEST_COUNTER",
    "REQUEST_LATENCY_SECONDS",
    "metrics_endpoint",
    "metrics_router",
    "record_apple_response",
    "record_validation_outcome",
    "report_queue_depth",
]
