"""Shared observability helpers for worker processes."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Sequence

from opentelemetry.trace import Span

from mindlock.core.config import get_settings
from mindlock.core.logging import configure_logging
from mindlock.obs import initialise_tracing, report_queue_depth, span_from_traceparent


def configure_worker(service_name: str, *, queues: Sequence[str] | None = None) -> None:
    """Set up logging and tracing and zero the queue gauges for a worker process."""

    configure_logging()
    settings = get_settings()
    if settings.enable_tracing:
        initialise_tracing(
            service_name=service_name,
            endpoint=settings.otel_exporter_endpoint,
            instrument_logging=False,
        )
    if settings.enable_metrics and queues:
        for queue in queues:
            report_queue_depth(queue, 0)


@contextmanager
def worker_span(name: str, traceparent: str | None = None, **attributes: Any) -> Iterator[Span]:
    with span_from_traceparent(name, traceparent, **attributes) as span:
        yield span


__all__ = ["configure_worker", "worker_span"]
