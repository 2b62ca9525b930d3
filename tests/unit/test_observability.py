from __future__ import annotations

from datetime import datetime, timezone

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient
from opentelemetry import trace
from prometheus_client import REGISTRY

from mindlock.core.config import get_settings
from mindlock.obs import PrometheusMiddleware, initialise_tracing, metrics_router, report_queue_depth
from mindlock.services.apple_receipts import AppleReceiptClient, VerifiedTransaction
from mindlock.services.jobs import VALIDATE_RECEIPT_TOPIC, JobEnvelope, enqueue_purchase_validation
from mindlock.services.monthly_report import MonthlyReportService
from mindlock.services.validation import PurchaseValidationService
from mindlock.workers.observability import worker_span
from tests.conftest import VALIDATION_QUEUE_URL, TestingSessionLocal

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class AcceptingVerifier:
    def verify(self, receipt_data: str, expected_transaction_id: str | None) -> VerifiedTransaction:
        return VerifiedTransaction(
            transaction_id=expected_transaction_id or "",
            product_id=None,
            completed_at=FIXED_NOW,
            environment="production",
        )


class UnusedTokenVerifier:
    def verify(self, token: str):  # type: ignore[no-untyped-def]
        raise AssertionError("signed transaction path not expected")


def test_validation_outcomes_are_counted(db_session, make_purchase) -> None:
    purchase = make_purchase()
    service = PurchaseValidationService(
        session_factory=TestingSessionLocal,
        receipt_client=AcceptingVerifier(),
        token_verifier=UnusedTokenVerifier(),
    )
    completed_before = _sample("purchase_validation_outcomes_total", outcome="completed")
    skipped_before = _sample("purchase_validation_outcomes_total", outcome="skipped_already_processed")

    service.validate(purchase.id)
    service.validate(purchase.id)

    assert _sample("purchase_validation_outcomes_total", outcome="completed") == completed_before + 1
    assert (
        _sample("purchase_validation_outcomes_total", outcome="skipped_already_processed")
        == skipped_before + 1
    )


def test_apple_responses_are_counted_per_environment() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if "sandbox" not in str(request.url):
            return httpx.Response(200, json={"status": 21007})
        return httpx.Response(200, json={"status": 0, "latest_receipt_info": [{"transaction_id": "T1"}]})

    client = AppleReceiptClient(
        shared_secret="secret",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        clock=lambda: FIXED_NOW,
    )
    redirect_before = _sample("apple_receipt_responses_total", environment="production", status="21007")
    sandbox_before = _sample("apple_receipt_responses_total", environment="sandbox", status="0")

    client.verify("receipt-b64", "T1")

    assert _sample("apple_receipt_responses_total", environment="production", status="21007") == redirect_before + 1
    assert _sample("apple_receipt_responses_total", environment="sandbox", status="0") == sandbox_before + 1


def test_report_generation_is_counted(db_session) -> None:
    before = _sample("monthly_reports_generated_total")

    MonthlyReportService(db_session).generate("2024-04")
    db_session.commit()

    assert _sample("monthly_reports_generated_total") == before + 1


def test_metrics_endpoint_exposes_pipeline_metrics() -> None:
    report_queue_depth(VALIDATE_RECEIPT_TOPIC, 3)
    app = FastAPI()
    app.add_middleware(PrometheusMiddleware)
    app.include_router(metrics_router)

    response = TestClient(app).get("/metrics")

    assert response.status_code == 200
    assert 'worker_queue_depth{queue_name="validate-receipt"} 3.0' in response.text
    assert "purchase_validation_outcomes_total" in response.text
    assert "apple_receipt_responses_total" in response.text


def test_worker_span_continues_trace_of_enqueuing_request(job_queue, sqs_client) -> None:
    initialise_tracing(service_name="mindlock-test", instrument_logging=False)
    tracer = trace.get_tracer(__name__)
    with tracer.start_as_current_span("reports.run") as parent:
        enqueue_purchase_validation(job_queue, "purchase-1", get_settings())
        parent_trace_id = parent.get_span_context().trace_id

    [message] = sqs_client.queue(VALIDATION_QUEUE_URL)
    envelope = JobEnvelope.from_json(message["Body"])
    assert envelope.traceparent is not None

    with worker_span("receipt_validation.process", envelope.traceparent, purchase_id="purchase-1") as span:
        assert span.get_span_context().trace_id == parent_trace_id
