"""Configuration management for the MindLock purchase backend."""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings

APPLE_PRODUCTION_VERIFY_RECEIPT_URL = "https://buy.itunes.apple.com/verifyReceipt"
APPLE_SANDBOX_VERIFY_RECEIPT_URL = "https://sandbox.itunes.apple.com/verifyReceipt"


class Settings(BaseSettings):
    app_name: str = Field(default="MindLock Backend")
    version: str = Field(default="0.1.0")
    docs_url: str | None = Field(default="/docs")
    redoc_url: str | None = Field(default="/redoc")
    openapi_url: str = Field(default="/openapi.json")

    database_url: str = Field(default="postgresql+psycopg://mindlock:mindlock@db:5432/mindlock")

    aws_region: str = Field(default="us-east-1")
    sqs_endpoint_url: str | None = Field(default=None)
    validation_queue_url: str = Field(
        default="https://sqs.us-east-1.amazonaws.com/000000000000/validate-receipt"
    )
    validation_dead_letter_queue_url: str = Field(
        default="https://sqs.us-east-1.amazonaws.com/000000000000/validate-receipt-dead"
    )
    report_queue_url: str = Field(
        default="https://sqs.us-east-1.amazonaws.com/000000000000/generate-report"
    )
    report_dead_letter_queue_url: str = Field(
        default="https://sqs.us-east-1.amazonaws.com/000000000000/generate-report-dead"
    )
    worker_poll_interval_seconds: int = Field(default=2)

    apple_shared_secret: str
    apple_verify_receipt_url: str = Field(default=APPLE_PRODUCTION_VERIFY_RECEIPT_URL)
    apple_sandbox_verify_receipt_url: str = Field(default=APPLE_SANDBOX_VERIFY_RECEIPT_URL)
    apple_request_timeout_seconds: float = Field(default=10.0, gt=0)

    # No defaults: every deployment sets its own split rates.
    apple_fee_rate: float = Field(..., ge=0, le=1)
    donation_rate: float = Field(..., ge=0, le=1)

    validation_max_attempts: int = Field(default=5, ge=1)
    validation_backoff_seconds: list[int] = Field(default_factory=lambda: [1, 10, 60, 300, 1800])
    report_schedule_hour_utc: int = Field(default=5, ge=0, le=23)

    admin_api_key: str = Field(default="change-me-admin")

    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=True)
    otel_exporter_endpoint: str | None = Field(default=None)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


__all__ = [
    "APPLE_PRODUCTION_VERIFY_RECEIPT_URL",
    "APPLE_SANDBOX_VERIFY_RECEIPT_URL",
    "Settings",
    "get_settings",
]
