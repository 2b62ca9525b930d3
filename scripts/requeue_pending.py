"""Re-enqueue purchases stuck in ``pending_validation``.

Used by operators after reviewing the validation dead-letter queue.
"""
from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mindlock.core.config import Settings, get_settings
from mindlock.core.logging import configure_logging
from mindlock.db.session import SessionLocal
from mindlock.models import Purchase, PurchaseStatus
from mindlock.services.jobs import JobQueue, SQSJobQueue, enqueue_purchase_validation

logger = logging.getLogger("scripts.requeue_pending")


def requeue_pending(
    session: Session,
    queue: JobQueue,
    settings: Settings,
    *,
    older_than: timedelta,
    now: datetime | None = None,
    limit: int | None = None,
) -> list[str]:
    """Enqueue a validation job for every pending purchase created before ``now - older_than``."""

    cutoff = (now or datetime.now(timezone.utc)) - older_than
    statement = (
        select(Purchase.id)
        .where(Purchase.status == PurchaseStatus.PENDING_VALIDATION, Purchase.created_at < cutoff)
        .order_by(Purchase.created_at)
    )
    if limit is not None:
        statement = statement.limit(limit)

    purchase_ids = list(session.scalars(statement))
    for purchase_id in purchase_ids:
        enqueue_purchase_validation(queue, purchase_id, settings)
        logger.info("re-enqueued validation for purchase %s", purchase_id)
    return purchase_ids


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    parser = argparse.ArgumentParser(description="Re-enqueue stale pending purchases")
    parser.add_argument("--older-than-minutes", type=int, default=60)
    parser.add_argument("--limit", type=int, default=None)
    args = parser.parse_args(argv)

    settings = get_settings()
    queue = SQSJobQueue.from_settings(settings)
    with SessionLocal() as session:
        requeued = requeue_pending(
            session,
            queue,
            settings,
            older_than=timedelta(minutes=args.older_than_minutes),
            limit=args.limit,
        )
    logger.info("re-enqueued %d purchases", len(requeued))
    return 0


if __name__ == "__main__":
    sys.exit(main())
