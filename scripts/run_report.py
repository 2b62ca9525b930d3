"""Generate or enqueue a monthly donation report.

Usage: ``python scripts/run_report.py [YYYY-MM] [--inline]``. Without a month
the previous calendar month (UTC) is used.
"""
from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mindlock.core.config import get_settings
from mindlock.core.logging import configure_logging
from mindlock.db.session import get_session
from mindlock.services.jobs import SQSJobQueue, enqueue_monthly_report
from mindlock.services.monthly_report import InvalidMonthError, MonthlyReportService, month_range, previous_month

logger = logging.getLogger("scripts.run_report")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("month", nargs="?", help="report month as YYYY-MM")
    parser.add_argument("--inline", action="store_true", help="generate now instead of enqueueing")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = parse_args(argv)
    if args.month:
        try:
            month_range(args.month)
        except InvalidMonthError as exc:
            logger.error("%s", exc)
            return 2

    if args.inline:
        with get_session() as session:
            report = MonthlyReportService(session).generate(args.month)
            month = report.month
        logger.info("generated report inline for %s", month)
        return 0

    month = args.month or previous_month(datetime.now(timezone.utc))
    enqueue_monthly_report(SQSJobQueue.from_settings(get_settings()), month)
    logger.info("enqueued report job for %s", month)
    return 0


if __name__ == "__main__":
    sys.exit(main())
