"""Seed script for local charities."""
from __future__ import annotations

import logging
import sys
from pathlib import Path

from sqlalchemy.orm import Session

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mindlock.core.logging import configure_logging
from mindlock.db.session import SessionLocal, engine
from mindlock.models import Base, Charity

logger = logging.getLogger(__name__)

DEMO_CHARITIES = [
    ("charity-water", "charity: water", "Clean drinking water projects"),
    ("give-directly", "GiveDirectly", "Direct cash transfers to people in poverty"),
    ("against-malaria", "Against Malaria Foundation", "Long-lasting insecticidal nets"),
]


def seed(session: Session) -> int:
    """Create demo charities that do not exist yet; returns how many were added."""

    added = 0
    for charity_id, name, description in DEMO_CHARITIES:
        if session.get(Charity, charity_id) is not None:
            logger.info("Charity %s already exists", charity_id)
            continue
        session.add(Charity(id=charity_id, name=name, description=description, is_active=True))
        logger.info("Added charity %s", charity_id)
        added += 1
    return added


def main() -> None:
    configure_logging()
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        seed(session)
        session.commit()


if __name__ == "__main__":
    main()
