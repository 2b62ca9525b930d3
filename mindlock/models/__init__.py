"""ORM models package."""
from .base import Base, TimestampMixin, utcnow
from .charity import Charity
from .charity_donation import CharityDonation
from .monthly_report import MonthlyReport
from .purchase import Purchase, PurchaseStatus

__all__ = [
    "Base",
    "Charity",
    "CharityDonation",
    "MonthlyReport",
    "Purchase",
    "PurchaseStatus",
    "TimestampMixin",
    "utcnow",
]
