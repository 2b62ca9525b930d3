"""Revenue split between the store fee, the charity donation and the platform."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from mindlock.core.config import Settings


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _as_rate(name: str, rate: float | Decimal | str) -> Decimal:
    value = Decimal(str(rate))
    if value < 0 or value > 1:
        msg = f"{name} must be between 0 and 1, got {rate}"
        raise ValueError(msg)
    return value


@dataclass(slots=True, frozen=True)
class RevenueSplit:
    """Integer-cent breakdown of a gross purchase amount."""

    gross_cents: int
    apple_fee_cents: int
    net_cents: int
    donation_cents: int
    platform_cents: int

    @classmethod
    def from_settings(cls, gross_cents: int, settings: Settings) -> "RevenueSplit":
        return calculate_revenue_split(
            gross_cents,
            apple_fee_rate=settings.apple_fee_rate,
            donation_rate=settings.donation_rate,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "gross_cents": self.gross_cents,
            "apple_fee_cents": self.apple_fee_cents,
            "net_cents": self.net_cents,
            "donation_cents": self.donation_cents,
            "platform_cents": self.platform_cents,
        }


def calculate_revenue_split(
    gross_cents: int,
    *,
    apple_fee_rate: float | Decimal | str,
    donation_rate: float | Decimal | str,
) -> RevenueSplit:
    """Split ``gross_cents`` using half-up rounding at each step.

    The store fee is taken from the gross amount and the donation from what
    remains, so ``apple_fee + net == gross`` and ``donation + platform == net``
    always hold exactly.
    """
    if gross_cents < 0:
        msg = f"gross_cents must not be negative, got {gross_cents}"
        raise ValueError(msg)
    fee_rate = _as_rate("apple_fee_rate", apple_fee_rate)
    share_rate = _as_rate("donation_rate", donation_rate)

    apple_fee_cents = _round_cents(Decimal(gross_cents) * fee_rate)
    net_cents = gross_cents - apple_fee_cents
    donation_cents = _round_cents(Decimal(net_cents) * share_rate)
    return RevenueSplit(
        gross_cents=gross_cents,
        apple_fee_cents=apple_fee_cents,
        net_cents=net_cents,
        donation_cents=donation_cents,
        platform_cents=net_cents - donation_cents,
    )


__all__ = ["RevenueSplit", "calculate_revenue_split"]
