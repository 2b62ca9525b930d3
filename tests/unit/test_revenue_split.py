from __future__ import annotations

from decimal import Decimal

import pytest

from mindlock.core.config import get_settings
from mindlock.services.revenue_split import RevenueSplit, calculate_revenue_split


def test_split_for_a_199_cent_purchase() -> None:
    split = calculate_revenue_split(199, apple_fee_rate=0.30, donation_rate=0.10)

    assert split.apple_fee_cents == 60
    assert split.net_cents == 139
    assert split.donation_cents == 14
    assert split.platform_cents == 125


def test_split_rounds_half_up() -> None:
    # 150 * 0.3 = 45.0, 105 * 0.1 = 10.5 -> 11
    split = calculate_revenue_split(150, apple_fee_rate="0.3", donation_rate="0.1")
    assert split.donation_cents == 11

    # 5 * 0.5 = 2.5 -> 3
    assert calculate_revenue_split(5, apple_fee_rate="0.5", donation_rate="0").apple_fee_cents == 3


@pytest.mark.parametrize("gross_cents", [0, 1, 99, 199, 499, 999, 1999, 9999, 123457])
@pytest.mark.parametrize(("fee_rate", "donation_rate"), [("0.30", "0.10"), ("0.15", "0.25"), ("0", "1"), ("1", "0.5")])
def test_split_parts_always_sum(gross_cents: int, fee_rate: str, donation_rate: str) -> None:
    split = calculate_revenue_split(gross_cents, apple_fee_rate=fee_rate, donation_rate=donation_rate)

    assert split.apple_fee_cents + split.net_cents == gross_cents
    assert split.donation_cents + split.platform_cents == split.net_cents
    assert 0 <= split.donation_cents <= split.net_cents
    assert all(isinstance(value, int) for value in split.to_dict().values())


@pytest.mark.parametrize(
    "kwargs",
    [
        {"apple_fee_rate": -0.1, "donation_rate": 0.1},
        {"apple_fee_rate": 0.3, "donation_rate": 1.5},
        {"apple_fee_rate": Decimal("1.01"), "donation_rate": 0},
    ],
)
def test_split_rejects_rates_outside_unit_interval(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        calculate_revenue_split(199, **kwargs)


def test_split_rejects_negative_gross() -> None:
    with pytest.raises(ValueError, match="must not be negative"):
        calculate_revenue_split(-1, apple_fee_rate=0.3, donation_rate=0.1)


def test_split_from_settings_uses_configured_rates() -> None:
    split = RevenueSplit.from_settings(199, get_settings())
    assert split == calculate_revenue_split(199, apple_fee_rate="0.30", donation_rate="0.10")
