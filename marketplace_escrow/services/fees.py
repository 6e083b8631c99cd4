"""Platform fee schedule.

Sliding scale on the gross sale amount, each band inclusive of its lower bound:

    < $25.00            2%
    $25.00 - $100.00    3%
    $100.00 - $500.00   4%
    $500.00 - $2,000.00 5%
    >= $2,000.00        6%

The percentage is floored to the cent, then raised to a $0.50 minimum.
"""
from __future__ import annotations

from dataclasses import dataclass

from marketplace_escrow.utils.errors import EscrowInvariantError

MINIMUM_FEE_CENTS = 50
# Smallest price a paid listing may carry; keeps the minimum fee below the price.
MINIMUM_PAID_PRICE_CENTS = 100

# (exclusive upper bound in cents, percent); ``None`` closes the last band.
FEE_BANDS: tuple[tuple[int | None, int], ...] = (
    (2_500, 2),
    (10_000, 3),
    (50_000, 4),
    (200_000, 5),
    (None, 6),
)


@dataclass(frozen=True)
class FeeSplit:
    amount_cents: int
    platform_fee_cents: int
    seller_amount_cents: int


def fee_percent(amount_cents: int) -> int:
    """Return the whole-number fee percentage for ``amount_cents``."""

    if amount_cents < 0:
        raise ValueError(f"Invalid sale amount: {amount_cents!r}")
    for upper_bound, percent in FEE_BANDS:
        if upper_bound is None or amount_cents < upper_bound:
            return percent
    raise EscrowInvariantError("Fee schedule has no open-ended band")


def platform_fee(amount_cents: int) -> int:
    """Return the platform fee in cents; free claims carry no fee."""

    if amount_cents == 0:
        return 0
    fee = amount_cents * fee_percent(amount_cents) // 100
    return max(fee, MINIMUM_FEE_CENTS)


def split_amount(amount_cents: int) -> FeeSplit:
    """Split a buyer-charged amount into platform fee and seller share."""

    fee = platform_fee(amount_cents)
    seller_amount = amount_cents - fee
    if seller_amount < 0:
        raise EscrowInvariantError(
            f"Fee {fee} exceeds sale amount {amount_cents}; raise MINIMUM_PAID_PRICE_CENTS"
        )
    return FeeSplit(amount_cents=amount_cents, platform_fee_cents=fee, seller_amount_cents=seller_amount)


def assert_fee_split(amount_paid_cents: int, platform_fee_cents: int, seller_amount_cents: int) -> None:
    """Re-validate a stored split before money moves."""

    if platform_fee_cents < 0 or seller_amount_cents < 0:
        raise EscrowInvariantError("Negative fee or seller amount on purchase")
    if amount_paid_cents != platform_fee_cents + seller_amount_cents:
        raise EscrowInvariantError(
            f"Fee split mismatch: {amount_paid_cents} != {platform_fee_cents} + {seller_amount_cents}"
        )


def is_valid_listing_price(price_cents: int) -> bool:
    return price_cents == 0 or price_cents >= MINIMUM_PAID_PRICE_CENTS
