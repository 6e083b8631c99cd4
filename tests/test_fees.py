import pytest

from marketplace_escrow.services.fees import (
    MINIMUM_FEE_CENTS,
    assert_fee_split,
    fee_percent,
    is_valid_listing_price,
    platform_fee,
    split_amount,
)
from marketplace_escrow.utils.errors import EscrowInvariantError


@pytest.mark.parametrize(
    ("amount_cents", "expected_percent"),
    [
        (1, 2),
        (2_499, 2),
        (2_500, 3),
        (9_999, 3),
        (10_000, 4),
        (49_999, 4),
        (50_000, 5),
        (199_999, 5),
        (200_000, 6),
        (5_000_000, 6),
    ],
)
def test_fee_band_boundaries_are_inclusive_below(amount_cents, expected_percent):
    assert fee_percent(amount_cents) == expected_percent


def test_fee_is_floored_to_the_cent():
    # 3% of $33.33 is 99.99 cents
    assert platform_fee(3_333) == 99
    assert platform_fee(5_000) == 150
    assert platform_fee(200_000) == 12_000


def test_minimum_fee_applies_to_small_sales():
    assert platform_fee(100) == MINIMUM_FEE_CENTS
    assert platform_fee(2_499) == MINIMUM_FEE_CENTS
    assert platform_fee(2_500) == 75


def test_free_claims_carry_no_fee():
    split = split_amount(0)
    assert split.platform_fee_cents == 0
    assert split.seller_amount_cents == 0


@pytest.mark.parametrize("amount_cents", [100, 101, 2_499, 2_500, 9_999, 10_000, 12_345, 199_999, 200_000, 987_654])
def test_split_always_adds_up(amount_cents):
    split = split_amount(amount_cents)
    assert split.platform_fee_cents + split.seller_amount_cents == amount_cents
    assert split.platform_fee_cents >= MINIMUM_FEE_CENTS
    assert split.seller_amount_cents >= 0


def test_fifty_dollar_sale_split():
    split = split_amount(5_000)
    assert split.platform_fee_cents == 150
    assert split.seller_amount_cents == 4_850


def test_fee_larger_than_price_is_an_invariant_error():
    with pytest.raises(EscrowInvariantError):
        split_amount(49)


def test_negative_amount_rejected():
    with pytest.raises(ValueError):
        fee_percent(-1)


def test_listing_price_floor():
    assert is_valid_listing_price(0)
    assert not is_valid_listing_price(99)
    assert is_valid_listing_price(100)


def test_assert_fee_split_detects_mismatch():
    assert_fee_split(5_000, 150, 4_850)
    with pytest.raises(EscrowInvariantError):
        assert_fee_split(5_000, 150, 4_851)
    with pytest.raises(EscrowInvariantError):
        assert_fee_split(100, 150, -50)
