from datetime import UTC, datetime, timedelta

import pytest

from marketplace_escrow.models import BuyerTier, DeliveryMethod, ListingStatus, PaymentStatus, SellerTier
from marketplace_escrow.services import limits
from marketplace_escrow.services import purchases as purchase_service
from marketplace_escrow.utils.errors import ListingLimitReached, SpendLimitExceeded
from marketplace_escrow.utils.time import start_of_local_day

NOW = datetime(2026, 10, 17, 15, 0, tzinfo=UTC)


def _completed_sales(make_listing, make_purchase, seller, buyer, count):
    for _ in range(count):
        listing = make_listing(seller, status=ListingStatus.SOLD)
        make_purchase(listing, buyer=buyer, status=PaymentStatus.COMPLETED)


@pytest.mark.parametrize(
    ("sales", "tier"),
    [(0, SellerTier.NEW), (1, SellerTier.VERIFIED), (2, SellerTier.VERIFIED), (3, SellerTier.TRUSTED),
     (9, SellerTier.TRUSTED), (10, SellerTier.PRO)],
)
def test_seller_tier_thresholds(sales, tier):
    assert limits.seller_tier_for(sales) == tier


@pytest.mark.parametrize(
    ("purchases", "tier"), [(0, BuyerTier.NEW), (1, BuyerTier.VERIFIED), (2, BuyerTier.VERIFIED), (3, BuyerTier.TRUSTED)]
)
def test_buyer_tier_thresholds(purchases, tier):
    assert limits.buyer_tier_for(purchases) == tier


def test_daily_caps():
    assert limits.daily_spend_limit(BuyerTier.NEW) == 25_000
    assert limits.daily_spend_limit(BuyerTier.VERIFIED) == 50_000
    assert limits.daily_spend_limit(BuyerTier.TRUSTED) == 100_000
    assert limits.GUEST_DAILY_LIMIT_CENTS == 5_000


def test_new_buyer_with_240_spent_is_capped(db_session, make_user, make_listing, make_purchase):
    seller = make_user("seller")
    buyer = make_user("buyer")
    listing = make_listing(seller, price_cents=24_000)
    make_purchase(listing, buyer=buyer, created_at=NOW - timedelta(hours=2))

    rejected = limits.check_buyer_spend(db_session, buyer, 1_100, now=NOW)
    assert not rejected.allowed
    assert rejected.today_spent_cents == 24_000
    assert rejected.remaining_cents == 1_000
    assert "$10.00 remaining today" in rejected.reason

    allowed = limits.check_buyer_spend(db_session, buyer, 1_000, now=NOW)
    assert allowed.allowed

    with pytest.raises(SpendLimitExceeded) as excinfo:
        limits.enforce_spend_limit(db_session, buyer=buyer, guest_email=None, amount_cents=1_100, now=NOW)
    assert excinfo.value.status_code == 422
    assert excinfo.value.details["remaining_cents"] == 1_000


def test_only_todays_completed_purchases_count(db_session, make_user, make_listing, make_purchase):
    seller = make_user("seller")
    buyer = make_user("buyer")
    listing = make_listing(seller, price_cents=10_000)
    make_purchase(listing, buyer=buyer, created_at=NOW - timedelta(days=1))
    make_purchase(listing, buyer=buyer, status=PaymentStatus.PENDING, escrow_status=None, created_at=NOW)
    make_purchase(listing, buyer=buyer, created_at=NOW - timedelta(minutes=5))

    assert limits.today_spend_cents(db_session, buyer_id=buyer.id, now=NOW) == 10_000


def test_guest_cap_is_keyed_by_email(db_session, make_user, make_listing, make_purchase):
    seller = make_user("seller")
    listing = make_listing(seller, price_cents=3_000)
    make_purchase(listing, guest_email="guest@example.com", created_at=NOW - timedelta(hours=1))

    check = limits.check_guest_spend(db_session, "Guest@Example.com", 2_500, now=NOW)
    assert not check.allowed
    assert check.remaining_cents == 2_000
    assert check.reason.startswith("Guest daily limit of $50.00 exceeded.")

    other = limits.check_guest_spend(db_session, "someone-else@example.com", 5_000, now=NOW)
    assert other.allowed


def test_trusted_account_history_does_not_lift_guest_cap(db_session, make_user, make_listing):
    seller = make_user("seller")
    make_user("buyer", buyer_tier=BuyerTier.TRUSTED)
    listing = make_listing(seller, price_cents=6_000)

    with pytest.raises(SpendLimitExceeded):
        purchase_service.create_pending_purchase(
            db_session, listing_id=listing.id, buyer=None, guest_email="trusted@example.com", now=NOW
        )


def test_local_midnight_respects_timezone():
    now = datetime(2026, 10, 17, 3, 0, tzinfo=UTC)
    assert start_of_local_day(now, "UTC") == datetime(2026, 10, 17, 0, 0, tzinfo=UTC)
    # 23:00 on the 16th in New York (EDT, UTC-4)
    assert start_of_local_day(now, "America/New_York") == datetime(2026, 10, 16, 4, 0, tzinfo=UTC)


def test_spend_status(db_session, make_user, make_listing, make_purchase):
    seller = make_user("seller")
    buyer = make_user("buyer", buyer_tier=BuyerTier.VERIFIED)
    listing = make_listing(seller, price_cents=12_500)
    make_purchase(listing, buyer=buyer, created_at=NOW - timedelta(hours=1))

    status = limits.spend_status(db_session, buyer, now=NOW)
    assert status["tier"] == BuyerTier.VERIFIED
    assert status["daily_limit_cents"] == 50_000
    assert status["remaining_cents"] == 37_500
    assert status["percent_used"] == pytest.approx(25.0)


def test_new_seller_gets_one_active_listing(db_session, make_user, make_listing):
    seller = make_user("seller")
    make_listing(seller)

    with pytest.raises(ListingLimitReached) as excinfo:
        limits.enforce_listing_limit(db_session, seller.id)
    assert excinfo.value.details == {"tier": "NEW", "limit": 1, "current_count": 1, "sales_count": 0}


def test_verified_seller_at_cap_is_rejected(db_session, make_user, make_listing, make_purchase):
    seller = make_user("seller")
    buyer = make_user("buyer")
    _completed_sales(make_listing, make_purchase, seller, buyer, 2)
    for _ in range(3):
        make_listing(seller)

    check = limits.check_listing_limit(db_session, seller.id)
    assert check.tier == SellerTier.VERIFIED
    assert check.current_count == 3
    assert not check.allowed

    with pytest.raises(ListingLimitReached):
        purchase_service.create_listing(
            db_session,
            seller=seller,
            title="fourth",
            price_cents=1_000,
            delivery_method=DeliveryMethod.INSTANT_DOWNLOAD,
        )


def test_third_sale_promotes_seller_to_trusted(db_session, make_user, make_listing, make_purchase):
    seller = make_user("seller")
    buyer = make_user("buyer")
    _completed_sales(make_listing, make_purchase, seller, buyer, 3)
    for _ in range(3):
        make_listing(seller)

    check = limits.check_listing_limit(db_session, seller.id)
    assert check.tier == SellerTier.TRUSTED
    assert check.limit == 10
    assert check.allowed

    listing = purchase_service.create_listing(
        db_session,
        seller=seller,
        title="fourth",
        price_cents=1_000,
        delivery_method=DeliveryMethod.INSTANT_DOWNLOAD,
    )
    assert listing.status == ListingStatus.ACTIVE


def test_removed_and_deleted_listings_do_not_count(db_session, make_user, make_listing):
    seller = make_user("seller")
    make_listing(seller, status=ListingStatus.REMOVED)
    make_listing(seller, status=ListingStatus.DRAFT)
    make_listing(seller, deleted_at=NOW)

    assert limits.active_listing_count(db_session, seller.id) == 0
    assert limits.check_listing_limit(db_session, seller.id).allowed


def test_pro_sellers_are_unlimited(db_session, make_user, make_listing, make_purchase):
    seller = make_user("seller")
    buyer = make_user("buyer")
    _completed_sales(make_listing, make_purchase, seller, buyer, 10)
    for _ in range(25):
        make_listing(seller)

    check = limits.check_listing_limit(db_session, seller.id)
    assert check.tier == SellerTier.PRO
    assert check.limit is None
    assert check.allowed
