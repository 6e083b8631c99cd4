"""Trust-tier limits: buyer daily spend and seller active listings.

Both limiters recompute from purchase and listing rows on every check instead of
keeping running counters.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from marketplace_escrow.config import get_settings
from marketplace_escrow.models.listing import Listing, ListingStatus
from marketplace_escrow.models.purchase import PaymentStatus, Purchase
from marketplace_escrow.models.user import BuyerTier, SellerTier, User
from marketplace_escrow.utils.errors import ListingLimitReached, SpendLimitExceeded
from marketplace_escrow.utils.money import format_cents
from marketplace_escrow.utils.time import start_of_local_day, utcnow

logger = logging.getLogger(__name__)

BUYER_DAILY_LIMIT_CENTS: dict[BuyerTier, int] = {
    BuyerTier.NEW: 25_000,
    BuyerTier.VERIFIED: 50_000,
    BuyerTier.TRUSTED: 100_000,
}
GUEST_DAILY_LIMIT_CENTS = 5_000

# Highest tier first; a count at or above the threshold earns the tier.
BUYER_TIER_THRESHOLDS: tuple[tuple[BuyerTier, int], ...] = (
    (BuyerTier.TRUSTED, 3),
    (BuyerTier.VERIFIED, 1),
)
SELLER_TIER_THRESHOLDS: tuple[tuple[SellerTier, int], ...] = (
    (SellerTier.PRO, 10),
    (SellerTier.TRUSTED, 3),
    (SellerTier.VERIFIED, 1),
)

# ``None`` means unlimited.
SELLER_LISTING_LIMITS: dict[SellerTier, int | None] = {
    SellerTier.NEW: 1,
    SellerTier.VERIFIED: 3,
    SellerTier.TRUSTED: 10,
    SellerTier.PRO: None,
}


@dataclass(frozen=True)
class SpendCheck:
    allowed: bool
    today_spent_cents: int
    daily_limit_cents: int
    remaining_cents: int
    reason: str | None = None


@dataclass(frozen=True)
class ListingCheck:
    allowed: bool
    current_count: int
    limit: int | None
    tier: SellerTier
    sales_count: int


def buyer_tier_for(purchase_count: int) -> BuyerTier:
    for tier, minimum in BUYER_TIER_THRESHOLDS:
        if purchase_count >= minimum:
            return tier
    return BuyerTier.NEW


def seller_tier_for(sales_count: int) -> SellerTier:
    for tier, minimum in SELLER_TIER_THRESHOLDS:
        if sales_count >= minimum:
            return tier
    return SellerTier.NEW


def daily_spend_limit(tier: BuyerTier | None) -> int:
    return BUYER_DAILY_LIMIT_CENTS.get(tier or BuyerTier.NEW, BUYER_DAILY_LIMIT_CENTS[BuyerTier.NEW])


def listing_limit_for(tier: SellerTier) -> int | None:
    return SELLER_LISTING_LIMITS[tier]


# --- Read-store aggregates ------------------------------------------------


def today_spend_cents(
    db: Session,
    *,
    buyer_id: int | None = None,
    guest_email: str | None = None,
    now: datetime | None = None,
) -> int:
    """Sum of COMPLETED purchases since local midnight for one buyer or guest email."""

    if (buyer_id is None) == (guest_email is None):
        raise ValueError("Exactly one of buyer_id or guest_email is required")

    day_start = start_of_local_day(now or utcnow(), get_settings().SPEND_LIMIT_TIMEZONE)
    stmt = select(func.coalesce(func.sum(Purchase.amount_paid_cents), 0)).where(
        Purchase.status == PaymentStatus.COMPLETED,
        Purchase.created_at >= day_start,
    )
    if buyer_id is not None:
        stmt = stmt.where(Purchase.buyer_id == buyer_id)
    else:
        stmt = stmt.where(func.lower(Purchase.guest_email) == guest_email.strip().lower())
    return int(db.scalar(stmt) or 0)


def completed_purchase_count(db: Session, buyer_id: int) -> int:
    stmt = select(func.count()).select_from(Purchase).where(
        Purchase.buyer_id == buyer_id,
        Purchase.status == PaymentStatus.COMPLETED,
    )
    return int(db.scalar(stmt) or 0)


def seller_sales_count(db: Session, seller_id: int) -> int:
    stmt = select(func.count()).select_from(Purchase).where(
        Purchase.seller_id == seller_id,
        Purchase.status == PaymentStatus.COMPLETED,
    )
    return int(db.scalar(stmt) or 0)


def active_listing_count(db: Session, seller_id: int) -> int:
    stmt = select(func.count()).select_from(Listing).where(
        Listing.seller_id == seller_id,
        Listing.status == ListingStatus.ACTIVE,
        Listing.deleted_at.is_(None),
    )
    return int(db.scalar(stmt) or 0)


# --- Buyer spend limiter --------------------------------------------------


def check_buyer_spend(db: Session, buyer: User, amount_cents: int, *, now: datetime | None = None) -> SpendCheck:
    daily_limit = daily_spend_limit(buyer.buyer_tier)
    spent = today_spend_cents(db, buyer_id=buyer.id, now=now)
    remaining = max(0, daily_limit - spent)
    if amount_cents > remaining:
        return SpendCheck(
            allowed=False,
            today_spent_cents=spent,
            daily_limit_cents=daily_limit,
            remaining_cents=remaining,
            reason=(
                "This purchase exceeds your daily spending limit. "
                f"You have {format_cents(remaining)} remaining today."
            ),
        )
    return SpendCheck(True, spent, daily_limit, remaining)


def check_guest_spend(db: Session, guest_email: str, amount_cents: int, *, now: datetime | None = None) -> SpendCheck:
    spent = today_spend_cents(db, guest_email=guest_email, now=now)
    remaining = max(0, GUEST_DAILY_LIMIT_CENTS - spent)
    if amount_cents > remaining:
        return SpendCheck(
            allowed=False,
            today_spent_cents=spent,
            daily_limit_cents=GUEST_DAILY_LIMIT_CENTS,
            remaining_cents=remaining,
            reason=(
                f"Guest daily limit of {format_cents(GUEST_DAILY_LIMIT_CENTS)} exceeded. "
                f"You have {format_cents(remaining)} remaining today; create an account for higher limits."
            ),
        )
    return SpendCheck(True, spent, GUEST_DAILY_LIMIT_CENTS, remaining)


def enforce_spend_limit(
    db: Session,
    *,
    buyer: User | None,
    guest_email: str | None,
    amount_cents: int,
    now: datetime | None = None,
) -> SpendCheck:
    """Raise ``SpendLimitExceeded`` when the purchase would pass today's cap."""

    if buyer is not None:
        check = check_buyer_spend(db, buyer, amount_cents, now=now)
    elif guest_email:
        check = check_guest_spend(db, guest_email, amount_cents, now=now)
    else:
        raise ValueError("A purchase needs a buyer account or a guest email")

    if not check.allowed:
        logger.info(
            "Spend limit rejected purchase",
            extra={
                "buyer_id": buyer.id if buyer is not None else None,
                "amount_cents": amount_cents,
                "remaining_cents": check.remaining_cents,
            },
        )
        raise SpendLimitExceeded(
            check.reason or "Daily spending limit exceeded.",
            details={
                "today_spent_cents": check.today_spent_cents,
                "daily_limit_cents": check.daily_limit_cents,
                "remaining_cents": check.remaining_cents,
            },
        )
    return check


def spend_status(db: Session, buyer: User, *, now: datetime | None = None) -> dict[str, object]:
    daily_limit = daily_spend_limit(buyer.buyer_tier)
    spent = today_spend_cents(db, buyer_id=buyer.id, now=now)
    return {
        "tier": buyer.buyer_tier,
        "today_spent_cents": spent,
        "daily_limit_cents": daily_limit,
        "remaining_cents": max(0, daily_limit - spent),
        "percent_used": (spent / daily_limit) * 100 if daily_limit > 0 else 0.0,
    }


# --- Seller listing limiter -----------------------------------------------


def check_listing_limit(db: Session, seller_id: int) -> ListingCheck:
    sales = seller_sales_count(db, seller_id)
    current = active_listing_count(db, seller_id)
    tier = seller_tier_for(sales)
    limit = listing_limit_for(tier)
    return ListingCheck(
        allowed=limit is None or current < limit,
        current_count=current,
        limit=limit,
        tier=tier,
        sales_count=sales,
    )


def enforce_listing_limit(db: Session, seller_id: int) -> ListingCheck:
    check = check_listing_limit(db, seller_id)
    if not check.allowed:
        logger.info(
            "Listing limit reached",
            extra={"seller_id": seller_id, "tier": check.tier.value, "active": check.current_count},
        )
        raise ListingLimitReached(
            f"{check.tier.value.title()} sellers can have {check.limit} active "
            f"listing{'s' if check.limit != 1 else ''}. Complete more sales to unlock more.",
            details={
                "tier": check.tier.value,
                "limit": check.limit,
                "current_count": check.current_count,
                "sales_count": check.sales_count,
            },
        )
    return check
