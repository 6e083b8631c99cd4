"""Purchase lifecycle: listing creation, checkout records, capture and free claims."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from marketplace_escrow.models.listing import DeliveryMethod, Listing, ListingStatus, ScanStatus
from marketplace_escrow.models.purchase import DeliveryStatus, EscrowStatus, PaymentStatus, Purchase
from marketplace_escrow.models.user import User
from marketplace_escrow.services import limits
from marketplace_escrow.services.escrow_state import ensure_transition
from marketplace_escrow.services.escrow_window import (
    can_dispute,
    escrow_expiry,
    escrow_time_remaining,
    should_recommend_external_escrow,
)
from marketplace_escrow.services.fees import fee_percent, is_valid_listing_price, split_amount
from marketplace_escrow.services.notifications import (
    PURCHASE_CONFIRMATION,
    SALE_NOTIFICATION,
    Notifier,
    notify_quietly,
)
from marketplace_escrow.utils.audit import actor_for_user, log_audit
from marketplace_escrow.utils.errors import (
    AlreadyClaimed,
    InvalidEscrowTransition,
    InvalidListingPrice,
    ListingNotFound,
    ListingUnavailable,
    PaymentNotCaptured,
    PurchaseNotFound,
)
from marketplace_escrow.utils.money import format_cents
from marketplace_escrow.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def get_purchase_or_404(db: Session, purchase_id: int) -> Purchase:
    purchase = db.get(Purchase, purchase_id)
    if purchase is None:
        raise PurchaseNotFound("Purchase not found.", details={"purchase_id": purchase_id})
    return purchase


def get_listing_or_404(db: Session, listing_id: int) -> Listing:
    listing = db.get(Listing, listing_id)
    if listing is None or listing.deleted_at is not None:
        raise ListingNotFound("Listing not found.", details={"listing_id": listing_id})
    return listing


def _reload(db: Session, purchase_id: int) -> Purchase | None:
    stmt = select(Purchase).where(Purchase.id == purchase_id).execution_options(populate_existing=True)
    return db.scalars(stmt).one_or_none()


def _buyer_recipient(purchase: Purchase) -> str | None:
    if purchase.buyer is not None:
        return purchase.buyer.email
    return purchase.guest_email


def _normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    cleaned = email.strip().lower()
    return cleaned or None


# --- Listings -------------------------------------------------------------


def create_listing(
    db: Session,
    *,
    seller: User,
    title: str,
    price_cents: int,
    delivery_method: DeliveryMethod,
    status: ListingStatus = ListingStatus.ACTIVE,
    scan_status: ScanStatus | None = None,
) -> Listing:
    """Create a listing; ACTIVE listings count against the seller's tier cap."""

    if not is_valid_listing_price(price_cents):
        raise InvalidListingPrice(
            "Listings are either free or priced at $1.00 or more.",
            details={"price_cents": price_cents},
        )
    if status == ListingStatus.ACTIVE:
        limits.enforce_listing_limit(db, seller.id)

    listing = Listing(
        seller_id=seller.id,
        title=title,
        price_cents=price_cents,
        delivery_method=delivery_method,
        status=status,
        scan_status=scan_status,
    )
    db.add(listing)
    db.flush()
    log_audit(
        db,
        actor=actor_for_user(seller.id),
        action="LISTING_CREATED",
        entity="Listing",
        entity_id=listing.id,
        data={"price_cents": price_cents, "delivery_method": delivery_method.value, "status": status.value},
    )
    db.commit()
    db.refresh(listing)
    logger.info("Listing created", extra={"listing_id": listing.id, "seller_id": seller.id})
    return listing


def listing_pricing(listing: Listing) -> dict[str, Any]:
    """Fee and escrow hints shown on a listing page."""

    split = split_amount(listing.price_cents)
    return {
        "listing_id": listing.id,
        "price_cents": listing.price_cents,
        "fee_percent": fee_percent(listing.price_cents) if listing.price_cents > 0 else 0,
        "platform_fee_cents": split.platform_fee_cents,
        "seller_amount_cents": split.seller_amount_cents,
        "recommend_external_escrow": should_recommend_external_escrow(
            listing.delivery_method, listing.price_cents
        ),
    }


def _require_available(listing: Listing) -> None:
    if listing.status != ListingStatus.ACTIVE or listing.deleted_at is not None:
        raise ListingUnavailable("This listing is not available.", details={"listing_id": listing.id})


# --- Checkout -------------------------------------------------------------


def create_pending_purchase(
    db: Session,
    *,
    listing_id: int,
    buyer: User | None,
    guest_email: str | None = None,
    now: datetime | None = None,
) -> Purchase:
    """Record a checkout attempt for a paid listing after the spend limiter allows it."""

    now = now or utcnow()
    guest_email = _normalize_email(guest_email) if buyer is None else None
    listing = get_listing_or_404(db, listing_id)
    _require_available(listing)
    if listing.is_free:
        raise ListingUnavailable(
            "Free listings are claimed, not purchased.", details={"listing_id": listing.id}
        )
    if buyer is not None and buyer.id == listing.seller_id:
        raise ListingUnavailable("You cannot purchase your own listing.", details={"listing_id": listing.id})

    limits.enforce_spend_limit(
        db, buyer=buyer, guest_email=guest_email, amount_cents=listing.price_cents, now=now
    )

    split = split_amount(listing.price_cents)
    purchase = Purchase(
        buyer_id=buyer.id if buyer is not None else None,
        guest_email=guest_email,
        seller_id=listing.seller_id,
        listing_id=listing.id,
        amount_paid_cents=split.amount_cents,
        platform_fee_cents=split.platform_fee_cents,
        seller_amount_cents=split.seller_amount_cents,
        status=PaymentStatus.PENDING,
        delivery_status=DeliveryStatus.PENDING,
    )
    db.add(purchase)
    db.flush()
    log_audit(
        db,
        actor=actor_for_user(purchase.buyer_id, fallback="guest"),
        action="PURCHASE_CREATED",
        entity="Purchase",
        entity_id=purchase.id,
        data={
            "listing_id": listing.id,
            "amount_paid_cents": split.amount_cents,
            "platform_fee_cents": split.platform_fee_cents,
            "guest_email": guest_email,
        },
    )
    db.commit()
    db.refresh(purchase)
    logger.info(
        "Pending purchase created",
        extra={"purchase_id": purchase.id, "listing_id": listing.id, "amount_cents": split.amount_cents},
    )
    return purchase


def capture_payment(
    db: Session,
    purchase_id: int,
    *,
    payment_reference: str,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Purchase:
    """Mark a purchase paid and start its escrow hold.

    Replays with the same payment reference return the captured purchase unchanged.
    """

    now = now or utcnow()
    purchase = get_purchase_or_404(db, purchase_id)

    if purchase.status == PaymentStatus.COMPLETED and purchase.escrow_status is not None:
        if purchase.payment_reference == payment_reference:
            logger.info("Capture replay ignored", extra={"purchase_id": purchase.id})
            return purchase
        raise InvalidEscrowTransition(
            "This purchase was already captured with a different payment.",
            details={"purchase_id": purchase.id},
        )
    if purchase.status != PaymentStatus.PENDING:
        raise PaymentNotCaptured(
            f"Purchase is {purchase.status.value} and cannot be captured.",
            details={"purchase_id": purchase.id},
        )
    ensure_transition(purchase, EscrowStatus.HOLDING)

    listing = purchase.listing
    # Tier as of before this sale; the sale being captured does not shorten its own hold.
    sales_before = limits.seller_sales_count(db, purchase.seller_id)
    seller_tier = limits.seller_tier_for(sales_before)
    expires_at = escrow_expiry(now, listing.delivery_method, seller_tier, listing.scan_status)
    delivery_status = (
        DeliveryStatus.AUTO_COMPLETED
        if listing.delivery_method == DeliveryMethod.INSTANT_DOWNLOAD
        else DeliveryStatus.PENDING
    )

    stmt = (
        update(Purchase)
        .where(
            Purchase.id == purchase.id,
            Purchase.status == PaymentStatus.PENDING,
            Purchase.escrow_status.is_(None),
        )
        .values(
            status=PaymentStatus.COMPLETED,
            escrow_status=EscrowStatus.HOLDING,
            escrow_expires_at=expires_at,
            delivery_status=delivery_status,
            payment_reference=payment_reference,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount != 1:
        db.rollback()
        current = _reload(db, purchase.id)
        if current is not None and current.payment_reference == payment_reference:
            logger.debug("Concurrent capture already applied", extra={"purchase_id": purchase.id})
            return current
        raise InvalidEscrowTransition(
            "Purchase changed while it was being captured.", details={"purchase_id": purchase.id}
        )

    db.execute(
        update(User)
        .where(User.id == purchase.seller_id)
        .values(
            total_sales=User.total_sales + 1,
            seller_tier=limits.seller_tier_for(sales_before + 1),
        )
        .execution_options(synchronize_session=False)
    )
    if purchase.buyer_id is not None:
        purchases_made = limits.completed_purchase_count(db, purchase.buyer_id)
        db.execute(
            update(User)
            .where(User.id == purchase.buyer_id)
            .values(buyer_tier=limits.buyer_tier_for(purchases_made))
            .execution_options(synchronize_session=False)
        )

    log_audit(
        db,
        actor="checkout",
        action="PURCHASE_CAPTURED",
        entity="Purchase",
        entity_id=purchase.id,
        data={
            "escrow_status": EscrowStatus.HOLDING.value,
            "escrow_expires_at": expires_at.isoformat(),
            "seller_tier": seller_tier.value,
            "payment_reference": payment_reference,
        },
    )
    db.commit()
    purchase = _reload(db, purchase.id)
    if purchase.seller is not None:
        db.refresh(purchase.seller)
    if purchase.buyer is not None:
        db.refresh(purchase.buyer)
    logger.info(
        "Payment captured; escrow holding",
        extra={"purchase_id": purchase.id, "escrow_expires_at": expires_at.isoformat()},
    )

    if notifier is not None:
        context = {
            "purchase_id": purchase.id,
            "listing_title": listing.title,
            "amount": format_cents(purchase.amount_paid_cents),
            "seller_amount": format_cents(purchase.seller_amount_cents),
        }
        notify_quietly(notifier, _buyer_recipient(purchase), PURCHASE_CONFIRMATION, context)
        notify_quietly(notifier, purchase.seller.email, SALE_NOTIFICATION, context)
    return purchase


# --- Free claims ----------------------------------------------------------


def claim_free_listing(
    db: Session,
    *,
    listing_id: int,
    buyer: User | None,
    guest_email: str | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Purchase:
    """Claim a free listing; the purchase is created already released."""

    now = now or utcnow()
    guest_email = _normalize_email(guest_email) if buyer is None else None
    if buyer is None and guest_email is None:
        raise ValueError("A claim needs a buyer account or a guest email")

    listing = get_listing_or_404(db, listing_id)
    _require_available(listing)
    if not listing.is_free:
        raise ListingUnavailable("This listing is not free.", details={"listing_id": listing.id})
    if buyer is not None and buyer.id == listing.seller_id:
        raise ListingUnavailable("You cannot claim your own listing.", details={"listing_id": listing.id})

    existing_stmt = select(Purchase.id).where(
        Purchase.listing_id == listing.id,
        Purchase.status == PaymentStatus.COMPLETED,
    )
    if buyer is not None:
        existing_stmt = existing_stmt.where(Purchase.buyer_id == buyer.id)
    else:
        existing_stmt = existing_stmt.where(func.lower(Purchase.guest_email) == guest_email)
    existing_id = db.scalars(existing_stmt.limit(1)).first()
    if existing_id is not None:
        raise AlreadyClaimed(
            "You have already claimed this listing.",
            details={"listing_id": listing.id, "purchase_id": existing_id},
        )

    delivery_status = (
        DeliveryStatus.AUTO_COMPLETED
        if listing.delivery_method == DeliveryMethod.INSTANT_DOWNLOAD
        else DeliveryStatus.PENDING
    )
    purchase = Purchase(
        buyer_id=buyer.id if buyer is not None else None,
        guest_email=guest_email,
        seller_id=listing.seller_id,
        listing_id=listing.id,
        amount_paid_cents=0,
        platform_fee_cents=0,
        seller_amount_cents=0,
        status=PaymentStatus.COMPLETED,
        delivery_status=delivery_status,
        escrow_status=EscrowStatus.RELEASED,
        escrow_expires_at=now,
        escrow_released_at=now,
    )
    db.add(purchase)
    db.flush()
    log_audit(
        db,
        actor=actor_for_user(purchase.buyer_id, fallback="guest"),
        action="FREE_LISTING_CLAIMED",
        entity="Purchase",
        entity_id=purchase.id,
        data={"listing_id": listing.id, "guest_email": guest_email},
    )
    db.commit()
    db.refresh(purchase)
    logger.info("Free listing claimed", extra={"purchase_id": purchase.id, "listing_id": listing.id})

    if notifier is not None:
        context = {"purchase_id": purchase.id, "listing_title": listing.title, "amount": format_cents(0)}
        notify_quietly(notifier, _buyer_recipient(purchase), PURCHASE_CONFIRMATION, context)
        notify_quietly(notifier, listing.seller.email, SALE_NOTIFICATION, context)
    return purchase


# --- Read helpers ---------------------------------------------------------


def escrow_summary(purchase: Purchase, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    return {
        "purchase_id": purchase.id,
        "payment_status": purchase.status,
        "escrow_status": purchase.escrow_status,
        "escrow_expires_at": ensure_utc(purchase.escrow_expires_at),
        "escrow_released_at": ensure_utc(purchase.escrow_released_at),
        "time_remaining": escrow_time_remaining(purchase.escrow_status, purchase.escrow_expires_at, now),
        "can_dispute": can_dispute(purchase.escrow_status, purchase.escrow_expires_at, now),
    }
