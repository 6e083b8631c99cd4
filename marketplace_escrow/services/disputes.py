"""Buyer disputes and staff resolution."""
from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from marketplace_escrow.config import get_settings
from marketplace_escrow.models.purchase import DisputeReason, EscrowStatus, PaymentStatus, Purchase
from marketplace_escrow.models.user import User
from marketplace_escrow.services.escrow_state import ensure_transition, escrow_state_of
from marketplace_escrow.services.escrow_window import can_dispute
from marketplace_escrow.services.fees import assert_fee_split
from marketplace_escrow.services.notifications import (
    DISPUTE_OPENED_BUYER,
    DISPUTE_OPENED_OPERATORS,
    DISPUTE_OPENED_SELLER,
    DISPUTE_RESOLVED,
    DISPUTE_RESOLVED_OPERATORS,
    Notifier,
    notify_quietly,
)
from marketplace_escrow.services.payouts import (
    PaymentTransferGateway,
    TransferError,
    TransferOutcomeUnknown,
    refund_idempotency_key,
    release_idempotency_key,
)
from marketplace_escrow.services.purchases import get_purchase_or_404
from marketplace_escrow.services.settlement import commit_release, reload_purchase
from marketplace_escrow.utils.audit import actor_for_user, log_audit
from marketplace_escrow.utils.errors import (
    AlreadyDisputed,
    DisputeWindowClosed,
    InvalidEscrowTransition,
    NotPurchaseBuyer,
    PaymentGatewayError,
    PaymentNotCaptured,
    PayoutNotPossible,
    UnsupportedResolution,
)
from marketplace_escrow.utils.money import format_cents
from marketplace_escrow.utils.time import utcnow

logger = logging.getLogger(__name__)

WINDOW_CLOSED_MESSAGE = "Cannot dispute this purchase. Escrow may have already been released."


class Resolution(str, Enum):
    RELEASE_TO_SELLER = "RELEASE_TO_SELLER"
    REFUND_BUYER = "REFUND_BUYER"
    PARTIAL_REFUND = "PARTIAL_REFUND"


class DisputeFilter(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    ALL = "all"


def _buyer_recipient(purchase: Purchase) -> str | None:
    if purchase.buyer is not None:
        return purchase.buyer.email
    return purchase.guest_email


def _recompute_dispute_rate(db: Session, seller_id: int) -> float:
    """Increment the seller's dispute count and recompute disputes / sales."""

    db.execute(
        update(User)
        .where(User.id == seller_id)
        .values(total_disputes=User.total_disputes + 1)
        .execution_options(synchronize_session=False)
    )
    disputes, sales = db.execute(
        select(User.total_disputes, User.total_sales).where(User.id == seller_id)
    ).one()
    rate = disputes / sales if sales > 0 else 0.0
    db.execute(
        update(User)
        .where(User.id == seller_id)
        .values(dispute_rate=rate)
        .execution_options(synchronize_session=False)
    )
    return rate


def open_dispute(
    db: Session,
    purchase_id: int,
    *,
    user_id: int,
    reason: DisputeReason,
    notes: str | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Purchase:
    """Freeze escrow for ``purchase_id`` on behalf of its buyer."""

    now = now or utcnow()
    purchase = get_purchase_or_404(db, purchase_id)

    if purchase.buyer_id is None or purchase.buyer_id != user_id:
        logger.info("Dispute rejected: caller is not the buyer", extra={"purchase_id": purchase.id})
        raise NotPurchaseBuyer("Only the buyer can open a dispute.", details={"purchase_id": purchase.id})
    if purchase.escrow_status == EscrowStatus.DISPUTED:
        raise AlreadyDisputed("This purchase is already under dispute.", details={"purchase_id": purchase.id})
    if purchase.escrow_status is None:
        raise PaymentNotCaptured(
            "Payment for this purchase has not been captured.", details={"purchase_id": purchase.id}
        )
    if not can_dispute(purchase.escrow_status, purchase.escrow_expires_at, now):
        logger.info(
            "Dispute rejected: window closed",
            extra={"purchase_id": purchase.id, "escrow_status": purchase.escrow_status},
        )
        raise DisputeWindowClosed(WINDOW_CLOSED_MESSAGE, details={"purchase_id": purchase.id})

    stmt = (
        update(Purchase)
        .where(
            Purchase.id == purchase.id,
            Purchase.escrow_status == EscrowStatus.HOLDING,
            Purchase.stripe_transfer_id.is_(None),
            Purchase.escrow_expires_at > now,
        )
        .values(
            escrow_status=EscrowStatus.DISPUTED,
            disputed_at=now,
            dispute_reason=reason,
            dispute_notes=notes,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount != 1:
        db.rollback()
        current = reload_purchase(db, purchase.id)
        if current is not None and current.escrow_status == EscrowStatus.DISPUTED:
            raise AlreadyDisputed("This purchase is already under dispute.", details={"purchase_id": purchase.id})
        raise DisputeWindowClosed(WINDOW_CLOSED_MESSAGE, details={"purchase_id": purchase.id})

    rate = _recompute_dispute_rate(db, purchase.seller_id)
    log_audit(
        db,
        actor=actor_for_user(user_id),
        action="DISPUTE_OPENED",
        entity="Purchase",
        entity_id=purchase.id,
        data={"reason": reason.value, "seller_id": purchase.seller_id, "dispute_rate": rate},
    )
    db.commit()
    purchase = reload_purchase(db, purchase.id)
    db.refresh(purchase.seller)
    logger.info(
        "Dispute opened",
        extra={"purchase_id": purchase.id, "seller_id": purchase.seller_id, "reason": reason.value},
    )

    if notifier is not None:
        context = {
            "purchase_id": purchase.id,
            "listing_title": purchase.listing.title,
            "reason": reason.value,
            "notes": notes,
        }
        notify_quietly(notifier, purchase.seller.email, DISPUTE_OPENED_SELLER, context)
        notify_quietly(notifier, _buyer_recipient(purchase), DISPUTE_OPENED_BUYER, context)
        notify_quietly(
            notifier,
            get_settings().OPERATOR_ALERT_RECIPIENT,
            DISPUTE_OPENED_OPERATORS,
            {**context, "amount": format_cents(purchase.amount_paid_cents)},
        )
    return purchase


def _parse_resolution(value: Resolution | str) -> Resolution:
    try:
        resolution = Resolution(value)
    except ValueError:
        raise UnsupportedResolution(
            f"Unknown resolution {value!r}.",
            details={"allowed": [Resolution.RELEASE_TO_SELLER.value, Resolution.REFUND_BUYER.value]},
        ) from None
    if resolution == Resolution.PARTIAL_REFUND:
        raise UnsupportedResolution("Partial refunds are not supported; refund in full or release.")
    return resolution


def _is_replay(purchase: Purchase, resolution: Resolution) -> bool:
    target = EscrowStatus.RELEASED if resolution == Resolution.RELEASE_TO_SELLER else EscrowStatus.REFUNDED
    return (
        purchase.escrow_status == target
        and purchase.resolved_at is not None
        and (purchase.resolution or "").startswith(resolution.value)
    )


def _release_to_seller(
    db: Session,
    purchase: Purchase,
    *,
    gateway: PaymentTransferGateway,
    resolved_values: dict[str, Any],
    now: datetime,
) -> str:
    seller = purchase.seller
    if seller is None or not seller.stripe_account_id:
        raise PayoutNotPossible("Seller has no payout account configured.", details={"purchase_id": purchase.id})
    if not purchase.payment_reference:
        raise PayoutNotPossible("Purchase has no payment reference.", details={"purchase_id": purchase.id})
    assert_fee_split(purchase.amount_paid_cents, purchase.platform_fee_cents, purchase.seller_amount_cents)

    try:
        result = gateway.transfer(
            release_idempotency_key(purchase.id),
            purchase.seller_amount_cents,
            seller.stripe_account_id,
            source_reference=purchase.payment_reference,
            metadata={"purchase_id": str(purchase.id), "resolution": Resolution.RELEASE_TO_SELLER.value},
        )
    except TransferOutcomeUnknown as exc:
        logger.warning("Resolution transfer outcome unknown", extra={"purchase_id": purchase.id})
        raise PaymentGatewayError("Transfer outcome unknown; retry the resolution.", details={"error": str(exc)})
    except TransferError as exc:
        logger.error("Resolution transfer failed", extra={"purchase_id": purchase.id, "error": str(exc)})
        raise PaymentGatewayError("Transfer to seller failed.", details={"error": str(exc)})

    released = commit_release(
        db,
        purchase,
        result.transfer_id,
        now=now,
        from_statuses=(EscrowStatus.HOLDING, EscrowStatus.DISPUTED),
        extra_values=resolved_values,
    )
    if not released:
        db.rollback()
        raise InvalidEscrowTransition(
            "Purchase changed while it was being resolved.", details={"purchase_id": purchase.id}
        )
    return result.transfer_id


def _refund_buyer(
    db: Session,
    purchase: Purchase,
    *,
    gateway: PaymentTransferGateway,
    resolved_values: dict[str, Any],
    now: datetime,
) -> str:
    if not purchase.payment_reference:
        raise PayoutNotPossible("Purchase has no payment reference to refund.", details={"purchase_id": purchase.id})

    try:
        result = gateway.refund(
            refund_idempotency_key(purchase.id),
            purchase.payment_reference,
            metadata={"purchase_id": str(purchase.id), "resolution": Resolution.REFUND_BUYER.value},
        )
    except TransferOutcomeUnknown as exc:
        logger.warning("Refund outcome unknown", extra={"purchase_id": purchase.id})
        raise PaymentGatewayError("Refund outcome unknown; retry the resolution.", details={"error": str(exc)})
    except TransferError as exc:
        logger.error("Refund failed", extra={"purchase_id": purchase.id, "error": str(exc)})
        raise PaymentGatewayError("Refund to buyer failed.", details={"error": str(exc)})

    stmt = (
        update(Purchase)
        .where(
            Purchase.id == purchase.id,
            Purchase.status == PaymentStatus.COMPLETED,
            Purchase.escrow_status.in_([EscrowStatus.HOLDING, EscrowStatus.DISPUTED]),
            Purchase.stripe_transfer_id.is_(None),
            Purchase.stripe_refund_id.is_(None),
        )
        .values(
            escrow_status=EscrowStatus.REFUNDED,
            status=PaymentStatus.REFUNDED,
            stripe_refund_id=result.refund_id,
            updated_at=now,
            **resolved_values,
        )
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount != 1:
        db.rollback()
        raise InvalidEscrowTransition(
            "Purchase changed while it was being resolved.", details={"purchase_id": purchase.id}
        )
    return result.refund_id


def resolve_dispute(
    db: Session,
    purchase_id: int,
    *,
    staff: User,
    resolution: Resolution | str,
    notes: str | None = None,
    gateway: PaymentTransferGateway,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Purchase:
    """Settle a held or disputed purchase in full, one way or the other."""

    now = now or utcnow()
    chosen = _parse_resolution(resolution)
    purchase = get_purchase_or_404(db, purchase_id)

    if _is_replay(purchase, chosen):
        logger.info("Resolution replay ignored", extra={"purchase_id": purchase.id})
        return purchase
    target = EscrowStatus.RELEASED if chosen == Resolution.RELEASE_TO_SELLER else EscrowStatus.REFUNDED
    ensure_transition(purchase, target)
    escrow_state_of(purchase)

    resolution_text = f"{chosen.value}: {notes}" if notes else chosen.value
    resolved_values = {"resolved_at": now, "resolved_by": staff.id, "resolution": resolution_text}
    previous_status = purchase.escrow_status

    if chosen == Resolution.RELEASE_TO_SELLER:
        reference = _release_to_seller(db, purchase, gateway=gateway, resolved_values=resolved_values, now=now)
    else:
        reference = _refund_buyer(db, purchase, gateway=gateway, resolved_values=resolved_values, now=now)

    log_audit(
        db,
        actor=actor_for_user(staff.id),
        action="DISPUTE_RESOLVED",
        entity="Purchase",
        entity_id=purchase.id,
        data={
            "resolution": chosen.value,
            "from_status": previous_status.value if previous_status else None,
            "transfer_id" if target == EscrowStatus.RELEASED else "refund_id": reference,
        },
    )
    db.commit()
    purchase = reload_purchase(db, purchase.id)
    logger.info(
        "Dispute resolved",
        extra={"purchase_id": purchase.id, "resolution": chosen.value, "staff_id": staff.id},
    )

    if notifier is not None:
        context = {
            "purchase_id": purchase.id,
            "resolution": chosen.value,
            "notes": notes,
            "amount": format_cents(
                purchase.seller_amount_cents if target == EscrowStatus.RELEASED else purchase.amount_paid_cents
            ),
        }
        notify_quietly(notifier, _buyer_recipient(purchase), DISPUTE_RESOLVED, context)
        notify_quietly(notifier, purchase.seller.email, DISPUTE_RESOLVED, context)
        notify_quietly(
            notifier, get_settings().OPERATOR_ALERT_RECIPIENT, DISPUTE_RESOLVED_OPERATORS, context
        )
    return purchase


def list_disputes(
    db: Session,
    *,
    status_filter: DisputeFilter = DisputeFilter.OPEN,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Purchase], int]:
    """Disputed purchases for staff review, newest dispute first."""

    if status_filter == DisputeFilter.RESOLVED:
        condition = Purchase.resolved_at.is_not(None)
    elif status_filter == DisputeFilter.ALL:
        condition = Purchase.disputed_at.is_not(None)
    else:
        condition = Purchase.escrow_status == EscrowStatus.DISPUTED

    total = int(db.scalar(select(func.count()).select_from(Purchase).where(condition)) or 0)
    stmt = (
        select(Purchase)
        .where(condition)
        .order_by(Purchase.disputed_at.desc(), Purchase.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(db.scalars(stmt).all()), total
