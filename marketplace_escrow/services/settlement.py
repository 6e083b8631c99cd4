"""Escrow settlement: pay sellers once their protection window has elapsed.

Safe to run concurrently and repeatedly. Each release is committed with a
conditional update that only matches while the purchase is still unpaid and in the
expected escrow status, and the gateway call carries an idempotency key derived from
the purchase id, so a second runner can never produce a second payout.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from marketplace_escrow.models.purchase import EscrowStatus, PaymentStatus, Purchase
from marketplace_escrow.services import limits
from marketplace_escrow.services.escrow_state import escrow_state_of
from marketplace_escrow.services.escrow_window import is_release_due
from marketplace_escrow.services.fees import assert_fee_split
from marketplace_escrow.services.notifications import ESCROW_RELEASED_SELLER, Notifier, notify_quietly
from marketplace_escrow.services.payouts import (
    PaymentTransferGateway,
    TransferError,
    TransferOutcomeUnknown,
    release_idempotency_key,
)
from marketplace_escrow.utils.audit import log_audit
from marketplace_escrow.utils.errors import EscrowInvariantError
from marketplace_escrow.utils.money import format_cents
from marketplace_escrow.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SettlementReport:
    processed: int = 0
    released: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def record_failure(self, purchase_id: int, reason: str) -> None:
        self.failed += 1
        self.errors.append(f"{purchase_id}: {reason}")

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "released": self.released,
            "failed": self.failed,
            "errors": list(self.errors),
        }


def reload_purchase(db: Session, purchase_id: int) -> Purchase | None:
    stmt = select(Purchase).where(Purchase.id == purchase_id).execution_options(populate_existing=True)
    return db.scalars(stmt).one_or_none()


def commit_release(
    db: Session,
    purchase: Purchase,
    transfer_id: str | None,
    *,
    now: datetime,
    from_statuses: Iterable[EscrowStatus] = (EscrowStatus.HOLDING,),
    extra_values: dict[str, Any] | None = None,
) -> bool:
    """Move ``purchase`` to RELEASED if nobody else has paid it out yet.

    Returns ``False`` when the row no longer matches: already released, disputed in
    the meantime, or its money fields changed since they were read.
    """

    stmt = (
        update(Purchase)
        .where(
            Purchase.id == purchase.id,
            Purchase.status == PaymentStatus.COMPLETED,
            Purchase.escrow_status.in_(list(from_statuses)),
            Purchase.stripe_transfer_id.is_(None),
            Purchase.seller_amount_cents == purchase.seller_amount_cents,
            Purchase.amount_paid_cents == Purchase.platform_fee_cents + Purchase.seller_amount_cents,
        )
        .values(
            escrow_status=EscrowStatus.RELEASED,
            escrow_released_at=now,
            stripe_transfer_id=transfer_id,
            updated_at=now,
            **(extra_values or {}),
        )
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def _due_purchases(db: Session, now: datetime) -> list[Purchase]:
    stmt = (
        select(Purchase)
        .options(joinedload(Purchase.seller))
        .where(
            Purchase.escrow_status == EscrowStatus.HOLDING,
            Purchase.status == PaymentStatus.COMPLETED,
            Purchase.escrow_expires_at <= now,
        )
        .order_by(Purchase.escrow_expires_at, Purchase.id)
    )
    return list(db.scalars(stmt).unique().all())


def _handle_lost_race(db: Session, purchase_id: int, transfer_id: str, report: SettlementReport) -> None:
    current = reload_purchase(db, purchase_id)
    if current is not None and current.escrow_status == EscrowStatus.RELEASED:
        if current.stripe_transfer_id not in (None, transfer_id):
            logger.error(
                "Escrow released with a different transfer; reconcile manually",
                extra={
                    "purchase_id": purchase_id,
                    "transfer_id": transfer_id,
                    "recorded_transfer_id": current.stripe_transfer_id,
                },
            )
            report.record_failure(purchase_id, "Released by another run with a different transfer")
            return
        logger.debug("Escrow already released by a concurrent run", extra={"purchase_id": purchase_id})
        return

    status = current.escrow_status.value if current is not None and current.escrow_status else "MISSING"
    logger.error(
        "Transfer created but escrow no longer releasable; reconcile manually",
        extra={"purchase_id": purchase_id, "transfer_id": transfer_id, "escrow_status": status},
    )
    report.record_failure(purchase_id, f"Transfer {transfer_id} created but escrow is {status}")


def _settle_one(
    db: Session,
    purchase: Purchase,
    *,
    gateway: PaymentTransferGateway,
    notifier: Notifier | None,
    now: datetime,
    report: SettlementReport,
) -> None:
    seller = purchase.seller
    if seller is None or not seller.stripe_account_id:
        logger.warning("Seller has no payout account", extra={"purchase_id": purchase.id})
        report.record_failure(purchase.id, "Seller has no Stripe account")
        return
    if not purchase.payment_reference:
        logger.warning("Purchase has no payment reference", extra={"purchase_id": purchase.id})
        report.record_failure(purchase.id, "No payment intent")
        return
    if purchase.stripe_transfer_id is not None:
        logger.debug("Transfer already recorded; skipping", extra={"purchase_id": purchase.id})
        return
    if purchase.escrow_status != EscrowStatus.HOLDING:
        logger.debug(
            "Escrow left HOLDING since the run started; skipping",
            extra={"purchase_id": purchase.id, "escrow_status": purchase.escrow_status},
        )
        return
    if not is_release_due(purchase.escrow_expires_at, now):
        logger.debug("Escrow not due yet; skipping", extra={"purchase_id": purchase.id})
        return

    escrow_state_of(purchase)
    assert_fee_split(purchase.amount_paid_cents, purchase.platform_fee_cents, purchase.seller_amount_cents)

    result = gateway.transfer(
        release_idempotency_key(purchase.id),
        purchase.seller_amount_cents,
        seller.stripe_account_id,
        source_reference=purchase.payment_reference,
        metadata={"purchase_id": str(purchase.id), "listing_id": str(purchase.listing_id)},
    )

    if not commit_release(db, purchase, result.transfer_id, now=now):
        db.rollback()
        _handle_lost_race(db, purchase.id, result.transfer_id, report)
        return

    seller.seller_tier = limits.seller_tier_for(limits.seller_sales_count(db, seller.id))
    log_audit(
        db,
        actor="scheduler",
        action="ESCROW_RELEASED",
        entity="Purchase",
        entity_id=purchase.id,
        data={
            "seller_amount_cents": purchase.seller_amount_cents,
            "transfer_id": result.transfer_id,
            "released_at": now.isoformat(),
        },
    )
    db.commit()
    report.released += 1
    logger.info(
        "Escrow released",
        extra={"purchase_id": purchase.id, "seller_id": seller.id, "amount_cents": purchase.seller_amount_cents},
    )

    if notifier is not None:
        notify_quietly(
            notifier,
            seller.email,
            ESCROW_RELEASED_SELLER,
            {"purchase_id": purchase.id, "amount": format_cents(purchase.seller_amount_cents)},
        )


def process_expired_escrows(
    db: Session,
    *,
    gateway: PaymentTransferGateway,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> SettlementReport:
    """Release every HOLDING purchase whose escrow window has elapsed.

    Per-purchase failures are recorded in the report and retried on the next run;
    a failure to load the candidates propagates to the caller.
    """

    now = now or utcnow()
    report = SettlementReport()
    candidates = _due_purchases(db, now)
    logger.info("Escrow settlement run started", extra={"candidates": len(candidates)})

    for purchase in candidates:
        report.processed += 1
        purchase_id = purchase.id
        try:
            _settle_one(db, purchase, gateway=gateway, notifier=notifier, now=now, report=report)
        except TransferOutcomeUnknown as exc:
            db.rollback()
            logger.warning(
                "Transfer outcome unknown; will retry with the same key",
                extra={"purchase_id": purchase_id, "error": str(exc)},
            )
            report.record_failure(purchase_id, f"Transfer outcome unknown: {exc}")
        except TransferError as exc:
            db.rollback()
            logger.error("Transfer failed", extra={"purchase_id": purchase_id, "error": str(exc)})
            report.record_failure(purchase_id, f"Transfer failed: {exc}")
        except EscrowInvariantError as exc:
            db.rollback()
            logger.critical("Escrow invariant violated", extra={"purchase_id": purchase_id, "error": str(exc)})
            report.record_failure(purchase_id, f"Invariant violated: {exc}")
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Database error while releasing escrow", extra={"purchase_id": purchase_id})
            report.record_failure(purchase_id, f"Database error: {exc.__class__.__name__}")

    logger.info("Escrow settlement run finished", extra=report.as_dict())
    return report
