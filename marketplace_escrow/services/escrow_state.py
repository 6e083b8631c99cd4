"""Explicit escrow states for a purchase.

The ``purchases`` table stores escrow as an enum plus several nullable columns. This
module reads those columns back into one variant per state, each carrying only the
fields that state needs, and rejects rows whose columns contradict each other.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from marketplace_escrow.models.purchase import DisputeReason, EscrowStatus, PaymentStatus, Purchase
from marketplace_escrow.utils.errors import EscrowInvariantError, InvalidEscrowTransition
from marketplace_escrow.utils.time import ensure_utc


@dataclass(frozen=True)
class NotCaptured:
    payment_status: PaymentStatus


@dataclass(frozen=True)
class Holding:
    expires_at: datetime


@dataclass(frozen=True)
class Disputed:
    expires_at: datetime
    disputed_at: datetime
    reason: DisputeReason
    notes: str | None


@dataclass(frozen=True)
class Released:
    released_at: datetime
    # ``None`` only for free claims, where nothing is paid out.
    transfer_id: str | None


@dataclass(frozen=True)
class Refunded:
    refund_id: str
    resolved_at: datetime | None


EscrowState = Union[NotCaptured, Holding, Disputed, Released, Refunded]

ALLOWED_TRANSITIONS: dict[EscrowStatus | None, frozenset[EscrowStatus]] = {
    None: frozenset({EscrowStatus.HOLDING}),
    EscrowStatus.HOLDING: frozenset({EscrowStatus.DISPUTED, EscrowStatus.RELEASED, EscrowStatus.REFUNDED}),
    EscrowStatus.DISPUTED: frozenset({EscrowStatus.RELEASED, EscrowStatus.REFUNDED}),
    EscrowStatus.RELEASED: frozenset(),
    EscrowStatus.REFUNDED: frozenset(),
}


def _require(value, purchase: Purchase, field: str):
    if value is None:
        raise EscrowInvariantError(
            f"Purchase {purchase.id} is {purchase.escrow_status} but has no {field}"
        )
    return value


def escrow_state_of(purchase: Purchase) -> EscrowState:
    """Return the typed escrow state of ``purchase``."""

    status = purchase.escrow_status
    if status is None:
        return NotCaptured(payment_status=purchase.status)

    if purchase.status == PaymentStatus.PENDING:
        raise EscrowInvariantError(f"Purchase {purchase.id} has escrow {status} before capture")

    if status == EscrowStatus.HOLDING:
        if purchase.stripe_transfer_id is not None:
            raise EscrowInvariantError(f"Purchase {purchase.id} is HOLDING with a transfer recorded")
        return Holding(expires_at=ensure_utc(_require(purchase.escrow_expires_at, purchase, "expiry")))

    if status == EscrowStatus.DISPUTED:
        if purchase.stripe_transfer_id is not None:
            raise EscrowInvariantError(f"Purchase {purchase.id} is DISPUTED with a transfer recorded")
        return Disputed(
            expires_at=ensure_utc(_require(purchase.escrow_expires_at, purchase, "expiry")),
            disputed_at=ensure_utc(_require(purchase.disputed_at, purchase, "dispute timestamp")),
            reason=_require(purchase.dispute_reason, purchase, "dispute reason"),
            notes=purchase.dispute_notes,
        )

    if status == EscrowStatus.RELEASED:
        if purchase.stripe_transfer_id is None and purchase.seller_amount_cents > 0:
            raise EscrowInvariantError(f"Purchase {purchase.id} is RELEASED without a transfer id")
        return Released(
            released_at=ensure_utc(_require(purchase.escrow_released_at, purchase, "release timestamp")),
            transfer_id=purchase.stripe_transfer_id,
        )

    return Refunded(
        refund_id=_require(purchase.stripe_refund_id, purchase, "refund id"),
        resolved_at=ensure_utc(purchase.resolved_at),
    )


def ensure_transition(purchase: Purchase, target: EscrowStatus) -> None:
    """Raise a typed rejection unless ``purchase`` may move to ``target``."""

    current = purchase.escrow_status
    if target not in ALLOWED_TRANSITIONS[current]:
        current_label = current.value if current is not None else "NOT_CAPTURED"
        raise InvalidEscrowTransition(
            f"Escrow cannot move from {current_label} to {target.value}.",
            details={"purchase_id": purchase.id, "from": current_label, "to": target.value},
        )
