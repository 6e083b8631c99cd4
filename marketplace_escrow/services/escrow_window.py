"""Escrow window rules: how long funds are held, and when a dispute is still possible."""
from __future__ import annotations

from datetime import datetime, timedelta

from marketplace_escrow.models.listing import DeliveryMethod, ScanStatus
from marketplace_escrow.models.purchase import EscrowStatus
from marketplace_escrow.models.user import SellerTier
from marketplace_escrow.utils.time import ensure_utc

# Hold durations in hours.
INSTANT_RELEASE_HOURS = 0
NEW_SELLER_OR_UNSCANNED_HOURS = 72
VERIFIED_SELLER_FLAGGED_SCAN_HOURS = 24
REPOSITORY_ACCESS_HOURS = 72
MANUAL_TRANSFER_HOURS = 7 * 24
DOMAIN_TRANSFER_HOURS = 14 * 24
DEFAULT_HOURS = 72

EXTERNAL_ESCROW_THRESHOLD_CENTS = 200_000


def escrow_duration(
    delivery_method: DeliveryMethod,
    seller_tier: SellerTier,
    scan_status: ScanStatus | None = None,
) -> timedelta:
    """Return how long funds are held before they become eligible for release.

    A listing without a scan result is held like one whose scan is still pending.
    """

    if delivery_method == DeliveryMethod.INSTANT_DOWNLOAD:
        if seller_tier == SellerTier.NEW or scan_status in (None, ScanStatus.PENDING):
            hours = NEW_SELLER_OR_UNSCANNED_HOURS
        elif scan_status == ScanStatus.CLEAN:
            hours = INSTANT_RELEASE_HOURS
        else:
            hours = VERIFIED_SELLER_FLAGGED_SCAN_HOURS
    elif delivery_method == DeliveryMethod.REPOSITORY_ACCESS:
        hours = REPOSITORY_ACCESS_HOURS
    elif delivery_method == DeliveryMethod.MANUAL_TRANSFER:
        hours = MANUAL_TRANSFER_HOURS
    elif delivery_method == DeliveryMethod.DOMAIN_TRANSFER:
        hours = DOMAIN_TRANSFER_HOURS
    else:
        hours = DEFAULT_HOURS
    return timedelta(hours=hours)


def escrow_expiry(
    captured_at: datetime,
    delivery_method: DeliveryMethod,
    seller_tier: SellerTier,
    scan_status: ScanStatus | None = None,
) -> datetime:
    """Instant release still yields a timestamp: the capture time itself."""

    return ensure_utc(captured_at) + escrow_duration(delivery_method, seller_tier, scan_status)


def is_release_due(escrow_expires_at: datetime | None, now: datetime) -> bool:
    if escrow_expires_at is None:
        return False
    return ensure_utc(escrow_expires_at) <= ensure_utc(now)


def can_dispute(
    escrow_status: EscrowStatus | None,
    escrow_expires_at: datetime | None,
    now: datetime,
) -> bool:
    if escrow_status != EscrowStatus.HOLDING or escrow_expires_at is None:
        return False
    return ensure_utc(now) < ensure_utc(escrow_expires_at)


def escrow_time_remaining(
    escrow_status: EscrowStatus | None,
    escrow_expires_at: datetime | None,
    now: datetime,
) -> str:
    """Human-readable hold time left, e.g. ``"3d 4h"`` or ``"5h"``."""

    if escrow_status in (EscrowStatus.RELEASED, EscrowStatus.REFUNDED):
        return "Released" if escrow_status == EscrowStatus.RELEASED else "Refunded"
    if escrow_status == EscrowStatus.DISPUTED:
        return "Frozen"
    if escrow_expires_at is None:
        return "Not captured"

    seconds = (ensure_utc(escrow_expires_at) - ensure_utc(now)).total_seconds()
    if seconds <= 0:
        return "Expired"
    hours = int(seconds // 3600)
    days, remaining_hours = divmod(hours, 24)
    if days > 0:
        return f"{days}d {remaining_hours}h"
    return f"{hours}h"


def should_recommend_external_escrow(delivery_method: DeliveryMethod, price_cents: int) -> bool:
    """Domain transfers and high-value sales are better served by a dedicated escrow agent."""

    if delivery_method == DeliveryMethod.DOMAIN_TRANSFER:
        return True
    return price_cents >= EXTERNAL_ESCROW_THRESHOLD_CENTS
