from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from marketplace_escrow.models import AuditLog, DisputeReason, EscrowStatus, PaymentStatus, SellerTier
from marketplace_escrow.services.disputes import open_dispute
from marketplace_escrow.services.notifications import ESCROW_RELEASED_SELLER
from marketplace_escrow.services.payouts import TransferError, TransferOutcomeUnknown
from marketplace_escrow.services import settlement
from marketplace_escrow.services.settlement import process_expired_escrows

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


@pytest.fixture
def seller(make_user):
    return make_user("seller", stripe_account_id="acct_seller")


@pytest.fixture
def buyer(make_user):
    return make_user("buyer")


def _release_audits(db_session, purchase_id):
    return db_session.scalars(
        select(AuditLog).where(AuditLog.action == "ESCROW_RELEASED", AuditLog.entity_id == purchase_id)
    ).all()


def test_release_happens_exactly_at_expiry(db_session, seller, buyer, make_listing, make_purchase, gateway, notifier):
    listing = make_listing(seller)
    due = make_purchase(listing, buyer=buyer, escrow_expires_at=NOW)
    not_yet = make_purchase(listing, buyer=buyer, escrow_expires_at=NOW + timedelta(microseconds=1))

    report = process_expired_escrows(db_session, gateway=gateway, notifier=notifier, now=NOW)

    assert report.as_dict() == {"processed": 1, "released": 1, "failed": 0, "errors": []}
    db_session.refresh(due)
    db_session.refresh(not_yet)
    assert due.escrow_status == EscrowStatus.RELEASED
    assert due.escrow_released_at.replace(tzinfo=UTC) == NOW
    assert due.stripe_transfer_id == gateway.transfers[f"purchase:{due.id}:release"].transfer_id
    assert not_yet.escrow_status == EscrowStatus.HOLDING
    assert gateway.transfer_calls == [(f"purchase:{due.id}:release", 4_850, "acct_seller")]
    assert notifier.templates() == [ESCROW_RELEASED_SELLER]
    assert len(_release_audits(db_session, due.id)) == 1


def test_disputed_refunded_and_pending_purchases_are_left_alone(
    db_session, seller, buyer, make_listing, make_purchase, gateway
):
    listing = make_listing(seller)
    expired = NOW - timedelta(days=1)
    make_purchase(
        listing,
        buyer=buyer,
        escrow_status=EscrowStatus.DISPUTED,
        escrow_expires_at=expired,
        disputed_at=expired - timedelta(hours=1),
        dispute_reason=DisputeReason.OTHER,
    )
    make_purchase(
        listing,
        buyer=buyer,
        status=PaymentStatus.REFUNDED,
        escrow_status=EscrowStatus.REFUNDED,
        escrow_expires_at=expired,
        stripe_refund_id="re_done",
    )
    make_purchase(listing, buyer=buyer, status=PaymentStatus.PENDING, escrow_status=None)

    report = process_expired_escrows(db_session, gateway=gateway, now=NOW)

    assert report.processed == 0
    assert gateway.transfer_calls == []


def test_missing_payout_details_are_reported(db_session, make_user, buyer, make_listing, make_purchase, gateway):
    no_account = make_user("no-account")
    with_account = make_user("with-account", stripe_account_id="acct_ok")
    first = make_purchase(make_listing(no_account), buyer=buyer, escrow_expires_at=NOW - timedelta(hours=2))
    second = make_purchase(
        make_listing(with_account), buyer=buyer, payment_reference=None, escrow_expires_at=NOW - timedelta(hours=1)
    )

    report = process_expired_escrows(db_session, gateway=gateway, now=NOW)

    assert report.processed == 2
    assert report.released == 0
    assert report.failed == 2
    assert report.errors == [f"{first.id}: Seller has no Stripe account", f"{second.id}: No payment intent"]
    assert gateway.transfer_calls == []


@pytest.mark.parametrize(
    "failure",
    [TransferOutcomeUnknown("connection reset"), TransferError("account restricted")],
)
def test_failed_transfer_is_retried_with_same_key(
    db_session, seller, buyer, make_listing, make_purchase, gateway, failure
):
    purchase = make_purchase(make_listing(seller), buyer=buyer, escrow_expires_at=NOW - timedelta(minutes=5))
    gateway.fail_with = failure

    first = process_expired_escrows(db_session, gateway=gateway, now=NOW)
    assert first.failed == 1
    assert first.released == 0
    db_session.refresh(purchase)
    assert purchase.escrow_status == EscrowStatus.HOLDING
    assert purchase.stripe_transfer_id is None

    gateway.fail_with = None
    second = process_expired_escrows(db_session, gateway=gateway, now=NOW + timedelta(minutes=10))
    assert second.released == 1
    keys = [key for key, _, _ in gateway.transfer_calls]
    assert keys == [f"purchase:{purchase.id}:release"] * 2


def test_concurrent_runs_release_once(db_session, seller, buyer, make_listing, make_purchase, gateway):
    purchase = make_purchase(make_listing(seller), buyer=buyer, escrow_expires_at=NOW - timedelta(minutes=5))
    inner_reports = []

    def _second_runner(_key):
        inner_reports.append(process_expired_escrows(db_session, gateway=gateway, now=NOW))

    gateway.on_transfer = _second_runner
    outer = process_expired_escrows(db_session, gateway=gateway, now=NOW)

    assert inner_reports[0].released == 1
    assert outer.released == 0
    assert outer.failed == 0
    assert len(gateway.transfers) == 1
    assert len(_release_audits(db_session, purchase.id)) == 1
    db_session.refresh(purchase)
    assert purchase.stripe_transfer_id == gateway.transfers[f"purchase:{purchase.id}:release"].transfer_id


def test_dispute_landing_mid_release_is_flagged(db_session, seller, buyer, make_listing, make_purchase, gateway):
    expires = NOW - timedelta(minutes=5)
    purchase = make_purchase(make_listing(seller), buyer=buyer, escrow_expires_at=expires)

    def _buyer_disputes(_key):
        open_dispute(
            db_session,
            purchase.id,
            user_id=buyer.id,
            reason=DisputeReason.NOT_AS_DESCRIBED,
            now=expires - timedelta(minutes=1),
        )

    gateway.on_transfer = _buyer_disputes
    report = process_expired_escrows(db_session, gateway=gateway, now=NOW)

    assert report.released == 0
    assert report.failed == 1
    assert "created but escrow is DISPUTED" in report.errors[0]
    db_session.refresh(purchase)
    assert purchase.escrow_status == EscrowStatus.DISPUTED
    assert purchase.stripe_transfer_id is None
    assert _release_audits(db_session, purchase.id) == []


def test_second_run_is_a_no_op(db_session, seller, buyer, make_listing, make_purchase, gateway):
    make_purchase(make_listing(seller), buyer=buyer, escrow_expires_at=NOW - timedelta(minutes=5))

    assert process_expired_escrows(db_session, gateway=gateway, now=NOW).released == 1
    again = process_expired_escrows(db_session, gateway=gateway, now=NOW + timedelta(minutes=15))

    assert again.as_dict() == {"processed": 0, "released": 0, "failed": 0, "errors": []}
    assert len(gateway.transfer_calls) == 1


def test_release_refreshes_seller_tier(db_session, seller, buyer, make_listing, make_purchase, gateway):
    listing = make_listing(seller)
    for _ in range(3):
        make_purchase(listing, buyer=buyer, escrow_expires_at=NOW - timedelta(minutes=5))

    report = process_expired_escrows(db_session, gateway=gateway, now=NOW)

    assert report.released == 3
    db_session.refresh(seller)
    assert seller.seller_tier == SellerTier.TRUSTED


def test_candidate_no_longer_due_is_skipped(
    monkeypatch, db_session, seller, buyer, make_listing, make_purchase, gateway
):
    purchase = make_purchase(make_listing(seller), buyer=buyer, escrow_expires_at=NOW + timedelta(hours=1))
    monkeypatch.setattr(settlement, "_due_purchases", lambda db, now: [purchase])

    report = settlement.process_expired_escrows(db_session, gateway=gateway, now=NOW)

    assert report.as_dict() == {"processed": 1, "released": 0, "failed": 0, "errors": []}
    assert gateway.transfer_calls == []
    db_session.refresh(purchase)
    assert purchase.escrow_status == EscrowStatus.HOLDING
