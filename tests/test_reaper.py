from datetime import UTC, datetime, timedelta

from sqlalchemy import select

from marketplace_escrow.models import AuditLog, EscrowStatus, PaymentStatus, Purchase
from marketplace_escrow.services.reaper import reap_stale_purchases

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


def test_reaper_deletes_only_old_pending_purchases(db_session, make_user, make_listing, make_purchase):
    seller = make_user("seller")
    listing = make_listing(seller)
    stale = [
        make_purchase(listing, status=PaymentStatus.PENDING, escrow_status=None, created_at=NOW - timedelta(hours=h))
        for h in (25, 72)
    ]
    fresh = make_purchase(
        listing, status=PaymentStatus.PENDING, escrow_status=None, created_at=NOW - timedelta(hours=23)
    )
    captured = make_purchase(
        listing,
        status=PaymentStatus.COMPLETED,
        escrow_status=EscrowStatus.HOLDING,
        created_at=NOW - timedelta(days=5),
    )

    report = reap_stale_purchases(db_session, now=NOW)

    assert report.deleted_count == 2
    assert report.deleted_ids == sorted(p.id for p in stale)
    remaining = set(db_session.scalars(select(Purchase.id)).all())
    assert fresh.id in remaining
    assert captured.id in remaining
    assert not remaining & set(report.deleted_ids)

    audit = db_session.scalars(select(AuditLog).where(AuditLog.action == "STALE_PURCHASES_REAPED")).one()
    assert audit.actor == "scheduler"
    assert audit.data_json["deleted_ids"] == report.deleted_ids


def test_reaper_with_nothing_to_delete_writes_no_audit(db_session):
    report = reap_stale_purchases(db_session, now=NOW)

    assert report.as_dict() == {"deleted_count": 0, "deleted_ids": []}
    assert db_session.scalars(select(AuditLog).where(AuditLog.action == "STALE_PURCHASES_REAPED")).first() is None


def test_reaper_honours_custom_age(db_session, make_user, make_listing, make_purchase):
    listing = make_listing(make_user("seller"))
    purchase = make_purchase(
        listing, status=PaymentStatus.PENDING, escrow_status=None, created_at=NOW - timedelta(hours=2)
    )

    report = reap_stale_purchases(db_session, max_age=timedelta(hours=1), now=NOW)

    assert report.deleted_ids == [purchase.id]
