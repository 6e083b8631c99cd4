"""Delete purchase attempts that never reached payment capture."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.orm import Session

from marketplace_escrow.config import get_settings
from marketplace_escrow.models.purchase import PaymentStatus, Purchase
from marketplace_escrow.utils.audit import log_audit
from marketplace_escrow.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ReapReport:
    deleted_count: int = 0
    deleted_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {"deleted_count": self.deleted_count, "deleted_ids": list(self.deleted_ids)}


def reap_stale_purchases(
    db: Session,
    *,
    max_age: timedelta | None = None,
    now: datetime | None = None,
) -> ReapReport:
    """Hard-delete PENDING purchases older than ``max_age``.

    Rows with an escrow status are never touched, even if their payment status is
    somehow still PENDING.
    """

    now = now or utcnow()
    if max_age is None:
        max_age = timedelta(hours=get_settings().STALE_PURCHASE_MAX_AGE_HOURS)
    threshold = now - max_age

    stmt = (
        delete(Purchase)
        .where(
            Purchase.status == PaymentStatus.PENDING,
            Purchase.escrow_status.is_(None),
            Purchase.created_at < threshold,
        )
        .returning(Purchase.id)
        .execution_options(synchronize_session=False)
    )
    deleted_ids = sorted(db.scalars(stmt).all())
    report = ReapReport(deleted_count=len(deleted_ids), deleted_ids=deleted_ids)

    if deleted_ids:
        log_audit(
            db,
            actor="scheduler",
            action="STALE_PURCHASES_REAPED",
            entity="Purchase",
            entity_id=None,
            data={"deleted_ids": deleted_ids, "threshold": threshold.isoformat()},
        )
    db.commit()
    logger.info("Stale purchases reaped", extra=report.as_dict())
    return report
