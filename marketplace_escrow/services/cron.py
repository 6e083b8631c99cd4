"""Scheduled jobs: escrow settlement and stale purchase cleanup."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from marketplace_escrow.db import get_sessionmaker
from marketplace_escrow.services.providers import get_notifier, get_transfer_gateway
from marketplace_escrow.services.reaper import ReapReport, reap_stale_purchases
from marketplace_escrow.services.settlement import SettlementReport, process_expired_escrows

logger = logging.getLogger(__name__)


def release_expired_escrows_once() -> SettlementReport:
    """Run one settlement pass in its own session."""

    db: Session = get_sessionmaker()()
    try:
        return process_expired_escrows(db, gateway=get_transfer_gateway(), notifier=get_notifier())
    except Exception:
        db.rollback()
        logger.exception("Escrow settlement run failed")
        raise
    finally:
        db.close()


def cleanup_stale_purchases_once() -> ReapReport:
    db: Session = get_sessionmaker()()
    try:
        return reap_stale_purchases(db)
    except Exception:
        db.rollback()
        logger.exception("Stale purchase cleanup failed")
        raise
    finally:
        db.close()
