"""Job trigger endpoints for external cron infrastructure."""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace_escrow.db import get_db
from marketplace_escrow.schemas.jobs import CleanupResult, SettlementResult
from marketplace_escrow.security import require_internal_token
from marketplace_escrow.services.notifications import Notifier
from marketplace_escrow.services.payouts import PaymentTransferGateway
from marketplace_escrow.services.providers import get_notifier, get_transfer_gateway
from marketplace_escrow.services.reaper import reap_stale_purchases
from marketplace_escrow.services.settlement import process_expired_escrows
from marketplace_escrow.utils.errors import error_response

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_internal_token)])
logger = logging.getLogger(__name__)


@router.post("/process-escrow", response_model=SettlementResult)
def process_escrow(
    db: Session = Depends(get_db),
    gateway: PaymentTransferGateway = Depends(get_transfer_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    try:
        report = process_expired_escrows(db, gateway=gateway, notifier=notifier)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Escrow settlement run failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_response("SETTLEMENT_FAILED", "Escrow settlement run failed."),
        )
    return report.as_dict()


@router.post("/cleanup-pending", response_model=CleanupResult)
def cleanup_pending(db: Session = Depends(get_db)) -> dict:
    try:
        report = reap_stale_purchases(db)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Stale purchase cleanup failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_response("CLEANUP_FAILED", "Stale purchase cleanup failed."),
        )
    return report.as_dict()
