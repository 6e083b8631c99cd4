"""Trust tier and fee lookup endpoints."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace_escrow.db import get_db
from marketplace_escrow.models.user import User
from marketplace_escrow.schemas.limits import FeeQuote, SpendStatus
from marketplace_escrow.security import require_user
from marketplace_escrow.services import fees
from marketplace_escrow.services import limits as limits_service

router = APIRouter(tags=["limits"])


@router.get("/limits/spend", response_model=SpendStatus)
def spend_status(db: Session = Depends(get_db), user: User = Depends(require_user)) -> dict:
    return limits_service.spend_status(db, user)


@router.get("/fees/quote", response_model=FeeQuote)
def fee_quote(amount_cents: int = Query(..., ge=0)) -> FeeQuote:
    split = fees.split_amount(amount_cents)
    return FeeQuote(
        amount_cents=amount_cents,
        fee_percent=fees.fee_percent(amount_cents) if amount_cents > 0 else 0,
        platform_fee_cents=split.platform_fee_cents,
        seller_amount_cents=split.seller_amount_cents,
    )
