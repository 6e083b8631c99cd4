"""Trust tier schemas."""
from pydantic import BaseModel

from marketplace_escrow.models.user import BuyerTier


class SpendStatus(BaseModel):
    tier: BuyerTier
    today_spent_cents: int
    daily_limit_cents: int
    remaining_cents: int
    percent_used: float


class FeeQuote(BaseModel):
    amount_cents: int
    fee_percent: int
    platform_fee_cents: int
    seller_amount_cents: int
