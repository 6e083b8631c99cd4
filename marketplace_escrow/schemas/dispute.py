"""Dispute schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from marketplace_escrow.models.purchase import DisputeReason, EscrowStatus
from marketplace_escrow.services.disputes import Resolution


class DisputeCreate(BaseModel):
    reason: DisputeReason
    notes: str | None = Field(default=None, max_length=2000)


class DisputeResolve(BaseModel):
    resolution: Resolution
    notes: str | None = Field(default=None, max_length=2000)


class DisputeOpened(BaseModel):
    purchase_id: int
    escrow_status: EscrowStatus
    disputed_at: datetime | None


class DisputeRead(BaseModel):
    id: int
    buyer_id: int | None
    seller_id: int
    listing_id: int
    amount_paid_cents: int
    escrow_status: EscrowStatus | None
    dispute_reason: DisputeReason | None
    dispute_notes: str | None
    disputed_at: datetime | None
    resolved_at: datetime | None
    resolved_by: int | None
    resolution: str | None

    model_config = ConfigDict(from_attributes=True)


class DisputePage(BaseModel):
    items: list[DisputeRead]
    total: int
    page: int
    page_size: int
