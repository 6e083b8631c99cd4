"""Listing schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from marketplace_escrow.models.listing import DeliveryMethod, ListingStatus, ScanStatus


class ListingCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    price_cents: int = Field(..., ge=0)
    delivery_method: DeliveryMethod
    status: ListingStatus = ListingStatus.ACTIVE
    scan_status: ScanStatus | None = None


class ListingRead(BaseModel):
    id: int
    seller_id: int
    title: str
    price_cents: int
    delivery_method: DeliveryMethod
    status: ListingStatus
    scan_status: ScanStatus | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ListingPricing(BaseModel):
    listing_id: int
    price_cents: int
    fee_percent: int
    platform_fee_cents: int
    seller_amount_cents: int
    recommend_external_escrow: bool


class ListingLimitRead(BaseModel):
    allowed: bool
    current_count: int
    limit: int | None
    tier: str
    sales_count: int
