"""Purchase schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from marketplace_escrow.models.purchase import DeliveryStatus, DisputeReason, EscrowStatus, PaymentStatus


class PurchaseCreate(BaseModel):
    listing_id: int
    guest_email: EmailStr | None = None


class FreeClaimCreate(BaseModel):
    guest_email: EmailStr | None = None


class PaymentCapture(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=255)


class PurchaseRead(BaseModel):
    id: int
    buyer_id: int | None
    seller_id: int
    listing_id: int
    amount_paid_cents: int
    platform_fee_cents: int
    seller_amount_cents: int
    status: PaymentStatus
    delivery_status: DeliveryStatus
    escrow_status: EscrowStatus | None
    escrow_expires_at: datetime | None
    escrow_released_at: datetime | None
    disputed_at: datetime | None
    resolved_at: datetime | None
    dispute_reason: DisputeReason | None
    resolution: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _fee_split_holds(self) -> "PurchaseRead":
        if self.amount_paid_cents != self.platform_fee_cents + self.seller_amount_cents:
            raise ValueError("amount_paid_cents must equal platform fee plus seller amount")
        return self


class EscrowSummary(BaseModel):
    purchase_id: int
    payment_status: PaymentStatus
    escrow_status: EscrowStatus | None
    escrow_expires_at: datetime | None
    escrow_released_at: datetime | None
    time_remaining: str
    can_dispute: bool
