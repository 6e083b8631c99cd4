"""Purchase model: the record escrow, disputes and payouts revolve around."""
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, Enum as SqlEnum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class PaymentStatus(str, PyEnum):
    """Set by the checkout flow; only COMPLETED purchases enter escrow."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"


class DeliveryStatus(str, PyEnum):
    PENDING = "PENDING"
    DELIVERED = "DELIVERED"
    CONFIRMED = "CONFIRMED"
    AUTO_COMPLETED = "AUTO_COMPLETED"


class EscrowStatus(str, PyEnum):
    """Status of the funds held for a purchase."""

    HOLDING = "HOLDING"
    DISPUTED = "DISPUTED"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"


class DisputeReason(str, PyEnum):
    FILES_EMPTY = "FILES_EMPTY"
    NOT_AS_DESCRIBED = "NOT_AS_DESCRIBED"
    SELLER_UNRESPONSIVE = "SELLER_UNRESPONSIVE"
    SUSPECTED_STOLEN = "SUSPECTED_STOLEN"
    MALWARE = "MALWARE"
    OTHER = "OTHER"


class Purchase(Base):
    """One buyer's purchase of one listing.

    ``stripe_transfer_id`` is the payout marker: once set, funds have moved to the
    seller and no code path may move them again.
    """

    __tablename__ = "purchases"
    __table_args__ = (
        CheckConstraint(
            "amount_paid_cents = platform_fee_cents + seller_amount_cents",
            name="ck_purchases_fee_split",
        ),
        CheckConstraint("platform_fee_cents >= 0", name="ck_purchases_fee_non_negative"),
        CheckConstraint("seller_amount_cents >= 0", name="ck_purchases_seller_amount_non_negative"),
        CheckConstraint(
            "buyer_id IS NOT NULL OR guest_email IS NOT NULL",
            name="ck_purchases_buyer_or_guest",
        ),
        CheckConstraint(
            "escrow_status IS NULL OR status <> 'PENDING'",
            name="ck_purchases_escrow_requires_capture",
        ),
        CheckConstraint(
            "escrow_status <> 'RELEASED' OR stripe_transfer_id IS NOT NULL OR seller_amount_cents = 0",
            name="ck_purchases_released_has_transfer",
        ),
        CheckConstraint(
            "escrow_status <> 'DISPUTED' OR disputed_at IS NOT NULL",
            name="ck_purchases_disputed_has_timestamp",
        ),
        Index("ix_purchases_escrow_due", "escrow_status", "escrow_expires_at"),
        Index("ix_purchases_status_created", "status", "created_at"),
        Index("ix_purchases_buyer_created", "buyer_id", "created_at"),
        Index("ix_purchases_guest_created", "guest_email", "created_at"),
    )

    buyer_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    guest_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    seller_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    listing_id: Mapped[int] = mapped_column(ForeignKey("listings.id"), nullable=False, index=True)

    amount_paid_cents: Mapped[int] = mapped_column(nullable=False)
    platform_fee_cents: Mapped[int] = mapped_column(nullable=False)
    seller_amount_cents: Mapped[int] = mapped_column(nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        SqlEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        SqlEnum(DeliveryStatus), default=DeliveryStatus.PENDING, nullable=False
    )
    escrow_status: Mapped[EscrowStatus | None] = mapped_column(SqlEnum(EscrowStatus), nullable=True)

    escrow_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    escrow_released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    dispute_reason: Mapped[DisputeReason | None] = mapped_column(SqlEnum(DisputeReason), nullable=True)
    dispute_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_transfer_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    stripe_refund_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    buyer = relationship("User", foreign_keys=[buyer_id])
    seller = relationship("User", foreign_keys=[seller_id])
    listing = relationship("Listing")
