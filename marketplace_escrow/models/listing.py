"""Listing model."""
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, Enum as SqlEnum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class DeliveryMethod(str, PyEnum):
    """How the goods reach the buyer; drives the escrow window."""

    INSTANT_DOWNLOAD = "INSTANT_DOWNLOAD"
    REPOSITORY_ACCESS = "REPOSITORY_ACCESS"
    MANUAL_TRANSFER = "MANUAL_TRANSFER"
    DOMAIN_TRANSFER = "DOMAIN_TRANSFER"


class ListingStatus(str, PyEnum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    REMOVED = "REMOVED"


class ScanStatus(str, PyEnum):
    """Result reported by the external file scanner, when one ran."""

    PENDING = "PENDING"
    CLEAN = "CLEAN"
    SUSPICIOUS = "SUSPICIOUS"
    MALICIOUS = "MALICIOUS"
    SKIPPED = "SKIPPED"


class Listing(Base):
    """An item offered for sale by a seller."""

    __tablename__ = "listings"
    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_listings_price_non_negative"),
        Index("ix_listings_seller_status", "seller_id", "status"),
    )

    seller_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    price_cents: Mapped[int] = mapped_column(nullable=False)
    delivery_method: Mapped[DeliveryMethod] = mapped_column(SqlEnum(DeliveryMethod), nullable=False)
    status: Mapped[ListingStatus] = mapped_column(
        SqlEnum(ListingStatus), default=ListingStatus.ACTIVE, nullable=False
    )
    scan_status: Mapped[ScanStatus | None] = mapped_column(SqlEnum(ScanStatus), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    seller = relationship("User")

    @property
    def is_free(self) -> bool:
        return self.price_cents == 0
