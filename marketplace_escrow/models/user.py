"""User model."""
from enum import Enum as PyEnum

from sqlalchemy import Boolean, CheckConstraint, Enum as SqlEnum, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class BuyerTier(str, PyEnum):
    """Buyer trust tier controlling the daily spend ceiling."""

    NEW = "NEW"
    VERIFIED = "VERIFIED"
    TRUSTED = "TRUSTED"


class SellerTier(str, PyEnum):
    """Seller trust tier controlling the active listing ceiling."""

    NEW = "NEW"
    VERIFIED = "VERIFIED"
    TRUSTED = "TRUSTED"
    PRO = "PRO"


class User(Base):
    """A marketplace account acting as buyer, seller, or both.

    ``seller_tier`` is a display snapshot only; limits always recompute the tier
    from the completed-sale count.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("total_sales >= 0", name="ck_users_total_sales_non_negative"),
        CheckConstraint("total_disputes >= 0", name="ck_users_total_disputes_non_negative"),
    )

    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    stripe_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    buyer_tier: Mapped[BuyerTier] = mapped_column(SqlEnum(BuyerTier), default=BuyerTier.NEW, nullable=False)
    seller_tier: Mapped[SellerTier] = mapped_column(SqlEnum(SellerTier), default=SellerTier.NEW, nullable=False)
    total_sales: Mapped[int] = mapped_column(default=0, nullable=False)
    total_disputes: Mapped[int] = mapped_column(default=0, nullable=False)
    dispute_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
