"""ORM models package."""
from .audit import AuditLog
from .base import Base
from .listing import DeliveryMethod, Listing, ListingStatus, ScanStatus
from .purchase import DeliveryStatus, DisputeReason, EscrowStatus, PaymentStatus, Purchase
from .user import BuyerTier, SellerTier, User

__all__ = [
    "AuditLog",
    "Base",
    "BuyerTier",
    "DeliveryMethod",
    "DeliveryStatus",
    "DisputeReason",
    "EscrowStatus",
    "Listing",
    "ListingStatus",
    "PaymentStatus",
    "Purchase",
    "ScanStatus",
    "SellerTier",
    "User",
]
