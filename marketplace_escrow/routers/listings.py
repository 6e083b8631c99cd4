"""Listing endpoints: creation under the tier cap, pricing, free claims."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from marketplace_escrow.db import get_db
from marketplace_escrow.models.listing import Listing
from marketplace_escrow.models.purchase import Purchase
from marketplace_escrow.models.user import User
from marketplace_escrow.schemas.listing import ListingCreate, ListingLimitRead, ListingPricing, ListingRead
from marketplace_escrow.schemas.purchase import FreeClaimCreate, PurchaseRead
from marketplace_escrow.security import optional_user, require_user
from marketplace_escrow.services import limits as limits_service
from marketplace_escrow.services import purchases as purchase_service
from marketplace_escrow.services.notifications import Notifier
from marketplace_escrow.services.providers import get_notifier

router = APIRouter(prefix="/listings", tags=["listings"])


@router.post("", response_model=ListingRead, status_code=status.HTTP_201_CREATED)
def create_listing(
    payload: ListingCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
) -> Listing:
    return purchase_service.create_listing(
        db,
        seller=user,
        title=payload.title,
        price_cents=payload.price_cents,
        delivery_method=payload.delivery_method,
        status=payload.status,
        scan_status=payload.scan_status,
    )


@router.get("/limit", response_model=ListingLimitRead)
def listing_limit(
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
) -> ListingLimitRead:
    check = limits_service.check_listing_limit(db, user.id)
    return ListingLimitRead(
        allowed=check.allowed,
        current_count=check.current_count,
        limit=check.limit,
        tier=check.tier.value,
        sales_count=check.sales_count,
    )


@router.get("/{listing_id}/pricing", response_model=ListingPricing)
def listing_pricing(listing_id: int, db: Session = Depends(get_db)) -> dict:
    listing = purchase_service.get_listing_or_404(db, listing_id)
    return purchase_service.listing_pricing(listing)


@router.post("/{listing_id}/claim", response_model=PurchaseRead, status_code=status.HTTP_201_CREATED)
def claim_free_listing(
    listing_id: int,
    payload: FreeClaimCreate | None = None,
    db: Session = Depends(get_db),
    user: User | None = Depends(optional_user),
    notifier: Notifier = Depends(get_notifier),
) -> Purchase:
    return purchase_service.claim_free_listing(
        db,
        listing_id=listing_id,
        buyer=user,
        guest_email=payload.guest_email if payload else None,
        notifier=notifier,
    )
