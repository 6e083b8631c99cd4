"""Purchase endpoints: checkout records, capture callback, disputes."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from marketplace_escrow.db import get_db
from marketplace_escrow.models.purchase import Purchase
from marketplace_escrow.models.user import User
from marketplace_escrow.schemas.dispute import DisputeCreate, DisputeOpened
from marketplace_escrow.schemas.purchase import EscrowSummary, PaymentCapture, PurchaseCreate, PurchaseRead
from marketplace_escrow.security import optional_user, require_internal_token, require_user
from marketplace_escrow.services import disputes as dispute_service
from marketplace_escrow.services import purchases as purchase_service
from marketplace_escrow.services.notifications import Notifier
from marketplace_escrow.services.providers import get_notifier
from marketplace_escrow.utils.errors import error_response

router = APIRouter(prefix="/purchases", tags=["purchases"])


def _get_visible_purchase(db: Session, purchase_id: int, user: User) -> Purchase:
    purchase = purchase_service.get_purchase_or_404(db, purchase_id)
    if user.is_admin or user.id in (purchase.buyer_id, purchase.seller_id):
        return purchase
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=error_response("FORBIDDEN", "Not a party to this purchase."),
    )


@router.post("", response_model=PurchaseRead, status_code=status.HTTP_201_CREATED)
def create_purchase(
    payload: PurchaseCreate,
    db: Session = Depends(get_db),
    user: User | None = Depends(optional_user),
) -> Purchase:
    if user is None and payload.guest_email is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=error_response("GUEST_EMAIL_REQUIRED", "Guest checkout needs an email address."),
        )
    return purchase_service.create_pending_purchase(
        db, listing_id=payload.listing_id, buyer=user, guest_email=payload.guest_email
    )


@router.post(
    "/{purchase_id}/capture",
    response_model=PurchaseRead,
    dependencies=[Depends(require_internal_token)],
)
def capture_payment(
    purchase_id: int,
    payload: PaymentCapture,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> Purchase:
    return purchase_service.capture_payment(
        db, purchase_id, payment_reference=payload.payment_reference, notifier=notifier
    )


@router.get("/{purchase_id}", response_model=PurchaseRead)
def read_purchase(
    purchase_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
) -> Purchase:
    return _get_visible_purchase(db, purchase_id, user)


@router.get("/{purchase_id}/escrow", response_model=EscrowSummary)
def read_escrow(
    purchase_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
) -> dict:
    return purchase_service.escrow_summary(_get_visible_purchase(db, purchase_id, user))


@router.post("/{purchase_id}/dispute", response_model=DisputeOpened)
def open_dispute(
    purchase_id: int,
    payload: DisputeCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
    notifier: Notifier = Depends(get_notifier),
) -> DisputeOpened:
    purchase = dispute_service.open_dispute(
        db,
        purchase_id,
        user_id=user.id,
        reason=payload.reason,
        notes=payload.notes,
        notifier=notifier,
    )
    return DisputeOpened(
        purchase_id=purchase.id,
        escrow_status=purchase.escrow_status,
        disputed_at=purchase.disputed_at,
    )
