"""Staff dispute review endpoints."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace_escrow.db import get_db
from marketplace_escrow.models.purchase import Purchase
from marketplace_escrow.models.user import User
from marketplace_escrow.schemas.dispute import DisputePage, DisputeRead, DisputeResolve
from marketplace_escrow.security import require_staff
from marketplace_escrow.services import disputes as dispute_service
from marketplace_escrow.services.notifications import Notifier
from marketplace_escrow.services.payouts import PaymentTransferGateway
from marketplace_escrow.services.providers import get_notifier, get_transfer_gateway

router = APIRouter(prefix="/admin/disputes", tags=["admin"])


@router.get("", response_model=DisputePage)
def list_disputes(
    status_filter: dispute_service.DisputeFilter = Query(dispute_service.DisputeFilter.OPEN, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    staff: User = Depends(require_staff),
) -> DisputePage:
    items, total = dispute_service.list_disputes(
        db, status_filter=status_filter, page=page, page_size=page_size
    )
    return DisputePage(
        items=[DisputeRead.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/{purchase_id}/resolve", response_model=DisputeRead)
def resolve_dispute(
    purchase_id: int,
    payload: DisputeResolve,
    db: Session = Depends(get_db),
    staff: User = Depends(require_staff),
    gateway: PaymentTransferGateway = Depends(get_transfer_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> Purchase:
    return dispute_service.resolve_dispute(
        db,
        purchase_id,
        staff=staff,
        resolution=payload.resolution,
        notes=payload.notes,
        gateway=gateway,
        notifier=notifier,
    )
