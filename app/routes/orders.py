from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.db import get_db
from app.deps.user import get_current_user_id, get_operator_id
from app.models.enums import FundingStatus, OrderStatus
from app.models.gift_order import GiftOrder
from app.schemas.gift_order import GiftOrderOut


router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=list[GiftOrderOut])
def list_my_orders(
    limit: int = 50,
    offset: int = 0,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    limit = max(1, min(limit, 200))
    offset = max(0, offset)
    return (
        db.query(GiftOrder)
        .filter(GiftOrder.user_id == user_id)
        .order_by(GiftOrder.delivery_date.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.get("/needs-intervention", response_model=list[GiftOrderOut], dependencies=[Depends(get_operator_id)])
def list_orders_needing_intervention(
    status: OrderStatus | None = None,
    funding_status: FundingStatus | None = None,
    db: Session = Depends(get_db),
):
    q = db.query(GiftOrder).filter(GiftOrder.needs_intervention.is_(True))
    if status is not None:
        q = q.filter(GiftOrder.status == status)
    if funding_status is not None:
        q = q.filter(GiftOrder.funding_status == funding_status)
    return q.order_by(GiftOrder.delivery_date.asc()).all()


@router.get("/{order_id}", response_model=GiftOrderOut)
def get_order(
    order_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    order = db.query(GiftOrder).filter(GiftOrder.id == order_id).first()
    if not order or order.user_id != user_id:
        raise HTTPException(status_code=404, detail="Order not found")
    return order
