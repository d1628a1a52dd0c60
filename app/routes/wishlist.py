from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db import get_db
from app.deps.user import get_current_user_id
from app.models.wishlist_item import WishlistItem
from app.schemas.wishlist import WishlistItemCreate, WishlistItemOut, WishlistItemUpdate


router = APIRouter(prefix="/wishlist", tags=["wishlist"])


@router.get("", response_model=list[WishlistItemOut])
def list_wishlist(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return (
        db.query(WishlistItem)
        .filter(WishlistItem.user_id == user_id)
        .order_by(WishlistItem.priority.desc(), WishlistItem.created_at.asc())
        .all()
    )


@router.post("", response_model=WishlistItemOut)
def add_wishlist_item(
    payload: WishlistItemCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    item = WishlistItem(user_id=user_id, **payload.model_dump())
    db.add(item)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Product already on the wishlist")
    db.refresh(item)
    return item


@router.patch("/{item_id}", response_model=WishlistItemOut)
def update_wishlist_item(
    item_id: UUID,
    payload: WishlistItemUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    item = db.query(WishlistItem).filter(WishlistItem.id == item_id).first()
    if not item or item.user_id != user_id:
        raise HTTPException(status_code=404, detail="Wishlist item not found")

    data = payload.model_dump(exclude_unset=True)
    for k, v in data.items():
        setattr(item, k, v)

    db.commit()
    db.refresh(item)
    return item


@router.delete("/{item_id}")
def remove_wishlist_item(
    item_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    item = db.query(WishlistItem).filter(WishlistItem.id == item_id).first()
    if not item or item.user_id != user_id:
        raise HTTPException(status_code=404, detail="Wishlist item not found")

    db.delete(item)
    db.commit()
    return {"deleted": True}
