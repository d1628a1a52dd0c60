from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.db import get_db
from app.deps.user import get_current_user_id
from app.models.occasion import Occasion
from app.schemas.occasion import OccasionCreate, OccasionOut, OccasionUpdate
from app.services.occasion_service import next_occurrence
from app.timeutil import utcnow


router = APIRouter(prefix="/occasions", tags=["occasions"])


def _out(occasion: Occasion) -> OccasionOut:
    out = OccasionOut.model_validate(occasion)
    out.next_occurrence = next_occurrence(occasion, utcnow().date())
    return out


def _get_owned(db: Session, occasion_id: UUID, user_id: str) -> Occasion:
    occasion = db.query(Occasion).filter(Occasion.id == occasion_id).first()
    if not occasion or occasion.user_id != user_id:
        raise HTTPException(status_code=404, detail="Occasion not found")
    return occasion


@router.get("", response_model=list[OccasionOut])
def list_occasions(
    date_type: str | None = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    q = db.query(Occasion).filter(Occasion.user_id == user_id)
    if date_type:
        q = q.filter(Occasion.date_type == date_type)
    return [_out(o) for o in q.order_by(Occasion.date.asc()).all()]


@router.post("", response_model=OccasionOut)
def create_occasion(
    payload: OccasionCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    if not payload.recipient_id and not payload.recipient_email:
        raise HTTPException(status_code=400, detail="Either recipient_id or recipient_email is required")

    occasion = Occasion(user_id=user_id, **payload.model_dump())
    db.add(occasion)
    db.commit()
    db.refresh(occasion)
    return _out(occasion)


@router.get("/{occasion_id}", response_model=OccasionOut)
def get_occasion(
    occasion_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _out(_get_owned(db, occasion_id, user_id))


@router.patch("/{occasion_id}", response_model=OccasionOut)
def update_occasion(
    occasion_id: UUID,
    payload: OccasionUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    occasion = _get_owned(db, occasion_id, user_id)

    data = payload.model_dump(exclude_unset=True)
    for k, v in data.items():
        setattr(occasion, k, v)

    db.commit()
    db.refresh(occasion)
    return _out(occasion)


@router.delete("/{occasion_id}")
def delete_occasion(
    occasion_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    occasion = _get_owned(db, occasion_id, user_id)
    db.delete(occasion)
    db.commit()
    return {"deleted": True}
