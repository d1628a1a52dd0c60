from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.db import get_db
from app.deps.user import get_current_user_id
from app.models.auto_gifting_settings import AutoGiftingSettings
from app.schemas.auto_gifting_settings import AutoGiftingSettingsOut, AutoGiftingSettingsUpdate


router = APIRouter(prefix="/auto-gifting-settings", tags=["auto-gifting-settings"])


@router.get("", response_model=AutoGiftingSettingsOut)
def get_settings(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    settings = db.get(AutoGiftingSettings, user_id)
    if settings is None:
        # defaults until the user saves something
        return AutoGiftingSettingsOut(user_id=user_id, auto_approve_gifts=False)
    return settings


@router.put("", response_model=AutoGiftingSettingsOut)
def upsert_settings(
    payload: AutoGiftingSettingsUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    data = payload.model_dump(exclude_unset=True)

    days = data.get("default_notification_days")
    if days is not None and any(d < 1 or d > 60 for d in days):
        raise HTTPException(status_code=400, detail="default_notification_days must be between 1 and 60")

    settings = db.get(AutoGiftingSettings, user_id)
    if settings is None:
        settings = AutoGiftingSettings(user_id=user_id, auto_approve_gifts=False)
        db.add(settings)

    for k, v in data.items():
        if k == "auto_approve_gifts" and v is None:
            continue
        setattr(settings, k, v)

    db.commit()
    db.refresh(settings)
    return settings
