from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.deps.user import get_current_user_id
from app.schemas.onboarding import OnboardingAdvance, OnboardingOut
from app.services.onboarding_service import advance, get_or_create_progress


router = APIRouter(prefix="/onboarding", tags=["onboarding"])


@router.get("", response_model=OnboardingOut)
def get_onboarding(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return get_or_create_progress(db, user_id)


@router.post("/advance", response_model=OnboardingOut)
def advance_onboarding(
    payload: OnboardingAdvance,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return advance(db, user_id, to_state=payload.state, skip=payload.skip)
