from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.models.enums import OnboardingState


class OnboardingAdvance(BaseModel):
    state: OnboardingState
    skip: bool = False


class OnboardingOut(BaseModel):
    user_id: str
    state: OnboardingState
    skipped_steps: list[str] = Field(default_factory=list)
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
