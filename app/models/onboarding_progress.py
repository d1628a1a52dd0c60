from sqlalchemy import Column, JSON, String, TIMESTAMP
from sqlalchemy.sql import func

from app.db import Base
from app.models.enums import OnboardingState, status_enum


class OnboardingProgress(Base):
    __tablename__ = "onboarding_progress"

    user_id = Column(String(100), primary_key=True)

    state = Column(status_enum(OnboardingState, "onboarding_state"), nullable=False, default=OnboardingState.SIGNUP_STARTED)
    skipped_steps = Column(JSON, nullable=False, default=list)

    completed_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
