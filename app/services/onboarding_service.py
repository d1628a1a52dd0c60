from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import InvalidTransitionError
from app.models.enums import ONBOARDING_ORDER, OnboardingState
from app.models.onboarding_progress import OnboardingProgress
from app.timeutil import utcnow


logger = logging.getLogger(__name__)


def _rank(state: OnboardingState) -> int:
    return ONBOARDING_ORDER.index(state)


def get_or_create_progress(db: Session, user_id: str) -> OnboardingProgress:
    progress = db.get(OnboardingProgress, user_id)
    if progress is not None:
        return progress

    progress = OnboardingProgress(user_id=user_id, state=OnboardingState.SIGNUP_STARTED, skipped_steps=[])
    db.add(progress)
    try:
        db.commit()
    except IntegrityError:
        # created by a concurrent request
        db.rollback()
        return db.get(OnboardingProgress, user_id)
    db.refresh(progress)
    return progress


def advance(
    db: Session,
    user_id: str,
    *,
    to_state: OnboardingState,
    skip: bool = False,
    now: datetime | None = None,
) -> OnboardingProgress:
    """Move forward to ``to_state``; intermediate steps jumped over are recorded as skipped.

    Re-submitting the current state is a no-op. Going backwards is refused.
    """
    if now is None:
        now = utcnow()

    progress = get_or_create_progress(db, user_id)
    current = progress.state

    if to_state == current:
        return progress
    if _rank(to_state) < _rank(current):
        raise InvalidTransitionError(f"Onboarding cannot move back from {current.value} to {to_state.value}")

    skipped = list(progress.skipped_steps or [])
    jumped = ONBOARDING_ORDER[_rank(current) + 1 : _rank(to_state)]
    if skip:
        # the target step itself was skipped, not completed
        jumped = jumped + [to_state]
    for step in jumped:
        if step != OnboardingState.COMPLETED and step.value not in skipped:
            skipped.append(step.value)

    progress.state = to_state
    progress.skipped_steps = skipped
    if to_state == OnboardingState.COMPLETED:
        progress.completed_at = now

    db.commit()
    db.refresh(progress)
    logger.info(
        "onboarding advanced",
        extra={"user_id": user_id, "from_state": current.value, "to_state": to_state.value, "skipped": skipped},
    )
    return progress
