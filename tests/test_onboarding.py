import pytest

from app.errors import InvalidTransitionError
from app.models.enums import OnboardingState
from app.services.onboarding_service import advance, get_or_create_progress

from tests.fakes import NOW, USER_ID


def test_progress_starts_at_signup(db):
    progress = get_or_create_progress(db, USER_ID)

    assert progress.state == OnboardingState.SIGNUP_STARTED
    assert progress.skipped_steps == []


def test_advance_step_by_step(db):
    advance(db, USER_ID, to_state=OnboardingState.PROFILE_COMPLETED, now=NOW)
    progress = advance(db, USER_ID, to_state=OnboardingState.PREFERENCES_SET, now=NOW)

    assert progress.state == OnboardingState.PREFERENCES_SET
    assert progress.skipped_steps == []
    assert progress.completed_at is None


def test_jumping_ahead_records_skipped_steps(db):
    progress = advance(db, USER_ID, to_state=OnboardingState.COMPLETED, now=NOW)

    assert progress.state == OnboardingState.COMPLETED
    assert progress.skipped_steps == ["profile_completed", "preferences_set"]
    assert progress.completed_at == NOW


def test_explicit_skip_marks_target_step(db):
    progress = advance(db, USER_ID, to_state=OnboardingState.PROFILE_COMPLETED, skip=True, now=NOW)

    assert progress.skipped_steps == ["profile_completed"]


def test_repeating_current_state_is_a_no_op(db):
    advance(db, USER_ID, to_state=OnboardingState.PROFILE_COMPLETED, now=NOW)
    progress = advance(db, USER_ID, to_state=OnboardingState.PROFILE_COMPLETED, now=NOW)

    assert progress.state == OnboardingState.PROFILE_COMPLETED


def test_cannot_move_backwards(db):
    advance(db, USER_ID, to_state=OnboardingState.PREFERENCES_SET, now=NOW)

    with pytest.raises(InvalidTransitionError):
        advance(db, USER_ID, to_state=OnboardingState.PROFILE_COMPLETED, now=NOW)
