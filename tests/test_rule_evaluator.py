from datetime import date, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from app.errors import RetriggerNotAllowedError
from app.models.auto_gift_execution import AutoGiftExecution
from app.models.enums import ExecutionStatus
from app.models.occasion import Occasion
from app.services.occasion_service import next_occurrence
from app.services.rule_evaluator import evaluate_due_rules, retrigger_execution, rule_lead_days

from tests.fakes import NOW


def _executions(db):
    return db.query(AutoGiftExecution).all()


# =============================================================================
# next_occurrence
# =============================================================================

def test_next_occurrence_this_year_and_rollover():
    occasion = Occasion(date=date(1990, 12, 25), recurring="yearly")
    assert next_occurrence(occasion, date(2025, 12, 18)) == date(2025, 12, 25)
    assert next_occurrence(occasion, date(2025, 12, 25)) == date(2025, 12, 25)
    assert next_occurrence(occasion, date(2025, 12, 26)) == date(2026, 12, 25)


def test_next_occurrence_feb_29_falls_back_to_feb_28():
    occasion = Occasion(date=date(2000, 2, 29), recurring="yearly")
    assert next_occurrence(occasion, date(2025, 1, 10)) == date(2025, 2, 28)
    assert next_occurrence(occasion, date(2028, 1, 10)) == date(2028, 2, 29)


def test_next_occurrence_one_off_occasion():
    occasion = Occasion(date=date(2026, 6, 1), recurring="none")
    assert next_occurrence(occasion, date(2026, 5, 1)) == date(2026, 6, 1)
    assert next_occurrence(occasion, date(2026, 6, 2)) is None


# =============================================================================
# Evaluation
# =============================================================================

def test_rule_inside_window_creates_one_pending_execution(db, make_rule):
    rule = make_rule(notification_days=[7])

    stats = evaluate_due_rules(db, now=NOW)

    executions = _executions(db)
    assert stats.succeeded == 1
    assert len(executions) == 1
    execution = executions[0]
    assert execution.status == ExecutionStatus.PENDING_SELECTION
    assert execution.rule_id == rule.id
    assert execution.occasion_date == date(2025, 12, 25)
    assert execution.execution_date == NOW.date()
    assert execution.gift_message == "Happy birthday!"


def test_evaluation_is_idempotent(db, make_rule):
    make_rule(notification_days=[7])

    evaluate_due_rules(db, now=NOW)
    second = evaluate_due_rules(db, now=NOW + timedelta(hours=6))

    assert second.succeeded == 0
    assert second.idempotent_existing == 1
    assert len(_executions(db)) == 1


def test_occurrence_with_terminal_execution_is_not_restarted(db, make_rule, make_execution):
    rule = make_rule(notification_days=[7])
    make_execution(rule, status=ExecutionStatus.REJECTED)

    stats = evaluate_due_rules(db, now=NOW)

    assert stats.succeeded == 0
    assert len(_executions(db)) == 1


def test_rule_outside_window_is_skipped(db, make_rule):
    make_rule(notification_days=[3])

    stats = evaluate_due_rules(db, now=NOW)

    assert stats.processed == 0
    assert _executions(db) == []


def test_largest_notification_day_sets_the_window(db, make_rule):
    rule = make_rule(notification_days=[3, 14])
    assert rule_lead_days(rule) == 14

    evaluate_due_rules(db, now=NOW)
    assert len(_executions(db)) == 1


def test_inactive_rule_is_ignored(db, make_rule):
    make_rule(active=False)

    evaluate_due_rules(db, now=NOW)

    assert _executions(db) == []


# =============================================================================
# One live execution per occurrence
# =============================================================================

def test_second_live_execution_for_occurrence_is_rejected_by_the_database(db, make_rule, make_execution):
    rule = make_rule()
    make_execution(rule, status=ExecutionStatus.PENDING_APPROVAL)

    with pytest.raises(IntegrityError):
        make_execution(rule, status=ExecutionStatus.PENDING_SELECTION)
    db.rollback()


def test_live_execution_may_follow_a_terminal_one(db, make_rule, make_execution):
    rule = make_rule()
    make_execution(rule, status=ExecutionStatus.PAYMENT_FAILED)
    make_execution(rule, status=ExecutionStatus.PENDING_SELECTION)

    assert len(_executions(db)) == 2


# =============================================================================
# Re-trigger
# =============================================================================

def test_retrigger_after_failure_creates_new_execution(db, make_rule, make_execution):
    rule = make_rule()
    failed = make_execution(rule, status=ExecutionStatus.SELECTION_FAILED)

    execution = retrigger_execution(db, rule, occasion_date=failed.occasion_date, now=NOW)

    assert execution.id != failed.id
    assert execution.status == ExecutionStatus.PENDING_SELECTION


def test_retrigger_refused_while_execution_is_live(db, make_rule, make_execution):
    rule = make_rule()
    live = make_execution(rule, status=ExecutionStatus.AWAITING_FUNDS)

    with pytest.raises(RetriggerNotAllowedError):
        retrigger_execution(db, rule, occasion_date=live.occasion_date, now=NOW)


def test_retrigger_refused_after_submission_failure(db, make_rule, make_execution):
    rule = make_rule()
    failed = make_execution(rule, status=ExecutionStatus.SUBMISSION_FAILED)

    with pytest.raises(RetriggerNotAllowedError):
        retrigger_execution(db, rule, occasion_date=failed.occasion_date, now=NOW)
