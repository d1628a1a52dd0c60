from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.constants import NOTIFICATION_LEAD_DAYS
from app.errors import RetriggerNotAllowedError
from app.models.auto_gift_execution import AutoGiftExecution
from app.models.auto_gift_rule import AutoGiftRule
from app.models.enums import ExecutionStatus, RETRYABLE_EXECUTION_STATUSES
from app.models.occasion import Occasion
from app.services.execution_service import StageRunStats
from app.services.occasion_service import next_occurrence, occasions_for_rule
from app.timeutil import utcnow


logger = logging.getLogger(__name__)


def rule_lead_days(rule: AutoGiftRule) -> int:
    days = []
    for d in rule.notification_days or []:
        try:
            days.append(int(d))
        except (TypeError, ValueError):
            continue
    return max(days) if days else NOTIFICATION_LEAD_DAYS


def _new_execution(rule: AutoGiftRule, occasion: Occasion | None, occasion_date: date, today: date) -> AutoGiftExecution:
    return AutoGiftExecution(
        user_id=rule.user_id,
        rule_id=rule.id,
        occasion_id=occasion.id if occasion is not None else rule.occasion_id,
        occasion_date=occasion_date,
        execution_date=today,
        status=ExecutionStatus.PENDING_SELECTION,
        gift_message=rule.gift_message,
    )


def evaluate_due_rules(db: Session, *, now: datetime | None = None) -> StageRunStats:
    """Create a pending_selection execution for every rule occurrence inside its lead window.

    Safe to run any number of times a day: an occurrence that already has an
    execution, in any status, is left alone.
    """
    if now is None:
        now = utcnow()
    today = now.date()

    stats = StageRunStats()
    rules = db.query(AutoGiftRule).filter(AutoGiftRule.active.is_(True)).all()

    for rule in rules:
        lead_days = rule_lead_days(rule)

        for occasion in occasions_for_rule(db, rule):
            occurrence = next_occurrence(occasion, today)
            if occurrence is None or (occurrence - today).days > lead_days:
                continue

            stats.processed += 1

            existing = (
                db.query(AutoGiftExecution.id)
                .filter(AutoGiftExecution.rule_id == rule.id)
                .filter(AutoGiftExecution.occasion_date == occurrence)
                .first()
            )
            if existing:
                stats.idempotent_existing += 1
                continue

            db.add(_new_execution(rule, occasion, occurrence, today))
            try:
                db.commit()
            except IntegrityError:
                # a concurrent run inserted the same occurrence first
                db.rollback()
                stats.idempotent_existing += 1
                continue

            stats.succeeded += 1
            logger.info(
                "auto-gift execution created",
                extra={"rule_id": str(rule.id), "occasion_date": occurrence.isoformat(), "days_until": (occurrence - today).days},
            )

    return stats


def retrigger_execution(
    db: Session,
    rule: AutoGiftRule,
    *,
    occasion_date: date,
    now: datetime | None = None,
) -> AutoGiftExecution:
    """Manual re-trigger after a failed cycle (decline, no products, expiry, ...)."""
    if now is None:
        now = utcnow()

    existing = (
        db.query(AutoGiftExecution)
        .filter(AutoGiftExecution.rule_id == rule.id)
        .filter(AutoGiftExecution.occasion_date == occasion_date)
        .all()
    )
    blocking = [e for e in existing if e.status not in RETRYABLE_EXECUTION_STATUSES]
    if blocking:
        raise RetriggerNotAllowedError(f"Execution {blocking[0].id} is {blocking[0].status.value}")

    occasion = db.get(Occasion, rule.occasion_id) if rule.occasion_id else None
    execution = _new_execution(rule, occasion, occasion_date, now.date())
    db.add(execution)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise RetriggerNotAllowedError()

    db.refresh(execution)
    logger.info(
        "auto-gift execution re-triggered",
        extra={"rule_id": str(rule.id), "occasion_date": occasion_date.isoformat(), "previous_attempts": len(existing)},
    )
    return execution
