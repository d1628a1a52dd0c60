from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.clients.payment_gateway import PaymentError, PaymentGateway
from app.config import INTERNAL_JOB_WORKER_ID, STAGE_CLAIM_TTL_SECONDS
from app.errors import InvalidTransitionError, RefundRequiredError
from app.models.auto_gift_execution import AutoGiftExecution
from app.models.enums import CANCELLABLE_EXECUTION_STATUSES, ExecutionStatus, OrderStatus, PaymentStatus
from app.models.gift_order import GiftOrder


logger = logging.getLogger(__name__)


@dataclass
class StageRunStats:
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    idempotent_existing: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def _as_list(statuses) -> list:
    if isinstance(statuses, (ExecutionStatus, OrderStatus)):
        return [statuses]
    return list(statuses)


def transition(db: Session, row, *, expected, new, **fields) -> bool:
    """Compare-and-swap on the status column.

    Returns False when another worker (or user action) moved the row first;
    the caller must then leave the row alone.
    """
    model = type(row)
    values = {model.status: new}
    for name, value in fields.items():
        values[getattr(model, name)] = value

    count = (
        db.query(model)
        .filter(model.id == row.id)
        .filter(model.status.in_(_as_list(expected)))
        .update(values, synchronize_session="fetch")
    )
    if count == 1:
        db.refresh(row)
        logger.debug(
            "status transition",
            extra={"table": model.__tablename__, "row_id": str(row.id), "new_status": getattr(new, "value", new)},
        )
    return count == 1


def claim(
    db: Session,
    row,
    *,
    expected,
    now: datetime,
    new=None,
    worker_id: str | None = None,
    ttl_seconds: int = STAGE_CLAIM_TTL_SECONDS,
) -> bool:
    """Atomically mark a row as owned by this worker, optionally moving its status.

    A claim older than ``ttl_seconds`` is treated as abandoned by a crashed worker.
    """
    model = type(row)
    stale_before = now - timedelta(seconds=int(ttl_seconds))
    values = {model.claimed_at: now, model.claimed_by: worker_id or INTERNAL_JOB_WORKER_ID}
    if new is not None:
        values[model.status] = new

    count = (
        db.query(model)
        .filter(model.id == row.id)
        .filter(model.status.in_(_as_list(expected)))
        .filter(or_(model.claimed_at.is_(None), model.claimed_at < stale_before))
        .update(values, synchronize_session="fetch")
    )
    if count == 1:
        db.refresh(row)
    return count == 1


RELEASED = {"claimed_at": None, "claimed_by": None}


def stale_claims(db: Session, model, status, *, now: datetime, ttl_seconds: int = STAGE_CLAIM_TTL_SECONDS, limit: int = 50) -> list:
    stale_before = now - timedelta(seconds=int(ttl_seconds))
    return (
        db.query(model)
        .filter(model.status == status)
        .filter(or_(model.claimed_at.is_(None), model.claimed_at < stale_before))
        .order_by(model.updated_at.asc())
        .limit(limit)
        .all()
    )


def list_executions(
    db: Session,
    *,
    user_id: str,
    statuses: Iterable[ExecutionStatus] | None = None,
    rule_id=None,
    limit: int = 50,
    offset: int = 0,
) -> list[AutoGiftExecution]:
    q = db.query(AutoGiftExecution).filter(AutoGiftExecution.user_id == user_id)
    if statuses:
        q = q.filter(AutoGiftExecution.status.in_(list(statuses)))
    if rule_id is not None:
        q = q.filter(AutoGiftExecution.rule_id == rule_id)

    limit = max(1, min(limit, 200))
    offset = max(0, offset)
    return q.order_by(AutoGiftExecution.created_at.desc()).offset(offset).limit(limit).all()


def cancel_execution(
    db: Session,
    execution: AutoGiftExecution,
    *,
    now: datetime,
    gateway: PaymentGateway | None,
    reason: str = "cancelled by user",
) -> AutoGiftExecution:
    """Cancel an execution that has not crossed payment capture.

    After capture the money has moved, so the only way back is a refund.
    """
    status = execution.status

    if status in (ExecutionStatus.PAYMENT_CONFIRMED, ExecutionStatus.SUBMITTING, ExecutionStatus.PROCESSING):
        raise RefundRequiredError()
    if status not in CANCELLABLE_EXECUTION_STATUSES:
        raise InvalidTransitionError(f"Execution in status {status.value} cannot be cancelled")

    if status == ExecutionStatus.AWAITING_FUNDS and execution.order_id is not None:
        order = db.get(GiftOrder, execution.order_id)
        if order is not None:
            # the capture stage claims the order first, so winning here means capture has not started
            if not transition(db, order, expected=OrderStatus.SCHEDULED, new=OrderStatus.CANCELLED, payment_status=PaymentStatus.CANCELED):
                db.rollback()
                raise RefundRequiredError("Payment capture already started for this gift")
            db.commit()
            if gateway is not None and order.payment_authorization_id:
                try:
                    gateway.cancel(order.payment_authorization_id)
                except PaymentError:
                    # the hold lapses on its own at the processor
                    logger.warning(
                        "authorization release failed",
                        extra={"order_id": str(order.id), "authorization_id": order.payment_authorization_id},
                    )

    if not transition(db, execution, expected=status, new=ExecutionStatus.CANCELLED, error_message=reason, **RELEASED):
        db.rollback()
        raise InvalidTransitionError("Execution changed while cancelling; reload and retry")

    db.commit()
    logger.info("execution cancelled", extra={"execution_id": str(execution.id), "previous_status": status.value})
    return execution


def cancel_open_executions_for_rule(db: Session, rule_id, *, now: datetime, gateway: PaymentGateway | None) -> int:
    open_executions = (
        db.query(AutoGiftExecution)
        .filter(AutoGiftExecution.rule_id == rule_id)
        .filter(AutoGiftExecution.status.in_(list(CANCELLABLE_EXECUTION_STATUSES)))
        .all()
    )

    cancelled = 0
    for execution in open_executions:
        try:
            cancel_execution(db, execution, now=now, gateway=gateway, reason="auto-gift rule disabled")
            cancelled += 1
        except (InvalidTransitionError, RefundRequiredError):
            logger.info("execution past cancellation boundary; left running", extra={"execution_id": str(execution.id)})
    return cancelled
