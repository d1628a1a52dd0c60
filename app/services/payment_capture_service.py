"""Authorize approved gifts and capture them shortly before delivery.

Two stages share this module:

- ``authorize_approved`` places a manual-capture hold for every approved
  execution and creates its ``GiftOrder``.
- ``capture_due`` converts the hold into a charge ``CAPTURE_LEAD_DAYS`` before
  the delivery date, which leaves time for the payout to reach the vendor
  account before the order is submitted.

Both stages claim a row before calling the processor and release it again when
the outcome is unknown, so the next run retries with the same idempotency key.
Every processor call also leaves a ``PaymentAttempt`` row behind.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from app.clients.payment_gateway import (
    INTENT_REQUIRES_CAPTURE,
    INTENT_SUCCEEDED,
    PaymentAmbiguousError,
    PaymentAuthorization,
    PaymentDeclinedError,
    PaymentError,
    PaymentGateway,
)
from app.constants import CAPTURE_LEAD_DAYS, STRIPE_PAYOUT_DAYS
from app.models.auto_gift_execution import AutoGiftExecution
from app.models.auto_gift_rule import AutoGiftRule
from app.models.auto_gifting_settings import AutoGiftingSettings
from app.models.enums import ExecutionStatus, FundingHoldReason, FundingStatus, OrderStatus, PaymentStatus
from app.models.gift_order import GiftOrder
from app.models.payment_attempt import PaymentAttempt
from app.services import notification_service
from app.services.execution_service import RELEASED, StageRunStats, claim, stale_claims, transition
from app.services.notification_service import Notifier, notify
from app.timeutil import utcnow


logger = logging.getLogger(__name__)


def authorization_key(execution: AutoGiftExecution) -> str:
    return f"autogift-auth-{execution.id}"


def capture_key(order: GiftOrder) -> str:
    return f"autogift-capture-{order.id}"


def _audit(
    db: Session,
    *,
    now: datetime,
    operation: str,
    status: str,
    execution_id,
    idempotency_key: str,
    order_id=None,
    amount=None,
    payment_intent_id: str | None = None,
    payment_method_id: str | None = None,
    error: Exception | str | None = None,
) -> None:
    """Append a processor call to the audit trail; committed with the state change it explains."""
    db.add(
        PaymentAttempt(
            execution_id=execution_id,
            order_id=order_id,
            operation=operation,
            status=status,
            amount=amount,
            payment_intent_id=payment_intent_id,
            payment_method_id=payment_method_id,
            idempotency_key=idempotency_key,
            error_message=str(error)[:2000] if error is not None else None,
            created_at=now,
        )
    )


def list_payment_attempts(db: Session, execution_id) -> list[PaymentAttempt]:
    return (
        db.query(PaymentAttempt)
        .filter(PaymentAttempt.execution_id == execution_id)
        .order_by(PaymentAttempt.created_at.asc())
        .all()
    )


# ============================================================
# AUTHORIZATION
# ============================================================

def _customer_id(db: Session, user_id: str) -> str | None:
    settings = db.get(AutoGiftingSettings, user_id)
    return settings.payment_customer_id if settings is not None else None


def _fail_authorization(db: Session, execution: AutoGiftExecution, reason: str, notifier: Notifier | None) -> None:
    transition(
        db,
        execution,
        expected=ExecutionStatus.AUTHORIZING,
        new=ExecutionStatus.PAYMENT_FAILED,
        error_message=reason,
        **RELEASED,
    )
    db.commit()
    logger.info("payment authorization failed", extra={"execution_id": str(execution.id), "reason": reason})
    notify(
        notifier,
        notification_service.PAYMENT_FAILED,
        user_id=execution.user_id,
        execution_id=execution.id,
        occasion_date=execution.occasion_date.isoformat(),
        reason=reason,
    )


def _release_authorizing(db: Session, execution: AutoGiftExecution) -> None:
    transition(db, execution, expected=ExecutionStatus.AUTHORIZING, new=ExecutionStatus.APPROVED, **RELEASED)
    db.commit()


def _recover_authorization(gateway: PaymentGateway, key: str) -> PaymentAuthorization | None:
    try:
        found = gateway.find_by_idempotency_key(key)
    except PaymentError as e:
        logger.warning("authorization lookup failed", extra={"idempotency_key": key, "error": str(e)})
        return None
    if found is None or found.status != INTENT_REQUIRES_CAPTURE:
        return None
    return found


def _create_order(
    db: Session,
    execution: AutoGiftExecution,
    rule: AutoGiftRule | None,
    auth: PaymentAuthorization,
    key: str,
) -> GiftOrder:
    delivery_date = execution.occasion_date
    order = GiftOrder(
        user_id=execution.user_id,
        execution_id=execution.id,
        status=OrderStatus.SCHEDULED,
        payment_status=PaymentStatus.AUTHORIZED,
        payment_authorization_id=auth.authorization_id,
        payment_idempotency_key=key,
        total_amount=execution.total_amount,
        currency=auth.currency,
        products=execution.selected_products or [],
        shipping_address=rule.shipping_address if rule is not None else None,
        gift_message=execution.gift_message,
        delivery_date=delivery_date,
        capture_date=delivery_date - timedelta(days=CAPTURE_LEAD_DAYS),
        funding_status=FundingStatus.AWAITING_FUNDS,
        funding_hold_reason=FundingHoldReason.PAYMENT_NOT_CAPTURED.value,
    )
    db.add(order)
    db.flush()
    return order


def authorize_approved(
    db: Session,
    *,
    now: datetime | None = None,
    gateway: PaymentGateway,
    notifier: Notifier | None = None,
    worker_id: str | None = None,
    limit: int = 50,
) -> StageRunStats:
    if now is None:
        now = utcnow()

    stats = StageRunStats()

    candidates = (
        db.query(AutoGiftExecution)
        .filter(AutoGiftExecution.status == ExecutionStatus.APPROVED)
        .order_by(AutoGiftExecution.occasion_date.asc())
        .limit(limit)
        .all()
    )
    # authorizing rows whose worker died mid-call
    candidates += stale_claims(db, AutoGiftExecution, ExecutionStatus.AUTHORIZING, now=now, limit=limit)

    for execution in candidates:
        if not claim(
            db,
            execution,
            expected=[ExecutionStatus.APPROVED, ExecutionStatus.AUTHORIZING],
            new=ExecutionStatus.AUTHORIZING,
            now=now,
            worker_id=worker_id,
        ):
            stats.skipped += 1
            continue
        db.commit()
        stats.processed += 1

        existing = db.query(GiftOrder).filter(GiftOrder.execution_id == execution.id).first()
        if existing is not None:
            # order was written before the crash; only the execution is behind
            transition(
                db,
                execution,
                expected=ExecutionStatus.AUTHORIZING,
                new=ExecutionStatus.AWAITING_FUNDS,
                order_id=existing.id,
                **RELEASED,
            )
            db.commit()
            stats.idempotent_existing += 1
            continue

        rule = db.get(AutoGiftRule, execution.rule_id)
        key = authorization_key(execution)

        if rule is None or not rule.payment_method_id:
            _fail_authorization(db, execution, "No payment method on the auto-gift rule", notifier)
            stats.failed += 1
            continue
        if not execution.total_amount or Decimal(execution.total_amount) <= 0:
            _fail_authorization(db, execution, "Nothing to charge for this execution", notifier)
            stats.failed += 1
            continue

        attempt = {
            "now": now,
            "operation": "authorize",
            "execution_id": execution.id,
            "idempotency_key": key,
            "amount": execution.total_amount,
            "payment_method_id": rule.payment_method_id,
        }
        outcome = "succeeded"
        try:
            auth = gateway.authorize(
                amount=Decimal(execution.total_amount),
                payment_method_id=rule.payment_method_id,
                customer_id=_customer_id(db, execution.user_id),
                idempotency_key=key,
                metadata={"execution_id": str(execution.id), "user_id": execution.user_id},
            )
        except PaymentDeclinedError as e:
            _audit(db, status="declined", error=e, **attempt)
            _fail_authorization(db, execution, f"Payment declined: {e}", notifier)
            stats.failed += 1
            continue
        except PaymentAmbiguousError as e:
            auth = _recover_authorization(gateway, key)
            if auth is None:
                _audit(db, status="unknown", error=e, **attempt)
                _release_authorizing(db, execution)
                stats.failed += 1
                logger.warning(
                    "authorization outcome unknown; will retry",
                    extra={"execution_id": str(execution.id), "error": str(e)},
                )
                continue
            outcome = "recovered"
        except PaymentError as e:
            _audit(db, status="failed", error=e, **attempt)
            _fail_authorization(db, execution, f"Payment authorization failed: {e}", notifier)
            stats.failed += 1
            continue

        order = _create_order(db, execution, rule, auth, key)
        _audit(db, status=outcome, order_id=order.id, payment_intent_id=auth.authorization_id, **attempt)
        transition(
            db,
            execution,
            expected=ExecutionStatus.AUTHORIZING,
            new=ExecutionStatus.AWAITING_FUNDS,
            order_id=order.id,
            error_message=None,
            **RELEASED,
        )
        db.commit()
        stats.succeeded += 1
        logger.info(
            "payment authorized",
            extra={
                "execution_id": str(execution.id),
                "order_id": str(order.id),
                "amount": str(order.total_amount),
                "capture_date": order.capture_date.isoformat(),
            },
        )

    return stats


# ============================================================
# CAPTURE
# ============================================================

def _execution_for(db: Session, order: GiftOrder) -> AutoGiftExecution | None:
    return db.get(AutoGiftExecution, order.execution_id)


def _audit_capture(db: Session, order: GiftOrder, now: datetime, status: str, error=None) -> None:
    _audit(
        db,
        now=now,
        operation="capture",
        status=status,
        execution_id=order.execution_id,
        order_id=order.id,
        idempotency_key=capture_key(order),
        amount=order.total_amount,
        payment_intent_id=order.payment_authorization_id,
        error=error,
    )


def _mark_captured(db: Session, order: GiftOrder, capture_id: str | None, now: datetime) -> None:
    transition(
        db,
        order,
        expected=OrderStatus.CAPTURING,
        new=OrderStatus.PAYMENT_CONFIRMED,
        payment_status=PaymentStatus.CAPTURED,
        payment_capture_id=capture_id,
        funding_status=FundingStatus.AWAITING_FUNDS,
        funding_hold_reason=FundingHoldReason.PENDING_ALLOCATION.value,
        expected_funds_at=now + timedelta(days=STRIPE_PAYOUT_DAYS),
        error_message=None,
        **RELEASED,
    )
    execution = _execution_for(db, order)
    if execution is not None:
        transition(db, execution, expected=ExecutionStatus.AWAITING_FUNDS, new=ExecutionStatus.PAYMENT_CONFIRMED)
    db.commit()
    logger.info(
        "payment captured",
        extra={"order_id": str(order.id), "amount": str(order.total_amount), "delivery_date": order.delivery_date.isoformat()},
    )


def _mark_capture_failed(db: Session, order: GiftOrder, reason: str, notifier: Notifier | None) -> None:
    transition(
        db,
        order,
        expected=[OrderStatus.SCHEDULED, OrderStatus.CAPTURING],
        new=OrderStatus.CAPTURE_FAILED,
        payment_status=PaymentStatus.FAILED,
        needs_intervention=True,
        error_message=reason,
        **RELEASED,
    )
    execution = _execution_for(db, order)
    if execution is not None:
        transition(
            db,
            execution,
            expected=ExecutionStatus.AWAITING_FUNDS,
            new=ExecutionStatus.NEEDS_ATTENTION,
            error_message=reason,
        )
    db.commit()
    logger.error("payment capture failed", extra={"order_id": str(order.id), "reason": reason})
    notify(
        notifier,
        notification_service.CAPTURE_NEEDS_ATTENTION,
        user_id=order.user_id,
        order_id=order.id,
        execution_id=order.execution_id,
        delivery_date=order.delivery_date.isoformat(),
        reason=reason,
    )


def _release_capturing(db: Session, order: GiftOrder) -> None:
    transition(db, order, expected=OrderStatus.CAPTURING, new=OrderStatus.SCHEDULED, **RELEASED)
    db.commit()


def _resolve_unknown_capture(
    db: Session,
    order: GiftOrder,
    gateway: PaymentGateway,
    now: datetime,
    notifier: Notifier | None,
) -> bool | None:
    """Ask the processor what happened to a capture whose outcome we never saw.

    Returns True when captured, None when the hold is still open (claim released),
    False when the capture can no longer succeed.
    """
    try:
        current = gateway.retrieve(order.payment_authorization_id)
    except PaymentError as e:
        logger.warning("capture status lookup failed; will retry", extra={"order_id": str(order.id), "error": str(e)})
        _release_capturing(db, order)
        return None

    if current.status == INTENT_SUCCEEDED:
        _audit_capture(db, order, now, "recovered")
        _mark_captured(db, order, None, now)
        return True
    if current.status == INTENT_REQUIRES_CAPTURE:
        _release_capturing(db, order)
        return None

    _mark_capture_failed(db, order, f"Authorization is {current.status}; capture not possible", notifier)
    return False


def _record(stats: StageRunStats, outcome: bool | None) -> None:
    if outcome is True:
        stats.succeeded += 1
    elif outcome is False:
        stats.failed += 1
    else:
        stats.skipped += 1


def capture_due(
    db: Session,
    *,
    now: datetime | None = None,
    gateway: PaymentGateway,
    notifier: Notifier | None = None,
    worker_id: str | None = None,
    limit: int = 50,
) -> StageRunStats:
    if now is None:
        now = utcnow()
    today = now.date()

    stats = StageRunStats()

    # capturing rows whose worker died mid-call: outcome unknown, ask the processor
    for order in stale_claims(db, GiftOrder, OrderStatus.CAPTURING, now=now, limit=limit):
        if not claim(db, order, expected=OrderStatus.CAPTURING, now=now, worker_id=worker_id):
            continue
        db.commit()
        stats.processed += 1
        _record(stats, _resolve_unknown_capture(db, order, gateway, now, notifier))

    due = (
        db.query(GiftOrder)
        .filter(GiftOrder.status == OrderStatus.SCHEDULED)
        .filter(GiftOrder.capture_date <= today)
        .order_by(GiftOrder.capture_date.asc(), GiftOrder.delivery_date.asc())
        .limit(limit)
        .all()
    )

    for order in due:
        if not order.payment_authorization_id or order.payment_status != PaymentStatus.AUTHORIZED:
            stats.processed += 1
            stats.failed += 1
            _mark_capture_failed(db, order, "No payment authorization on record", notifier)
            continue

        if not claim(db, order, expected=OrderStatus.SCHEDULED, new=OrderStatus.CAPTURING, now=now, worker_id=worker_id):
            # cancelled or claimed by another worker
            stats.skipped += 1
            continue
        db.commit()
        stats.processed += 1

        try:
            captured = gateway.capture(order.payment_authorization_id, idempotency_key=capture_key(order))
        except PaymentAmbiguousError as e:
            logger.warning("capture outcome unknown", extra={"order_id": str(order.id), "error": str(e)})
            _audit_capture(db, order, now, "unknown", e)
            _record(stats, _resolve_unknown_capture(db, order, gateway, now, notifier))
            continue
        except PaymentError as e:
            _audit_capture(db, order, now, "failed", e)
            _mark_capture_failed(db, order, f"Capture failed: {e}", notifier)
            stats.failed += 1
            continue

        _audit_capture(db, order, now, "succeeded")
        _mark_captured(db, order, captured.capture_id, now)
        stats.succeeded += 1

    return stats
