from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.clients.fulfillment_client import (
    FulfillmentAmbiguousError,
    FulfillmentClient,
    FulfillmentError,
    FulfillmentRejectedError,
    VendorOrder,
)
from app.models.auto_gift_execution import AutoGiftExecution
from app.models.enums import ExecutionStatus, FundingStatus, OrderStatus
from app.models.gift_order import GiftOrder
from app.services import notification_service
from app.services.execution_service import RELEASED, StageRunStats, claim, stale_claims, transition
from app.services.notification_service import Notifier, notify
from app.timeutil import utcnow


logger = logging.getLogger(__name__)


def vendor_order_key(order: GiftOrder) -> str:
    return f"autogift-order-{order.id}"


def _mark_processing(db: Session, order: GiftOrder, vendor_order: VendorOrder, now: datetime, notifier: Notifier | None) -> None:
    transition(
        db,
        order,
        expected=OrderStatus.SUBMITTING,
        new=OrderStatus.PROCESSING,
        vendor_order_id=vendor_order.vendor_order_id,
        funding_status=FundingStatus.FUNDS_ALLOCATED,
        funds_allocated_at=order.funds_allocated_at or now,
        submitted_at=now,
        error_message=None,
        **RELEASED,
    )
    execution = db.get(AutoGiftExecution, order.execution_id)
    if execution is not None:
        transition(
            db,
            execution,
            expected=[ExecutionStatus.PAYMENT_CONFIRMED, ExecutionStatus.SUBMITTING],
            new=ExecutionStatus.PROCESSING,
            **RELEASED,
        )
    db.commit()

    logger.info(
        "gift order submitted",
        extra={"order_id": str(order.id), "vendor_order_id": vendor_order.vendor_order_id, "amount": str(order.total_amount)},
    )
    notify(
        notifier,
        notification_service.ORDER_PLACED,
        user_id=order.user_id,
        order_id=order.id,
        execution_id=order.execution_id,
        vendor_order_id=vendor_order.vendor_order_id,
        delivery_date=order.delivery_date.isoformat(),
    )


def _mark_failed(db: Session, order: GiftOrder, reason: str, notifier: Notifier | None, *, needs_intervention: bool) -> None:
    transition(
        db,
        order,
        expected=OrderStatus.SUBMITTING,
        new=OrderStatus.SUBMISSION_FAILED,
        needs_intervention=needs_intervention,
        error_message=reason,
        **RELEASED,
    )
    execution = db.get(AutoGiftExecution, order.execution_id)
    if execution is not None:
        transition(
            db,
            execution,
            expected=[ExecutionStatus.PAYMENT_CONFIRMED, ExecutionStatus.SUBMITTING],
            new=ExecutionStatus.SUBMISSION_FAILED,
            error_message=reason,
            **RELEASED,
        )
    db.commit()

    logger.error(
        "gift order submission failed",
        extra={"order_id": str(order.id), "reason": reason, "needs_intervention": needs_intervention},
    )
    notify(
        notifier,
        notification_service.SUBMISSION_FAILED,
        user_id=order.user_id,
        order_id=order.id,
        execution_id=order.execution_id,
        amount=order.total_amount,
        reason=reason,
        needs_intervention=needs_intervention,
    )


def _resolve_unknown_submission(
    db: Session,
    order: GiftOrder,
    fulfillment: FulfillmentClient,
    now: datetime,
    notifier: Notifier | None,
) -> bool:
    """Never re-submit blind: the vendor may already be shipping the first attempt."""
    try:
        found = fulfillment.find_order(vendor_order_key(order))
    except FulfillmentError as e:
        _mark_failed(db, order, f"Order status unknown after vendor error: {e}", notifier, needs_intervention=True)
        return False

    if found is not None:
        _mark_processing(db, order, found, now, notifier)
        return True

    _mark_failed(db, order, "Vendor has no record of the order after an ambiguous submission", notifier, needs_intervention=True)
    return False


def submit_due_orders(
    db: Session,
    *,
    now: datetime | None = None,
    fulfillment: FulfillmentClient,
    notifier: Notifier | None = None,
    worker_id: str | None = None,
    limit: int = 50,
) -> StageRunStats:
    if now is None:
        now = utcnow()
    today = now.date()

    stats = StageRunStats()

    for order in stale_claims(db, GiftOrder, OrderStatus.SUBMITTING, now=now, limit=limit):
        if not claim(db, order, expected=OrderStatus.SUBMITTING, now=now, worker_id=worker_id):
            continue
        db.commit()
        stats.processed += 1
        if _resolve_unknown_submission(db, order, fulfillment, now, notifier):
            stats.succeeded += 1
        else:
            stats.failed += 1

    due = (
        db.query(GiftOrder)
        .filter(GiftOrder.status == OrderStatus.PAYMENT_CONFIRMED)
        .filter(GiftOrder.funding_status == FundingStatus.FUNDED)
        # only reconciliation sets funds_allocated_at
        .filter(GiftOrder.funds_allocated_at.isnot(None))
        .filter(GiftOrder.delivery_date <= today)
        .order_by(GiftOrder.delivery_date.asc())
        .limit(limit)
        .all()
    )

    for order in due:
        if not claim(db, order, expected=OrderStatus.PAYMENT_CONFIRMED, new=OrderStatus.SUBMITTING, now=now, worker_id=worker_id):
            stats.skipped += 1
            continue
        key = vendor_order_key(order)
        order.vendor_idempotency_key = key
        execution = db.get(AutoGiftExecution, order.execution_id)
        if execution is not None:
            transition(db, execution, expected=ExecutionStatus.PAYMENT_CONFIRMED, new=ExecutionStatus.SUBMITTING)
        db.commit()
        stats.processed += 1

        try:
            vendor_order = fulfillment.submit_order(
                products=order.products or [],
                shipping_address=order.shipping_address,
                idempotency_key=key,
                gift_message=order.gift_message,
            )
        except FulfillmentRejectedError as e:
            _mark_failed(db, order, f"Vendor rejected the order: {e}", notifier, needs_intervention=False)
            stats.failed += 1
            continue
        except FulfillmentAmbiguousError as e:
            logger.warning("order submission outcome unknown", extra={"order_id": str(order.id), "error": str(e)})
            if _resolve_unknown_submission(db, order, fulfillment, now, notifier):
                stats.succeeded += 1
            else:
                stats.failed += 1
            continue
        except FulfillmentError as e:
            _mark_failed(db, order, f"Order submission failed: {e}", notifier, needs_intervention=True)
            stats.failed += 1
            continue

        _mark_processing(db, order, vendor_order, now, notifier)
        stats.succeeded += 1

    return stats
