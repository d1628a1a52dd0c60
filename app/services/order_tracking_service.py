"""Follow submitted orders at the vendor until they are delivered or fail."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.clients.fulfillment_client import (
    VENDOR_CANCELLED,
    VENDOR_DELIVERED,
    VENDOR_FAILED,
    VENDOR_SHIPPED,
    FulfillmentClient,
    FulfillmentError,
    VendorOrder,
)
from app.constants import VENDOR_SYNC_DELAY_MINUTES
from app.models.auto_gift_execution import AutoGiftExecution
from app.models.enums import ExecutionStatus, OrderStatus
from app.models.gift_order import GiftOrder
from app.services import notification_service
from app.services.execution_service import StageRunStats, transition
from app.services.notification_service import Notifier, notify
from app.timeutil import utcnow


logger = logging.getLogger(__name__)

IN_FLIGHT = (OrderStatus.PROCESSING, OrderStatus.SHIPPED)


def _tracking_fields(vendor_order: VendorOrder, order: GiftOrder) -> dict:
    return {
        "tracking_number": vendor_order.tracking_number or order.tracking_number,
        "carrier": vendor_order.carrier or order.carrier,
        "tracking_url": vendor_order.tracking_url or order.tracking_url,
    }


def _mark_shipped(db: Session, order: GiftOrder, vendor_order: VendorOrder, now: datetime, notifier: Notifier | None) -> bool:
    if not transition(
        db,
        order,
        expected=OrderStatus.PROCESSING,
        new=OrderStatus.SHIPPED,
        vendor_status=vendor_order.status,
        shipped_at=now,
        last_synced_at=now,
        **_tracking_fields(vendor_order, order),
    ):
        return False
    db.commit()
    logger.info("gift order shipped", extra={"order_id": str(order.id), "tracking_number": order.tracking_number})
    notify(
        notifier,
        notification_service.ORDER_SHIPPED,
        user_id=order.user_id,
        order_id=order.id,
        execution_id=order.execution_id,
        tracking_number=order.tracking_number,
        carrier=order.carrier,
        tracking_url=order.tracking_url,
    )
    return True


def _mark_delivered(db: Session, order: GiftOrder, vendor_order: VendorOrder, now: datetime, notifier: Notifier | None) -> bool:
    if not transition(
        db,
        order,
        expected=list(IN_FLIGHT),
        new=OrderStatus.DELIVERED,
        vendor_status=vendor_order.status,
        shipped_at=order.shipped_at or now,
        delivered_at=now,
        last_synced_at=now,
        **_tracking_fields(vendor_order, order),
    ):
        return False
    execution = db.get(AutoGiftExecution, order.execution_id)
    if execution is not None:
        transition(db, execution, expected=ExecutionStatus.PROCESSING, new=ExecutionStatus.COMPLETED, error_message=None)
    db.commit()
    logger.info("gift order delivered", extra={"order_id": str(order.id), "vendor_order_id": order.vendor_order_id})
    notify(
        notifier,
        notification_service.ORDER_DELIVERED,
        user_id=order.user_id,
        order_id=order.id,
        execution_id=order.execution_id,
        delivery_date=order.delivery_date.isoformat(),
    )
    return True


def _mark_failed(db: Session, order: GiftOrder, vendor_order: VendorOrder, reason: str, now: datetime, notifier: Notifier | None) -> bool:
    if not transition(
        db,
        order,
        expected=list(IN_FLIGHT),
        new=OrderStatus.FULFILLMENT_FAILED,
        vendor_status=vendor_order.status,
        last_synced_at=now,
        needs_intervention=True,
        error_message=reason,
    ):
        return False
    execution = db.get(AutoGiftExecution, order.execution_id)
    if execution is not None:
        transition(
            db,
            execution,
            expected=ExecutionStatus.PROCESSING,
            new=ExecutionStatus.FULFILLMENT_FAILED,
            error_message=reason,
        )
    db.commit()
    # the payment was captured; refund or re-order is an operator decision
    logger.error("gift order fulfillment failed", extra={"order_id": str(order.id), "reason": reason})
    notify(
        notifier,
        notification_service.FULFILLMENT_FAILED,
        user_id=order.user_id,
        order_id=order.id,
        execution_id=order.execution_id,
        vendor_order_id=order.vendor_order_id,
        amount=order.total_amount,
        reason=reason,
    )
    return True


def sync_vendor_orders(
    db: Session,
    *,
    now: datetime | None = None,
    fulfillment: FulfillmentClient,
    notifier: Notifier | None = None,
    limit: int = 50,
) -> StageRunStats:
    """Pull the vendor's view of every in-flight order and advance ours to match.

    A vendor lookup that fails leaves the order untouched for the next run.
    """
    if now is None:
        now = utcnow()

    stats = StageRunStats()
    settled_before = now - timedelta(minutes=VENDOR_SYNC_DELAY_MINUTES)

    orders = (
        db.query(GiftOrder)
        .filter(GiftOrder.status.in_(IN_FLIGHT))
        .filter(GiftOrder.vendor_order_id.isnot(None))
        .filter(GiftOrder.submitted_at <= settled_before)
        .order_by(GiftOrder.last_synced_at.asc().nulls_first(), GiftOrder.submitted_at.asc())
        .limit(limit)
        .all()
    )

    for order in orders:
        stats.processed += 1
        try:
            vendor_order = fulfillment.get_order(order.vendor_order_id)
        except FulfillmentError as e:
            logger.warning("vendor order lookup failed", extra={"order_id": str(order.id), "error": str(e)})
            stats.failed += 1
            continue

        if vendor_order.status == VENDOR_DELIVERED:
            moved = _mark_delivered(db, order, vendor_order, now, notifier)
        elif vendor_order.status == VENDOR_SHIPPED and order.status == OrderStatus.PROCESSING:
            moved = _mark_shipped(db, order, vendor_order, now, notifier)
        elif vendor_order.status == VENDOR_FAILED:
            moved = _mark_failed(db, order, vendor_order, "Vendor reported the order as failed", now, notifier)
        elif vendor_order.status == VENDOR_CANCELLED:
            moved = _mark_failed(db, order, vendor_order, "Vendor cancelled the order", now, notifier)
        else:
            order.vendor_status = vendor_order.status
            order.last_synced_at = now
            db.commit()
            stats.idempotent_existing += 1
            continue

        if moved:
            stats.succeeded += 1
        else:
            stats.skipped += 1

    return stats
