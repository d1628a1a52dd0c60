from datetime import datetime, timedelta

import pytest

from app.clients.fulfillment_client import FulfillmentError
from app.models.enums import RETRYABLE_EXECUTION_STATUSES, ExecutionStatus, FundingStatus, OrderStatus, PaymentStatus
from app.services import notification_service
from app.services.order_tracking_service import sync_vendor_orders


SUBMITTED_AT = datetime(2025, 12, 25, 9, 30, 0)
LATER = SUBMITTED_AT + timedelta(hours=6)


@pytest.fixture
def placed(db, make_rule, make_execution, make_order):
    execution = make_execution(make_rule(), status=ExecutionStatus.PROCESSING)
    order = make_order(
        execution,
        status=OrderStatus.PROCESSING,
        payment_status=PaymentStatus.CAPTURED,
        funding_status=FundingStatus.FUNDS_ALLOCATED,
        funding_hold_reason=None,
    )
    order.vendor_order_id = "zinc_1"
    order.submitted_at = SUBMITTED_AT
    db.commit()
    return execution, order


def _sync(db, fulfillment, notifier, now=LATER):
    return sync_vendor_orders(db, now=now, fulfillment=fulfillment, notifier=notifier)


def test_fresh_orders_are_left_alone(db, placed, fulfillment, notifier):
    fulfillment.report("zinc_1", "shipped", tracking_number="1Z999")

    stats = _sync(db, fulfillment, notifier, now=SUBMITTED_AT + timedelta(minutes=5))

    assert stats.processed == 0
    db.refresh(placed[1])
    assert placed[1].status == OrderStatus.PROCESSING


def test_shipped_order_records_tracking(db, placed, fulfillment, notifier):
    execution, order = placed
    fulfillment.report("zinc_1", "shipped", tracking_number="1Z999", carrier="UPS", tracking_url="https://ups.example/1Z999")

    stats = _sync(db, fulfillment, notifier)

    db.refresh(order)
    db.refresh(execution)
    assert stats.succeeded == 1
    assert order.status == OrderStatus.SHIPPED
    assert order.tracking_number == "1Z999"
    assert order.carrier == "UPS"
    assert order.tracking_url == "https://ups.example/1Z999"
    assert order.shipped_at == LATER
    assert order.last_synced_at == LATER
    assert execution.status == ExecutionStatus.PROCESSING
    assert notifier.kinds() == [notification_service.ORDER_SHIPPED]


def test_shipped_twice_notifies_once(db, placed, fulfillment, notifier):
    fulfillment.report("zinc_1", "shipped", tracking_number="1Z999")

    _sync(db, fulfillment, notifier)
    stats = _sync(db, fulfillment, notifier, now=LATER + timedelta(hours=1))

    assert stats.idempotent_existing == 1
    assert notifier.kinds() == [notification_service.ORDER_SHIPPED]


def test_delivery_completes_the_execution(db, placed, fulfillment, notifier):
    execution, order = placed
    fulfillment.report("zinc_1", "shipped", tracking_number="1Z999")
    _sync(db, fulfillment, notifier)

    fulfillment.report("zinc_1", "delivered")
    delivered_at = LATER + timedelta(days=1)
    stats = _sync(db, fulfillment, notifier, now=delivered_at)

    db.refresh(order)
    db.refresh(execution)
    assert stats.succeeded == 1
    assert order.status == OrderStatus.DELIVERED
    assert order.delivered_at == delivered_at
    assert order.shipped_at == LATER
    # tracking from the earlier sync survives a response without it
    assert order.tracking_number == "1Z999"
    assert execution.status == ExecutionStatus.COMPLETED
    assert notifier.kinds() == [notification_service.ORDER_SHIPPED, notification_service.ORDER_DELIVERED]


def test_delivered_orders_are_not_synced_again(db, placed, fulfillment, notifier):
    fulfillment.report("zinc_1", "delivered")
    _sync(db, fulfillment, notifier)

    stats = _sync(db, fulfillment, notifier, now=LATER + timedelta(days=1))

    assert stats.processed == 0


def test_vendor_failure_needs_intervention(db, placed, fulfillment, notifier):
    execution, order = placed
    fulfillment.report("zinc_1", "failed")

    stats = _sync(db, fulfillment, notifier)

    db.refresh(order)
    db.refresh(execution)
    assert stats.succeeded == 1
    assert order.status == OrderStatus.FULFILLMENT_FAILED
    assert order.needs_intervention is True
    assert execution.status == ExecutionStatus.FULFILLMENT_FAILED
    assert notifier.kinds() == [notification_service.FULFILLMENT_FAILED]


def test_vendor_cancellation_is_a_fulfillment_failure(db, placed, fulfillment, notifier):
    fulfillment.report("zinc_1", "cancelled")

    _sync(db, fulfillment, notifier)

    db.refresh(placed[1])
    assert placed[1].status == OrderStatus.FULFILLMENT_FAILED
    assert placed[1].error_message == "Vendor cancelled the order"


def test_still_processing_only_touches_sync_time(db, placed, fulfillment, notifier):
    execution, order = placed

    stats = _sync(db, fulfillment, notifier)

    db.refresh(order)
    assert stats.idempotent_existing == 1
    assert order.status == OrderStatus.PROCESSING
    assert order.vendor_status == "processing"
    assert order.last_synced_at == LATER
    assert notifier.sent == []


def test_lookup_error_leaves_order_untouched(db, placed, fulfillment, notifier):
    execution, order = placed
    fulfillment.get_error = FulfillmentError("vendor down")

    stats = _sync(db, fulfillment, notifier)

    db.refresh(order)
    assert stats.failed == 1
    assert order.status == OrderStatus.PROCESSING
    assert order.last_synced_at is None


def test_completed_occasion_is_not_scheduled_again(db, placed, fulfillment, notifier):
    fulfillment.report("zinc_1", "delivered")
    _sync(db, fulfillment, notifier)

    db.refresh(placed[0])
    assert placed[0].status not in RETRYABLE_EXECUTION_STATUSES
