from datetime import date, datetime, timedelta
from decimal import Decimal

from app.clients.payment_gateway import PaymentAmbiguousError, PaymentDeclinedError, PaymentError
from app.models.enums import ExecutionStatus, FundingStatus, OrderStatus, PaymentStatus
from app.models.gift_order import GiftOrder
from app.models.payment_attempt import PaymentAttempt
from app.services import notification_service
from app.services.payment_capture_service import authorize_approved, capture_due, list_payment_attempts

from tests.fakes import NOW


CAPTURE_DAY = datetime(2025, 12, 21, 9, 0, 0)


def _authorize(db, gateway, notifier, now=NOW):
    return authorize_approved(db, now=now, gateway=gateway, notifier=notifier, worker_id="test-worker")


def _capture(db, gateway, notifier, now=CAPTURE_DAY):
    return capture_due(db, now=now, gateway=gateway, notifier=notifier, worker_id="test-worker")


# =============================================================================
# Authorization
# =============================================================================

def test_approved_execution_is_authorized_and_scheduled(db, make_rule, make_execution, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.APPROVED)

    stats = _authorize(db, gateway, notifier)

    db.refresh(execution)
    order = db.query(GiftOrder).one()
    assert stats.succeeded == 1
    assert execution.status == ExecutionStatus.AWAITING_FUNDS
    assert execution.order_id == order.id
    assert order.status == OrderStatus.SCHEDULED
    assert order.payment_status == PaymentStatus.AUTHORIZED
    assert order.funding_status == FundingStatus.AWAITING_FUNDS
    assert order.funding_hold_reason == "payment_not_captured"
    assert order.delivery_date == date(2025, 12, 25)
    assert order.capture_date == date(2025, 12, 21)
    assert order.total_amount == Decimal("40.00")
    assert order.payment_idempotency_key == f"autogift-auth-{execution.id}"
    assert gateway.calls == [("authorize", f"autogift-auth-{execution.id}")]


def test_authorization_runs_once_per_execution(db, make_rule, make_execution, gateway, notifier):
    make_execution(make_rule(), status=ExecutionStatus.APPROVED)

    _authorize(db, gateway, notifier)
    second = _authorize(db, gateway, notifier, now=NOW + timedelta(minutes=10))

    assert second.processed == 0
    assert db.query(GiftOrder).count() == 1
    assert gateway.call_names() == ["authorize"]


def test_decline_fails_payment_and_notifies(db, make_rule, make_execution, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.APPROVED)
    gateway.authorize_error = PaymentDeclinedError("Your card was declined.")

    stats = _authorize(db, gateway, notifier)

    db.refresh(execution)
    assert stats.failed == 1
    assert execution.status == ExecutionStatus.PAYMENT_FAILED
    assert "declined" in execution.error_message
    assert db.query(GiftOrder).count() == 0
    assert notifier.kinds() == [notification_service.PAYMENT_FAILED]


def test_missing_payment_method_fails_without_calling_processor(db, make_rule, make_execution, gateway, notifier):
    execution = make_execution(make_rule(payment_method_id=None), status=ExecutionStatus.APPROVED)

    _authorize(db, gateway, notifier)

    db.refresh(execution)
    assert execution.status == ExecutionStatus.PAYMENT_FAILED
    assert gateway.calls == []


def test_ambiguous_authorization_that_landed_is_recovered(db, make_rule, make_execution, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.APPROVED)
    gateway.authorize_error = PaymentAmbiguousError("read timeout")
    gateway.authorize_lands = True

    stats = _authorize(db, gateway, notifier)

    db.refresh(execution)
    assert stats.succeeded == 1
    assert execution.status == ExecutionStatus.AWAITING_FUNDS
    assert db.query(GiftOrder).count() == 1
    assert gateway.call_names() == ["authorize", "find"]


def test_ambiguous_authorization_retries_with_same_key(db, make_rule, make_execution, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.APPROVED)
    gateway.authorize_error = PaymentAmbiguousError("connection reset")

    first = _authorize(db, gateway, notifier)

    db.refresh(execution)
    assert first.failed == 1
    assert execution.status == ExecutionStatus.APPROVED
    assert execution.claimed_at is None
    assert db.query(GiftOrder).count() == 0

    gateway.authorize_error = None
    _authorize(db, gateway, notifier, now=NOW + timedelta(minutes=10))

    db.refresh(execution)
    keys = [c[1] for c in gateway.calls if c[0] == "authorize"]
    assert execution.status == ExecutionStatus.AWAITING_FUNDS
    assert keys == [f"autogift-auth-{execution.id}"] * 2


def test_other_processor_errors_fail_payment(db, make_rule, make_execution, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.APPROVED)
    gateway.authorize_error = PaymentError("invalid payment method")

    _authorize(db, gateway, notifier)

    db.refresh(execution)
    assert execution.status == ExecutionStatus.PAYMENT_FAILED


# =============================================================================
# Capture
# =============================================================================

def test_nothing_captured_before_capture_date(db, make_rule, make_execution, make_order, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.AWAITING_FUNDS)
    make_order(execution)

    stats = _capture(db, gateway, notifier, now=NOW)

    assert stats.processed == 0
    assert "capture" not in gateway.call_names()


def test_capture_four_days_before_delivery(db, make_rule, make_execution, make_order, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.AWAITING_FUNDS)
    order = make_order(execution)

    stats = _capture(db, gateway, notifier)

    db.refresh(order)
    db.refresh(execution)
    assert stats.succeeded == 1
    assert order.status == OrderStatus.PAYMENT_CONFIRMED
    assert order.payment_status == PaymentStatus.CAPTURED
    assert order.payment_capture_id == f"ch_{order.payment_authorization_id}"
    # funding reconciliation decides whether the vendor balance covers it
    assert order.funding_status == FundingStatus.AWAITING_FUNDS
    assert order.funding_hold_reason == "pending_allocation"
    assert order.funds_allocated_at is None
    assert order.expected_funds_at == CAPTURE_DAY + timedelta(days=2)
    assert execution.status == ExecutionStatus.PAYMENT_CONFIRMED
    assert ("capture", order.payment_authorization_id, f"autogift-capture-{order.id}") in gateway.calls


def test_capture_failure_needs_attention(db, make_rule, make_execution, make_order, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.AWAITING_FUNDS)
    order = make_order(execution)
    gateway.capture_error = PaymentError("authorization expired")

    stats = _capture(db, gateway, notifier)

    db.refresh(order)
    db.refresh(execution)
    assert stats.failed == 1
    assert order.status == OrderStatus.CAPTURE_FAILED
    assert order.payment_status == PaymentStatus.FAILED
    assert order.needs_intervention is True
    assert execution.status == ExecutionStatus.NEEDS_ATTENTION
    assert notifier.kinds() == [notification_service.CAPTURE_NEEDS_ATTENTION]


def test_ambiguous_capture_that_landed_is_confirmed(db, make_rule, make_execution, make_order, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.AWAITING_FUNDS)
    order = make_order(execution)
    gateway.capture_error = PaymentAmbiguousError("read timeout")
    gateway.capture_lands = True

    _capture(db, gateway, notifier)

    db.refresh(order)
    assert order.status == OrderStatus.PAYMENT_CONFIRMED
    assert gateway.call_names() == ["capture", "retrieve"]


def test_ambiguous_capture_still_open_is_released(db, make_rule, make_execution, make_order, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.AWAITING_FUNDS)
    order = make_order(execution)
    gateway.capture_error = PaymentAmbiguousError("connection reset")

    stats = _capture(db, gateway, notifier)

    db.refresh(order)
    assert stats.skipped == 1
    assert order.status == OrderStatus.SCHEDULED
    assert order.claimed_at is None

    gateway.capture_error = None
    _capture(db, gateway, notifier, now=CAPTURE_DAY + timedelta(hours=1))

    db.refresh(order)
    assert order.status == OrderStatus.PAYMENT_CONFIRMED


def test_never_captures_without_authorization(db, make_rule, make_execution, make_order, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.AWAITING_FUNDS)
    order = make_order(execution, authorization_id=None)

    _capture(db, gateway, notifier)

    db.refresh(order)
    assert order.status == OrderStatus.CAPTURE_FAILED
    assert "capture" not in gateway.call_names()


def test_stale_capturing_order_is_resolved_from_processor(db, make_rule, make_execution, make_order, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.AWAITING_FUNDS)
    order = make_order(execution, status=OrderStatus.CAPTURING)
    order.claimed_at = CAPTURE_DAY - timedelta(hours=2)
    order.claimed_by = "dead-worker"
    gateway.intents[order.payment_authorization_id].status = "succeeded"
    db.commit()

    stats = _capture(db, gateway, notifier)

    db.refresh(order)
    db.refresh(execution)
    assert stats.succeeded == 1
    assert order.status == OrderStatus.PAYMENT_CONFIRMED
    assert execution.status == ExecutionStatus.PAYMENT_CONFIRMED
    assert "capture" not in gateway.call_names()


def test_cancelled_order_is_not_captured(db, make_rule, make_execution, make_order, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.AWAITING_FUNDS)
    make_order(execution, status=OrderStatus.CANCELLED, payment_status=PaymentStatus.CANCELED)

    stats = _capture(db, gateway, notifier)

    assert stats.processed == 0
    assert gateway.calls == []


# =============================================================================
# Audit trail
# =============================================================================

def test_authorization_leaves_audit_row(db, make_rule, make_execution, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.APPROVED)

    _authorize(db, gateway, notifier)

    order = db.query(GiftOrder).one()
    [attempt] = list_payment_attempts(db, execution.id)
    assert attempt.operation == "authorize"
    assert attempt.status == "succeeded"
    assert attempt.order_id == order.id
    assert attempt.amount == Decimal("40.00")
    assert attempt.payment_intent_id == order.payment_authorization_id
    assert attempt.payment_method_id == "pm_card_visa"
    assert attempt.idempotency_key == f"autogift-auth-{execution.id}"
    assert attempt.created_at == NOW


def test_declined_authorization_is_audited(db, make_rule, make_execution, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.APPROVED)
    gateway.authorize_error = PaymentDeclinedError("Your card was declined.")

    _authorize(db, gateway, notifier)

    [attempt] = list_payment_attempts(db, execution.id)
    assert attempt.status == "declined"
    assert attempt.order_id is None
    assert attempt.error_message == "Your card was declined."


def test_no_audit_row_without_processor_call(db, make_rule, make_execution, gateway, notifier):
    make_execution(make_rule(payment_method_id=None), status=ExecutionStatus.APPROVED)

    _authorize(db, gateway, notifier)

    assert db.query(PaymentAttempt).count() == 0


def test_unknown_authorization_and_retry_are_both_audited(db, make_rule, make_execution, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.APPROVED)
    gateway.authorize_error = PaymentAmbiguousError("connection reset")
    _authorize(db, gateway, notifier)

    gateway.authorize_error = None
    _authorize(db, gateway, notifier, now=NOW + timedelta(minutes=10))

    attempts = list_payment_attempts(db, execution.id)
    assert [a.status for a in attempts] == ["unknown", "succeeded"]
    assert attempts[0].error_message == "connection reset"
    assert {a.idempotency_key for a in attempts} == {f"autogift-auth-{execution.id}"}


def test_capture_leaves_audit_row(db, make_rule, make_execution, make_order, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.AWAITING_FUNDS)
    order = make_order(execution)

    _capture(db, gateway, notifier)

    [attempt] = list_payment_attempts(db, execution.id)
    assert attempt.operation == "capture"
    assert attempt.status == "succeeded"
    assert attempt.order_id == order.id
    assert attempt.payment_intent_id == order.payment_authorization_id
    assert attempt.idempotency_key == f"autogift-capture-{order.id}"
    assert attempt.created_at == CAPTURE_DAY


def test_failed_capture_is_audited(db, make_rule, make_execution, make_order, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.AWAITING_FUNDS)
    make_order(execution)
    gateway.capture_error = PaymentError("authorization expired")

    _capture(db, gateway, notifier)

    [attempt] = list_payment_attempts(db, execution.id)
    assert attempt.status == "failed"
    assert attempt.error_message == "authorization expired"


def test_recovered_capture_keeps_the_unknown_attempt(db, make_rule, make_execution, make_order, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.AWAITING_FUNDS)
    make_order(execution)
    gateway.capture_error = PaymentAmbiguousError("read timeout")
    gateway.capture_lands = True

    _capture(db, gateway, notifier)

    statuses = sorted(a.status for a in list_payment_attempts(db, execution.id))
    assert statuses == ["recovered", "unknown"]


def test_cancelled_order_leaves_no_capture_audit(db, make_rule, make_execution, make_order, gateway, notifier):
    execution = make_execution(make_rule(), status=ExecutionStatus.AWAITING_FUNDS)
    make_order(execution, status=OrderStatus.CANCELLED, payment_status=PaymentStatus.CANCELED)

    _capture(db, gateway, notifier)

    assert list_payment_attempts(db, execution.id) == []
