from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi import HTTPException

from app.errors import InvalidTransitionError, TokenAlreadyUsedError, TokenExpiredError, TokenNotFoundError
from app.models.enums import ExecutionStatus
from app.services import notification_service
from app.services.approval_service import (
    approve_execution,
    approve_with_token,
    reject_with_token,
    resend_approval_request,
    sweep_expired_approvals,
)

from tests.fakes import NOW, product


@pytest.fixture
def pending(make_rule, make_execution, make_token):
    rule = make_rule()
    execution = make_execution(
        rule,
        status=ExecutionStatus.PENDING_APPROVAL,
        products=[product("B001", "30.00"), product("B002", "15.00", title="Candle")],
    )
    token = make_token(execution)
    return execution, token


def test_approve_moves_execution_to_approved(db, pending):
    execution, token = pending

    approve_with_token(db, token.token, now=NOW)

    db.refresh(execution)
    db.refresh(token)
    assert execution.status == ExecutionStatus.APPROVED
    assert execution.total_amount == Decimal("45.00")
    assert token.approved_at == NOW
    assert token.approved_via == "email"


def test_token_is_consumed_once(db, pending):
    execution, token = pending
    approve_with_token(db, token.token, now=NOW)

    with pytest.raises(TokenAlreadyUsedError) as exc:
        approve_with_token(db, token.token, now=NOW + timedelta(minutes=1))
    assert exc.value.status_code == 409

    with pytest.raises(TokenAlreadyUsedError):
        reject_with_token(db, token.token, reason="changed my mind", now=NOW + timedelta(minutes=2))


def test_expired_token_expires_the_execution(db, make_rule, make_execution, make_token):
    execution = make_execution(make_rule(), status=ExecutionStatus.PENDING_APPROVAL)
    token = make_token(execution, expires_at=NOW - timedelta(minutes=1))

    with pytest.raises(TokenExpiredError) as exc:
        approve_with_token(db, token.token, now=NOW)

    db.refresh(execution)
    assert exc.value.status_code == 410
    assert execution.status == ExecutionStatus.EXPIRED


def test_unknown_token(db):
    with pytest.raises(TokenNotFoundError):
        approve_with_token(db, "nope", now=NOW)


def test_approval_can_narrow_the_selection(db, pending):
    execution, token = pending

    approve_with_token(db, token.token, now=NOW, selected_product_ids=["B002"])

    db.refresh(execution)
    assert [p["product_id"] for p in execution.selected_products] == ["B002"]
    assert execution.total_amount == Decimal("15.00")


def test_narrowing_to_unknown_product_is_refused(db, pending):
    execution, token = pending

    with pytest.raises(HTTPException) as exc:
        approve_with_token(db, token.token, now=NOW, selected_product_ids=["NOT-OFFERED"])

    db.refresh(token)
    assert exc.value.status_code == 400
    assert token.approved_at is None


def test_reject_records_reason(db, pending):
    execution, token = pending

    reject_with_token(db, token.token, reason="  already bought one  ", now=NOW)

    db.refresh(execution)
    db.refresh(token)
    assert execution.status == ExecutionStatus.REJECTED
    assert token.rejected_at == NOW
    assert token.rejection_reason == "already bought one"


def test_reject_requires_reason(db, pending):
    _, token = pending

    with pytest.raises(HTTPException) as exc:
        reject_with_token(db, token.token, reason="   ", now=NOW)
    assert exc.value.status_code == 400


def test_in_app_approval_consumes_the_emailed_token(db, pending):
    execution, token = pending

    approve_execution(db, execution, now=NOW)

    db.refresh(token)
    assert token.approved_via == "in_app"
    with pytest.raises(TokenAlreadyUsedError):
        approve_with_token(db, token.token, now=NOW)


def test_cancelled_execution_cannot_be_approved(db, pending):
    execution, token = pending
    execution.status = ExecutionStatus.CANCELLED
    db.commit()

    with pytest.raises(InvalidTransitionError):
        approve_with_token(db, token.token, now=NOW)


def test_resend_keeps_the_first_expiry(db, pending, notifier):
    execution, token = pending
    expires_at = token.expires_at

    resent = resend_approval_request(db, execution, now=NOW + timedelta(hours=1), notifier=notifier)

    assert resent.id == token.id
    assert resent.expires_at == expires_at
    assert resent.email_sent_at == NOW + timedelta(hours=1)
    assert notifier.kinds() == [notification_service.APPROVAL_REQUESTED]


def test_sweep_expires_only_lapsed_approvals(db, make_rule, make_execution, make_token, notifier):
    lapsed = make_execution(make_rule(), status=ExecutionStatus.PENDING_APPROVAL)
    make_token(lapsed, token="old", expires_at=NOW - timedelta(hours=1))
    live = make_execution(make_rule(recipient_id="friend-2"), status=ExecutionStatus.PENDING_APPROVAL)
    make_token(live, token="fresh", expires_at=NOW + timedelta(hours=1))

    stats = sweep_expired_approvals(db, now=NOW, notifier=notifier)

    db.refresh(lapsed)
    db.refresh(live)
    assert stats.succeeded == 1
    assert stats.skipped == 1
    assert lapsed.status == ExecutionStatus.EXPIRED
    assert live.status == ExecutionStatus.PENDING_APPROVAL
    assert notifier.kinds() == [notification_service.EXECUTION_EXPIRED]
