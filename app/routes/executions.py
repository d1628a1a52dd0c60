from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.clients.payment_gateway import PaymentGateway
from app.db import get_db
from app.deps.clients import get_notifier, get_payment_gateway
from app.deps.user import get_current_user_id
from app.models.auto_gift_execution import AutoGiftExecution
from app.models.enums import ExecutionStatus
from app.models.gift_order import GiftOrder
from app.schemas.execution import ApproveRequest, CancelRequest, ExecutionOut, PaymentAttemptOut, RejectRequest
from app.schemas.gift_order import GiftOrderOut
from app.services import approval_service
from app.services.execution_service import cancel_execution, list_executions
from app.services.notification_service import Notifier
from app.services.payment_capture_service import list_payment_attempts
from app.timeutil import utcnow


router = APIRouter(prefix="/executions", tags=["executions"])


def _get_owned(db: Session, execution_id: UUID, user_id: str) -> AutoGiftExecution:
    execution = db.query(AutoGiftExecution).filter(AutoGiftExecution.id == execution_id).first()
    if not execution or execution.user_id != user_id:
        raise HTTPException(status_code=404, detail="Execution not found")
    return execution


@router.get("", response_model=list[ExecutionOut])
def list_my_executions(
    status: list[ExecutionStatus] | None = Query(default=None),
    rule_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return list_executions(db, user_id=user_id, statuses=status, rule_id=rule_id, limit=limit, offset=offset)


@router.get("/{execution_id}", response_model=ExecutionOut)
def get_execution(
    execution_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _get_owned(db, execution_id, user_id)


@router.get("/{execution_id}/order", response_model=GiftOrderOut)
def get_execution_order(
    execution_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    execution = _get_owned(db, execution_id, user_id)
    order = db.query(GiftOrder).filter(GiftOrder.execution_id == execution.id).first()
    if not order:
        raise HTTPException(status_code=404, detail="No order for this execution yet")
    return order


@router.get("/{execution_id}/payment-attempts", response_model=list[PaymentAttemptOut])
def get_payment_attempts(
    execution_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    execution = _get_owned(db, execution_id, user_id)
    return list_payment_attempts(db, execution.id)


@router.post("/{execution_id}/approve", response_model=ExecutionOut)
def approve(
    execution_id: UUID,
    payload: ApproveRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    execution = _get_owned(db, execution_id, user_id)
    return approval_service.approve_execution(
        db,
        execution,
        selected_product_ids=payload.selected_product_ids if payload else None,
    )


@router.post("/{execution_id}/reject", response_model=ExecutionOut)
def reject(
    execution_id: UUID,
    payload: RejectRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    execution = _get_owned(db, execution_id, user_id)
    return approval_service.reject_execution(db, execution, reason=payload.reason)


@router.post("/{execution_id}/resend-approval")
def resend_approval(
    execution_id: UUID,
    user_id: str = Depends(get_current_user_id),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    execution = _get_owned(db, execution_id, user_id)
    token = approval_service.resend_approval_request(db, execution, notifier=notifier)
    return {"executionId": str(execution.id), "expiresAt": token.expires_at.isoformat(), "emailSentAt": (token.email_sent_at.isoformat() if token.email_sent_at else None)}


@router.post("/{execution_id}/cancel", response_model=ExecutionOut)
def cancel(
    execution_id: UUID,
    payload: CancelRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    execution = _get_owned(db, execution_id, user_id)
    reason = (payload.reason if payload and payload.reason else None) or "cancelled by user"
    return cancel_execution(db, execution, now=utcnow(), gateway=gateway, reason=reason)
