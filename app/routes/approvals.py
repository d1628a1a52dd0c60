"""One-click approval links from the approval email; no signed-in session required."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.auto_gift_execution import AutoGiftExecution
from app.schemas.approval import ApprovalDetailsOut
from app.schemas.execution import ApproveRequest, ExecutionOut, RejectRequest
from app.services import approval_service
from app.timeutil import utcnow


router = APIRouter(prefix="/approvals", tags=["approvals"])


@router.get("/{token}", response_model=ApprovalDetailsOut)
def get_approval(token: str, db: Session = Depends(get_db)):
    row = approval_service.get_token(db, token)
    execution = db.get(AutoGiftExecution, row.execution_id)
    return ApprovalDetailsOut(
        execution_id=execution.id,
        status=execution.status,
        occasion_date=execution.occasion_date,
        selected_products=execution.selected_products or [],
        total_amount=execution.total_amount,
        gift_message=execution.gift_message,
        expires_at=row.expires_at,
        expired=row.expires_at <= utcnow(),
        used=row.approved_at is not None or row.rejected_at is not None,
    )


@router.post("/{token}/approve", response_model=ExecutionOut)
def approve_by_token(token: str, payload: ApproveRequest | None = None, db: Session = Depends(get_db)):
    return approval_service.approve_with_token(
        db,
        token,
        selected_product_ids=payload.selected_product_ids if payload else None,
    )


@router.post("/{token}/reject", response_model=ExecutionOut)
def reject_by_token(token: str, payload: RejectRequest, db: Session = Depends(get_db)):
    return approval_service.reject_with_token(db, token, reason=payload.reason)
