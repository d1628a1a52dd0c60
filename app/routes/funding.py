from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.clients.fulfillment_client import FulfillmentClient
from app.db import get_db
from app.deps.clients import get_fulfillment_client, get_notifier
from app.deps.user import get_operator_id
from app.models.enums import FundingScheduleStatus
from app.schemas.funding import (
    ExpectedPayoutCreate,
    FundingAlertOut,
    FundingScheduleOut,
    FundingStatusOut,
    PayoutReceived,
    TransferCreate,
)
from app.services import funding_reconciliation_service as funding
from app.services.notification_service import Notifier


router = APIRouter(prefix="/admin/funding", tags=["admin-funding"], dependencies=[Depends(get_operator_id)])


@router.get("/status", response_model=FundingStatusOut)
def get_funding_status(
    fulfillment: FulfillmentClient = Depends(get_fulfillment_client),
    db: Session = Depends(get_db),
):
    snapshot = funding.funding_overview(db, fulfillment=fulfillment)
    return FundingStatusOut(
        current_balance=snapshot.current_balance,
        expected_payouts=snapshot.expected_payouts,
        projected_balance=snapshot.projected_balance,
        pending_orders_value=snapshot.pending_orders_value,
        shortfall=snapshot.shortfall,
        recommended_transfer=snapshot.recommended_transfer,
        orders_waiting=len(snapshot.blocked_order_ids),
    )


@router.post("/reconcile")
def reconcile_now(
    fulfillment: FulfillmentClient = Depends(get_fulfillment_client),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    stats = funding.reconcile_funding(db, fulfillment=fulfillment, notifier=notifier)
    return stats.as_dict()


@router.get("/alerts", response_model=list[FundingAlertOut])
def list_funding_alerts(
    include_resolved: bool = False,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    return funding.list_alerts(db, include_resolved=include_resolved, limit=limit)


@router.post("/alerts/{alert_id}/resolve", response_model=FundingAlertOut)
def resolve_funding_alert(
    alert_id: UUID,
    operator_id: str = Depends(get_operator_id),
    db: Session = Depends(get_db),
):
    return funding.resolve_alert(db, alert_id, operator_id=operator_id)


@router.post("/transfers", response_model=FundingScheduleOut)
def confirm_transfer(
    payload: TransferCreate,
    operator_id: str = Depends(get_operator_id),
    db: Session = Depends(get_db),
):
    return funding.record_transfer(
        db,
        amount=payload.amount,
        operator_id=operator_id,
        notes=payload.notes,
        balance_before=payload.balance_before,
    )


@router.get("/schedule", response_model=list[FundingScheduleOut])
def list_funding_schedule(
    status: FundingScheduleStatus | None = None,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    return funding.list_schedule(db, status=status, limit=limit)


@router.post("/schedule", response_model=FundingScheduleOut)
def add_expected_payout(
    payload: ExpectedPayoutCreate,
    db: Session = Depends(get_db),
):
    return funding.record_expected_payout(
        db,
        expected_payout_date=payload.expected_payout_date,
        expected_amount=payload.expected_amount,
        notes=payload.notes,
    )


@router.post("/schedule/{schedule_id}/received", response_model=FundingScheduleOut)
def mark_payout_received(
    schedule_id: UUID,
    payload: PayoutReceived,
    db: Session = Depends(get_db),
):
    return funding.mark_payout_received(
        db,
        schedule_id,
        actual_amount=payload.actual_amount,
        actual_payout_date=payload.actual_payout_date,
    )
