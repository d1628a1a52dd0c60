"""Keep the vendor operating account ahead of the orders that will draw on it.

Customer payments are captured into the processor account and paid out to the
operating account a couple of days later; the vendor charges the operating
account when an order is submitted. Reconciliation compares what is (or will
shortly be) in the account with the captured orders still waiting to be
submitted, blocks the orders it cannot cover and raises operator alerts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_CEILING, Decimal

from fastapi import HTTPException
from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from app.clients.fulfillment_client import FulfillmentClient
from app.constants import RECOMMENDED_TRANSFER_MARGIN, ZMA_BUFFER_AMOUNT
from app.models.enums import FundingAlertType, FundingHoldReason, FundingScheduleStatus, FundingStatus, OrderStatus
from app.models.gift_order import GiftOrder
from app.models.zma_funding_alert import ZMAFundingAlert
from app.models.zma_funding_schedule import ZMAFundingSchedule
from app.services import notification_service
from app.services.execution_service import StageRunStats
from app.services.notification_service import Notifier, notify
from app.timeutil import utcnow


logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

ALLOCATABLE_HOLDS = (
    FundingHoldReason.PENDING_ALLOCATION.value,
    FundingHoldReason.INSUFFICIENT_OPERATING_BALANCE.value,
)


@dataclass
class FundingSnapshot:
    current_balance: Decimal
    expected_payouts: Decimal
    projected_balance: Decimal
    pending_orders_value: Decimal
    shortfall: Decimal
    recommended_transfer: Decimal
    funded_order_ids: list = field(default_factory=list)
    blocked_order_ids: list = field(default_factory=list)
    overdue_order_ids: list = field(default_factory=list)


def recommended_transfer(shortfall: Decimal) -> Decimal:
    if shortfall <= 0:
        return ZERO
    return (shortfall * RECOMMENDED_TRANSFER_MARGIN).to_integral_value(rounding=ROUND_CEILING).quantize(Decimal("0.01"))


def expected_payouts(db: Session, today) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(ZMAFundingSchedule.expected_amount), 0))
        .filter(ZMAFundingSchedule.status == FundingScheduleStatus.EXPECTED)
        .filter(ZMAFundingSchedule.expected_payout_date.isnot(None))
        .filter(ZMAFundingSchedule.expected_payout_date <= today)
        .scalar()
    )
    return Decimal(str(total or 0)).quantize(Decimal("0.01"))


def outstanding_orders(db: Session) -> list[GiftOrder]:
    """Captured orders not yet submitted, in the order they must ship."""
    return (
        db.query(GiftOrder)
        .filter(GiftOrder.status == OrderStatus.PAYMENT_CONFIRMED)
        .filter(
            or_(
                GiftOrder.funding_status == FundingStatus.FUNDED,
                and_(
                    GiftOrder.funding_status == FundingStatus.AWAITING_FUNDS,
                    GiftOrder.funding_hold_reason.in_(ALLOCATABLE_HOLDS),
                ),
            )
        )
        .order_by(GiftOrder.delivery_date.asc(), GiftOrder.created_at.asc())
        .all()
    )


def plan_allocation(
    orders: list[GiftOrder],
    projected_balance: Decimal,
    *,
    held_ids: frozenset = frozenset(),
) -> tuple[list[GiftOrder], list[GiftOrder]]:
    """Cover orders in delivery order until the first one that does not fit.

    Later orders never jump the queue, so the earliest delivery is never starved
    by smaller orders behind it. Orders in ``held_ids`` stay blocked whatever the
    balance, and so does everything behind them.
    """
    remaining = projected_balance
    covered, blocked = [], []
    for order in orders:
        amount = Decimal(order.total_amount)
        if not blocked and order.id not in held_ids and amount <= remaining:
            covered.append(order)
            remaining -= amount
        else:
            blocked.append(order)
    return covered, blocked


def _set_funding(db: Session, order: GiftOrder, **values) -> bool:
    # only while still waiting for submission; a claimed order is left alone
    count = (
        db.query(GiftOrder)
        .filter(GiftOrder.id == order.id)
        .filter(GiftOrder.status == OrderStatus.PAYMENT_CONFIRMED)
        .update(values, synchronize_session="fetch")
    )
    return count == 1


def _open_alert(db: Session, alert_type: FundingAlertType) -> ZMAFundingAlert | None:
    return (
        db.query(ZMAFundingAlert)
        .filter(ZMAFundingAlert.alert_type == alert_type)
        .filter(ZMAFundingAlert.resolved_at.is_(None))
        .order_by(ZMAFundingAlert.alert_sent_at.desc())
        .first()
    )


def _raise_alert(
    db: Session,
    alert_type: FundingAlertType,
    snapshot: FundingSnapshot,
    *,
    orders_waiting: int,
    now: datetime,
    notifier: Notifier | None,
) -> ZMAFundingAlert:
    alert = _open_alert(db, alert_type)
    is_new = alert is None
    if is_new:
        alert = ZMAFundingAlert(alert_type=alert_type, alert_sent_at=now)
        db.add(alert)

    alert.zma_current_balance = snapshot.current_balance
    alert.projected_balance = snapshot.projected_balance
    alert.pending_orders_value = snapshot.pending_orders_value
    alert.recommended_transfer_amount = snapshot.recommended_transfer
    alert.orders_count_waiting = orders_waiting
    db.flush()

    if is_new:
        logger.warning(
            "funding alert raised",
            extra={
                "alert_type": alert_type.value,
                "shortfall": str(snapshot.shortfall),
                "recommended_transfer": str(snapshot.recommended_transfer),
                "orders_waiting": orders_waiting,
            },
        )
        notify(
            notifier,
            notification_service.FUNDING_ALERT,
            alert_id=alert.id,
            alert_type=alert_type.value,
            current_balance=str(snapshot.current_balance),
            projected_balance=str(snapshot.projected_balance),
            pending_orders_value=str(snapshot.pending_orders_value),
            recommended_transfer_amount=str(snapshot.recommended_transfer),
            orders_count_waiting=orders_waiting,
        )
    return alert


def reconcile_funding(
    db: Session,
    *,
    now: datetime | None = None,
    fulfillment: FulfillmentClient,
    notifier: Notifier | None = None,
) -> StageRunStats:
    if now is None:
        now = utcnow()
    today = now.date()

    stats = StageRunStats()

    balance = fulfillment.get_account_balance()
    payouts = expected_payouts(db, today)
    projected = balance + payouts

    orders = outstanding_orders(db)
    pending_value = sum((Decimal(o.total_amount) for o in orders), ZERO)
    shortfall = max(ZERO, pending_value - projected)

    # a blocked order is released only after an operator has resolved the critical alert
    held_ids = frozenset()
    if _open_alert(db, FundingAlertType.CRITICAL_BALANCE) is not None:
        held_ids = frozenset(
            o.id for o in orders if o.funding_hold_reason == FundingHoldReason.INSUFFICIENT_OPERATING_BALANCE.value
        )

    covered, blocked = plan_allocation(orders, projected, held_ids=held_ids)

    snapshot = FundingSnapshot(
        current_balance=balance,
        expected_payouts=payouts,
        projected_balance=projected,
        pending_orders_value=pending_value,
        shortfall=shortfall,
        recommended_transfer=recommended_transfer(shortfall),
    )

    for order in covered:
        stats.processed += 1
        if order.funding_status == FundingStatus.FUNDED and order.funding_hold_reason is None and order.funds_allocated_at:
            stats.idempotent_existing += 1
            snapshot.funded_order_ids.append(order.id)
            continue
        if _set_funding(
            db,
            order,
            funding_status=FundingStatus.FUNDED,
            funding_hold_reason=None,
            funds_allocated_at=order.funds_allocated_at or now,
        ):
            stats.succeeded += 1
            snapshot.funded_order_ids.append(order.id)
        else:
            stats.skipped += 1

    for order in blocked:
        stats.processed += 1
        if _set_funding(
            db,
            order,
            funding_status=FundingStatus.AWAITING_FUNDS,
            funding_hold_reason=FundingHoldReason.INSUFFICIENT_OPERATING_BALANCE.value,
            funds_allocated_at=None,
        ):
            stats.failed += 1
            snapshot.blocked_order_ids.append(order.id)
            if order.expected_funds_at is not None and order.expected_funds_at < now:
                snapshot.overdue_order_ids.append(order.id)
        else:
            stats.skipped += 1

    if shortfall > 0:
        _raise_alert(db, FundingAlertType.CRITICAL_BALANCE, snapshot, orders_waiting=len(blocked), now=now, notifier=notifier)
    elif projected - pending_value < ZMA_BUFFER_AMOUNT:
        _raise_alert(db, FundingAlertType.LOW_BALANCE, snapshot, orders_waiting=len(blocked), now=now, notifier=notifier)

    if snapshot.overdue_order_ids:
        _raise_alert(
            db,
            FundingAlertType.PENDING_ORDERS_WAITING,
            snapshot,
            orders_waiting=len(snapshot.overdue_order_ids),
            now=now,
            notifier=notifier,
        )

    db.commit()
    logger.info(
        "funding reconciled",
        extra={
            "balance": str(balance),
            "projected_balance": str(projected),
            "pending_orders_value": str(pending_value),
            "funded": len(covered),
            "blocked": len(blocked),
            "held_for_alert": len(held_ids),
        },
    )
    return stats


def funding_overview(db: Session, *, now: datetime | None = None, fulfillment: FulfillmentClient) -> FundingSnapshot:
    """Read-only view for the operator dashboard; changes nothing."""
    if now is None:
        now = utcnow()

    balance = fulfillment.get_account_balance()
    payouts = expected_payouts(db, now.date())
    projected = balance + payouts
    orders = outstanding_orders(db)
    pending_value = sum((Decimal(o.total_amount) for o in orders), ZERO)
    shortfall = max(ZERO, pending_value - projected)

    return FundingSnapshot(
        current_balance=balance,
        expected_payouts=payouts,
        projected_balance=projected,
        pending_orders_value=pending_value,
        shortfall=shortfall,
        recommended_transfer=recommended_transfer(shortfall),
        blocked_order_ids=[o.id for o in orders if o.funding_status == FundingStatus.AWAITING_FUNDS],
    )


def list_alerts(db: Session, *, include_resolved: bool = False, limit: int = 50) -> list[ZMAFundingAlert]:
    q = db.query(ZMAFundingAlert)
    if not include_resolved:
        q = q.filter(ZMAFundingAlert.resolved_at.is_(None))
    limit = max(1, min(limit, 200))
    return q.order_by(ZMAFundingAlert.alert_sent_at.desc()).limit(limit).all()


def resolve_alert(db: Session, alert_id, *, operator_id: str, now: datetime | None = None) -> ZMAFundingAlert:
    if now is None:
        now = utcnow()

    alert = db.get(ZMAFundingAlert, alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail="Funding alert not found")
    if alert.resolved_at is None:
        alert.resolved_at = now
        alert.resolved_by = operator_id
        db.commit()
        db.refresh(alert)
        logger.info("funding alert resolved", extra={"alert_id": str(alert.id), "operator_id": operator_id})
    return alert


def record_transfer(
    db: Session,
    *,
    amount: Decimal,
    operator_id: str,
    notes: str | None = None,
    balance_before: Decimal | None = None,
    now: datetime | None = None,
) -> ZMAFundingSchedule:
    """Record an operator transfer into the vendor account and close the open alerts."""
    if now is None:
        now = utcnow()
    if amount is None or Decimal(amount) <= 0:
        raise HTTPException(status_code=400, detail="Transfer amount must be positive")

    row = ZMAFundingSchedule(
        status=FundingScheduleStatus.TRANSFERRED,
        transfer_date=now,
        transfer_amount=Decimal(amount),
        transferred_to_vendor=True,
        admin_confirmed_by=operator_id,
        zma_balance_before=balance_before,
        notes=notes or "Manual transfer confirmed by operator",
    )
    db.add(row)

    resolved = (
        db.query(ZMAFundingAlert)
        .filter(ZMAFundingAlert.resolved_at.is_(None))
        .update({ZMAFundingAlert.resolved_at: now, ZMAFundingAlert.resolved_by: operator_id}, synchronize_session="fetch")
    )
    db.commit()
    db.refresh(row)

    logger.info(
        "vendor account transfer recorded",
        extra={"amount": str(row.transfer_amount), "operator_id": operator_id, "alerts_resolved": resolved},
    )
    return row


def record_expected_payout(
    db: Session,
    *,
    expected_payout_date,
    expected_amount: Decimal,
    notes: str | None = None,
) -> ZMAFundingSchedule:
    row = ZMAFundingSchedule(
        status=FundingScheduleStatus.EXPECTED,
        expected_payout_date=expected_payout_date,
        expected_amount=Decimal(expected_amount),
        notes=notes,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def mark_payout_received(
    db: Session,
    schedule_id,
    *,
    actual_amount: Decimal,
    actual_payout_date=None,
    now: datetime | None = None,
) -> ZMAFundingSchedule:
    if now is None:
        now = utcnow()

    row = db.get(ZMAFundingSchedule, schedule_id)
    if not row:
        raise HTTPException(status_code=404, detail="Funding schedule entry not found")
    if row.status != FundingScheduleStatus.EXPECTED:
        raise HTTPException(status_code=409, detail=f"Schedule entry is already {row.status.value}")

    row.status = FundingScheduleStatus.RECEIVED
    row.actual_amount = Decimal(actual_amount)
    row.actual_payout_date = actual_payout_date or now.date()
    db.commit()
    db.refresh(row)
    return row


def list_schedule(db: Session, *, status: FundingScheduleStatus | None = None, limit: int = 50) -> list[ZMAFundingSchedule]:
    q = db.query(ZMAFundingSchedule)
    if status is not None:
        q = q.filter(ZMAFundingSchedule.status == status)
    limit = max(1, min(limit, 200))
    return q.order_by(ZMAFundingSchedule.created_at.desc()).limit(limit).all()
