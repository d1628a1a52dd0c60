from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.clients.payment_gateway import PaymentGateway
from app.constants import DEFAULT_BUDGET_LIMIT, NOTIFICATION_LEAD_DAYS
from app.db import get_db
from app.deps.clients import get_payment_gateway
from app.deps.user import get_current_user_id
from app.models.auto_gift_rule import AutoGiftRule
from app.models.auto_gifting_settings import AutoGiftingSettings
from app.models.occasion import Occasion
from app.schemas.auto_gift_rule import AutoGiftRuleCreate, AutoGiftRuleOut, AutoGiftRuleUpdate, RetriggerRequest
from app.schemas.execution import ExecutionOut
from app.services.execution_service import cancel_open_executions_for_rule
from app.services.rule_evaluator import retrigger_execution
from app.timeutil import utcnow


router = APIRouter(prefix="/auto-gift-rules", tags=["auto-gift-rules"])


def _get_owned(db: Session, rule_id: UUID, user_id: str) -> AutoGiftRule:
    rule = db.query(AutoGiftRule).filter(AutoGiftRule.id == rule_id).first()
    if not rule or rule.user_id != user_id:
        raise HTTPException(status_code=404, detail="Auto-gift rule not found")
    return rule


def _validate_notification_days(days: list[int]) -> list[int]:
    if not days:
        raise HTTPException(status_code=400, detail="notification_days must not be empty")
    bad = [d for d in days if d < 1 or d > 60]
    if bad:
        raise HTTPException(status_code=400, detail=f"notification_days must be between 1 and 60 (got {bad})")
    return sorted(set(days), reverse=True)


def _validate_criteria(criteria: dict, budget: Decimal) -> dict:
    min_price = criteria.get("min_price")
    max_price = criteria.get("max_price")
    if min_price is not None and max_price is not None and Decimal(min_price) > Decimal(max_price):
        raise HTTPException(status_code=400, detail="min_price cannot exceed max_price")
    if min_price is not None and Decimal(min_price) > budget:
        raise HTTPException(status_code=400, detail="min_price cannot exceed budget_limit")
    # JSON column: keep prices as strings
    return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in criteria.items()}


def _check_occasion(db: Session, occasion_id: UUID | None, user_id: str):
    if occasion_id is None:
        return
    occasion = db.get(Occasion, occasion_id)
    if not occasion or occasion.user_id != user_id:
        raise HTTPException(status_code=400, detail="Unknown occasion_id")


@router.get("", response_model=list[AutoGiftRuleOut])
def list_rules(
    active: bool | None = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    q = db.query(AutoGiftRule).filter(AutoGiftRule.user_id == user_id)
    if active is not None:
        q = q.filter(AutoGiftRule.active.is_(active))
    return q.order_by(AutoGiftRule.created_at.desc()).all()


@router.post("", response_model=AutoGiftRuleOut)
def create_rule(
    payload: AutoGiftRuleCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    if not payload.recipient_id and not payload.pending_recipient_email:
        raise HTTPException(status_code=400, detail="Either recipient_id or pending_recipient_email is required")
    _check_occasion(db, payload.occasion_id, user_id)

    settings = db.get(AutoGiftingSettings, user_id)
    budget = payload.budget_limit
    if budget is None:
        budget = (settings.default_budget_limit if settings and settings.default_budget_limit else DEFAULT_BUDGET_LIMIT)

    days = payload.notification_days
    if days is None:
        days = (settings.default_notification_days if settings and settings.default_notification_days else [NOTIFICATION_LEAD_DAYS])

    rule = AutoGiftRule(
        user_id=user_id,
        recipient_id=payload.recipient_id,
        pending_recipient_email=payload.pending_recipient_email,
        occasion_id=payload.occasion_id,
        date_type=payload.date_type,
        budget_limit=budget,
        gift_selection_criteria=_validate_criteria(payload.gift_selection_criteria.model_dump(), Decimal(budget)),
        notification_days=_validate_notification_days(days),
        payment_method_id=payload.payment_method_id,
        require_approval=payload.require_approval,
        gift_message=payload.gift_message,
        shipping_address=payload.shipping_address,
        active=payload.active,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


@router.get("/{rule_id}", response_model=AutoGiftRuleOut)
def get_rule(
    rule_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _get_owned(db, rule_id, user_id)


@router.patch("/{rule_id}", response_model=AutoGiftRuleOut)
def update_rule(
    rule_id: UUID,
    payload: AutoGiftRuleUpdate,
    user_id: str = Depends(get_current_user_id),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    rule = _get_owned(db, rule_id, user_id)
    data = payload.model_dump(exclude_unset=True)

    if "occasion_id" in data:
        _check_occasion(db, data["occasion_id"], user_id)
    if "notification_days" in data:
        data["notification_days"] = _validate_notification_days(data["notification_days"] or [])

    budget = Decimal(data.get("budget_limit") or rule.budget_limit)
    if "gift_selection_criteria" in data:
        data["gift_selection_criteria"] = _validate_criteria(data["gift_selection_criteria"] or {}, budget)
    elif "budget_limit" in data:
        _validate_criteria(rule.gift_selection_criteria or {}, budget)

    deactivating = data.get("active") is False and rule.active
    for k, v in data.items():
        setattr(rule, k, v)

    now = utcnow()
    if deactivating:
        rule.deactivated_at = now
    elif data.get("active") is True:
        rule.deactivated_at = None
    db.commit()

    if deactivating:
        cancel_open_executions_for_rule(db, rule.id, now=now, gateway=gateway)

    db.refresh(rule)
    return rule


@router.delete("/{rule_id}")
def deactivate_rule(
    rule_id: UUID,
    user_id: str = Depends(get_current_user_id),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    """Rules are deactivated, never deleted: executions and orders keep pointing at them."""
    rule = _get_owned(db, rule_id, user_id)

    now = utcnow()
    if rule.active:
        rule.active = False
        rule.deactivated_at = now
        db.commit()

    cancelled = cancel_open_executions_for_rule(db, rule.id, now=now, gateway=gateway)
    return {"deactivated": True, "cancelledExecutions": cancelled}


@router.post("/{rule_id}/retrigger", response_model=ExecutionOut)
def retrigger_rule(
    rule_id: UUID,
    payload: RetriggerRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    rule = _get_owned(db, rule_id, user_id)
    if not rule.active:
        raise HTTPException(status_code=400, detail="Auto-gift rule is inactive")
    return retrigger_execution(db, rule, occasion_date=payload.occasion_date)
