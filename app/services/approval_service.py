"""Human approval of pending auto-gift executions.

A token is minted when an execution enters pending_approval and is mailed as a
one-click link. Consuming it (approve or reject) is the only way out of
pending_approval besides expiry. Every consumption is a conditional update on
the token row, so a token is consumed at most once even under concurrent clicks.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from decimal import Decimal

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.config import APPROVAL_LINK_BASE_URL
from app.constants import APPROVAL_TOKEN_TTL_HOURS
from app.errors import InvalidTransitionError, TokenAlreadyUsedError, TokenExpiredError, TokenNotFoundError
from app.models.approval_token import ApprovalToken
from app.models.auto_gift_execution import AutoGiftExecution
from app.models.enums import ExecutionStatus
from app.services import notification_service
from app.services.execution_service import RELEASED, StageRunStats, transition
from app.services.notification_service import Notifier, notify
from app.timeutil import utcnow


logger = logging.getLogger(__name__)


def approval_link(token: ApprovalToken) -> str:
    return f"{APPROVAL_LINK_BASE_URL.rstrip('/')}/{token.token}"


def mint_token(
    db: Session,
    execution: AutoGiftExecution,
    *,
    now: datetime,
    ttl_hours: int = APPROVAL_TOKEN_TTL_HOURS,
) -> ApprovalToken:
    token = ApprovalToken(
        user_id=execution.user_id,
        execution_id=execution.id,
        token=secrets.token_urlsafe(32),
        expires_at=now + timedelta(hours=ttl_hours),
    )
    db.add(token)
    db.flush()
    return token


def send_approval_request(
    db: Session,
    execution: AutoGiftExecution,
    token: ApprovalToken,
    *,
    now: datetime,
    notifier: Notifier | None,
) -> None:
    delivered = notify(
        notifier,
        notification_service.APPROVAL_REQUESTED,
        user_id=execution.user_id,
        execution_id=execution.id,
        occasion_date=execution.occasion_date.isoformat(),
        total_amount=execution.total_amount,
        products=[p.get("title") for p in execution.selected_products or []],
        approval_url=approval_link(token),
        expires_at=token.expires_at.isoformat(),
    )
    if delivered:
        token.email_sent_at = now


def get_token(db: Session, token_value: str) -> ApprovalToken:
    token = db.query(ApprovalToken).filter(ApprovalToken.token == token_value).first()
    if not token:
        raise TokenNotFoundError()
    return token


def latest_token(db: Session, execution: AutoGiftExecution) -> ApprovalToken | None:
    return (
        db.query(ApprovalToken)
        .filter(ApprovalToken.execution_id == execution.id)
        .order_by(ApprovalToken.expires_at.desc())
        .first()
    )


def _has_live_token(db: Session, execution: AutoGiftExecution, now: datetime) -> bool:
    return (
        db.query(ApprovalToken.id)
        .filter(ApprovalToken.execution_id == execution.id)
        .filter(ApprovalToken.approved_at.is_(None))
        .filter(ApprovalToken.rejected_at.is_(None))
        .filter(ApprovalToken.expires_at > now)
        .first()
        is not None
    )


def _expire_execution(db: Session, execution: AutoGiftExecution) -> bool:
    moved = transition(
        db,
        execution,
        expected=ExecutionStatus.PENDING_APPROVAL,
        new=ExecutionStatus.EXPIRED,
        error_message="approval window expired",
        **RELEASED,
    )
    db.commit()
    return moved


def _narrow_selection(execution: AutoGiftExecution, selected_product_ids: list[str] | None) -> tuple[list[dict], Decimal | None]:
    products = list(execution.selected_products or [])
    if selected_product_ids is None:
        return products, execution.total_amount

    wanted = {str(pid) for pid in selected_product_ids}
    if not wanted:
        raise HTTPException(status_code=400, detail="selected_product_ids must not be empty")

    known = {str(p.get("product_id")) for p in products}
    unknown = wanted - known
    if unknown:
        raise HTTPException(status_code=400, detail=f"Products not part of this selection: {sorted(unknown)}")

    kept = [p for p in products if str(p.get("product_id")) in wanted]
    total = sum((Decimal(str(p.get("price") or "0")) * int(p.get("quantity") or 1) for p in kept), Decimal("0"))
    return kept, total.quantize(Decimal("0.01"))


def _check_consumable(db: Session, token: ApprovalToken, execution: AutoGiftExecution, now: datetime) -> None:
    if token.approved_at is not None or token.rejected_at is not None:
        raise TokenAlreadyUsedError()
    if token.expires_at <= now:
        _expire_execution(db, execution)
        logger.info("expired approval token submitted", extra={"execution_id": str(execution.id)})
        raise TokenExpiredError()
    if execution.status != ExecutionStatus.PENDING_APPROVAL:
        raise InvalidTransitionError(f"Execution is {execution.status.value}, not awaiting approval")


def _consume(db: Session, token: ApprovalToken, now: datetime, **values) -> None:
    count = (
        db.query(ApprovalToken)
        .filter(ApprovalToken.id == token.id)
        .filter(ApprovalToken.approved_at.is_(None))
        .filter(ApprovalToken.rejected_at.is_(None))
        .filter(ApprovalToken.expires_at > now)
        .update(values, synchronize_session="fetch")
    )
    if count != 1:
        db.rollback()
        db.refresh(token)
        if token.approved_at is not None or token.rejected_at is not None:
            raise TokenAlreadyUsedError()
        raise TokenExpiredError()


def approve_with_token(
    db: Session,
    token_value: str,
    *,
    now: datetime | None = None,
    selected_product_ids: list[str] | None = None,
    via: str = "email",
) -> AutoGiftExecution:
    if now is None:
        now = utcnow()

    token = get_token(db, token_value)
    execution = db.get(AutoGiftExecution, token.execution_id)
    _check_consumable(db, token, execution, now)

    products, total = _narrow_selection(execution, selected_product_ids)

    _consume(db, token, now, approved_at=now, approved_via=via)
    if not transition(
        db,
        execution,
        expected=ExecutionStatus.PENDING_APPROVAL,
        new=ExecutionStatus.APPROVED,
        selected_products=products,
        total_amount=total,
    ):
        db.rollback()
        raise InvalidTransitionError("Execution changed while approving; reload and retry")

    db.commit()
    logger.info(
        "execution approved",
        extra={"execution_id": str(execution.id), "via": via, "products": len(products)},
    )
    return execution


def reject_with_token(
    db: Session,
    token_value: str,
    *,
    reason: str,
    now: datetime | None = None,
    via: str = "email",
) -> AutoGiftExecution:
    if now is None:
        now = utcnow()
    if not reason or not reason.strip():
        raise HTTPException(status_code=400, detail="A rejection reason is required")

    token = get_token(db, token_value)
    execution = db.get(AutoGiftExecution, token.execution_id)
    _check_consumable(db, token, execution, now)

    _consume(db, token, now, rejected_at=now, rejection_reason=reason.strip(), approved_via=via)
    if not transition(
        db,
        execution,
        expected=ExecutionStatus.PENDING_APPROVAL,
        new=ExecutionStatus.REJECTED,
        error_message=f"rejected: {reason.strip()}",
        **RELEASED,
    ):
        db.rollback()
        raise InvalidTransitionError("Execution changed while rejecting; reload and retry")

    db.commit()
    logger.info("execution rejected", extra={"execution_id": str(execution.id), "via": via})
    return execution


def _token_for_in_app(db: Session, execution: AutoGiftExecution) -> ApprovalToken:
    token = latest_token(db, execution)
    if token is None:
        raise InvalidTransitionError("Execution has no approval request")
    return token


def approve_execution(
    db: Session,
    execution: AutoGiftExecution,
    *,
    now: datetime | None = None,
    selected_product_ids: list[str] | None = None,
) -> AutoGiftExecution:
    """In-app approval by the signed-in owner; consumes the emailed token too."""
    token = _token_for_in_app(db, execution)
    return approve_with_token(db, token.token, now=now, selected_product_ids=selected_product_ids, via="in_app")


def reject_execution(
    db: Session,
    execution: AutoGiftExecution,
    *,
    reason: str,
    now: datetime | None = None,
) -> AutoGiftExecution:
    token = _token_for_in_app(db, execution)
    return reject_with_token(db, token.token, reason=reason, now=now, via="in_app")


def resend_approval_request(
    db: Session,
    execution: AutoGiftExecution,
    *,
    now: datetime | None = None,
    notifier: Notifier | None,
) -> ApprovalToken:
    """Re-send the live token; the approval window itself is not extended."""
    if now is None:
        now = utcnow()
    if execution.status != ExecutionStatus.PENDING_APPROVAL:
        raise InvalidTransitionError(f"Execution is {execution.status.value}, not awaiting approval")

    token = latest_token(db, execution)
    if token is None or token.expires_at <= now or token.approved_at or token.rejected_at:
        raise TokenExpiredError("No live approval token to resend")

    send_approval_request(db, execution, token, now=now, notifier=notifier)
    db.commit()
    return token


def sweep_expired_approvals(
    db: Session,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
    limit: int = 200,
) -> StageRunStats:
    if now is None:
        now = utcnow()

    stats = StageRunStats()
    pending = (
        db.query(AutoGiftExecution)
        .filter(AutoGiftExecution.status == ExecutionStatus.PENDING_APPROVAL)
        .order_by(AutoGiftExecution.created_at.asc())
        .limit(limit)
        .all()
    )

    for execution in pending:
        stats.processed += 1
        if _has_live_token(db, execution, now):
            stats.skipped += 1
            continue

        if _expire_execution(db, execution):
            stats.succeeded += 1
            notify(
                notifier,
                notification_service.EXECUTION_EXPIRED,
                user_id=execution.user_id,
                execution_id=execution.id,
                occasion_date=execution.occasion_date.isoformat(),
            )
        else:
            stats.skipped += 1

    if stats.succeeded:
        logger.info("approval sweep expired executions", extra={"expired": stats.succeeded})
    return stats
