from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from croniter import croniter

from sqlalchemy.orm import Session

from app.clients.fulfillment_client import FulfillmentClient
from app.clients.gift_recommender import GiftRecommender
from app.clients.payment_gateway import PaymentGateway, StripePaymentGateway
from app.models.internal_job import InternalJob
from app.services.approval_service import sweep_expired_approvals
from app.services.execution_service import StageRunStats
from app.services.funding_reconciliation_service import reconcile_funding
from app.services.notification_service import Notifier, get_default_notifier
from app.services.order_submission_service import submit_due_orders
from app.services.order_tracking_service import sync_vendor_orders
from app.services.payment_capture_service import authorize_approved, capture_due
from app.services.product_selector import select_products
from app.services.rule_evaluator import evaluate_due_rules
from app.timeutil import utcnow


@dataclass
class StageClients:
    gateway: PaymentGateway | None = None
    fulfillment: FulfillmentClient | None = None
    recommender: GiftRecommender | None = None
    notifier: Notifier | None = None


def default_clients() -> StageClients:
    return StageClients(
        gateway=StripePaymentGateway(),
        fulfillment=FulfillmentClient(),
        recommender=GiftRecommender(),
        notifier=get_default_notifier(),
    )


def _as_utc_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=ZoneInfo("UTC"))
    return dt.astimezone(ZoneInfo("UTC"))


def _to_utc_naive(dt: datetime) -> datetime:
    return _as_utc_aware(dt).replace(tzinfo=None)


def compute_next_run_at_from_schedule(*, base_utc: datetime, schedule: dict | None) -> datetime | None:
    if not schedule or not isinstance(schedule, dict):
        return None
    if schedule.get("type") != "cron":
        raise ValueError("Unsupported schedule.type (expected 'cron')")

    cron_expr = schedule.get("cron")
    if not cron_expr:
        raise ValueError("schedule.cron is required")

    tz_name = schedule.get("timezone") or "UTC"
    tz = ZoneInfo(tz_name)

    base_local = _as_utc_aware(base_utc).astimezone(tz)
    it = croniter(cron_expr, base_local)
    next_local: datetime = it.get_next(datetime)
    return _to_utc_naive(next_local)


def _limit(params: dict, default: int = 50) -> int:
    return max(1, min(int(params.get("limit") or default), 500))


def _require(value, name: str):
    if value is None:
        raise RuntimeError(f"{name} client is not configured")
    return value


# Each stage takes (db, now, clients, params, worker_id) and returns StageRunStats.
StageFn = Callable[..., StageRunStats]


def _evaluate_rules(db, *, now, clients, params, worker_id):
    return evaluate_due_rules(db, now=now)


def _select_products(db, *, now, clients, params, worker_id):
    return select_products(
        db,
        now=now,
        recommender=clients.recommender,
        catalog=clients.fulfillment,
        notifier=clients.notifier,
        worker_id=worker_id,
        limit=_limit(params),
    )


def _sweep_approvals(db, *, now, clients, params, worker_id):
    return sweep_expired_approvals(db, now=now, notifier=clients.notifier, limit=_limit(params, 200))


def _authorize_payments(db, *, now, clients, params, worker_id):
    return authorize_approved(
        db,
        now=now,
        gateway=_require(clients.gateway, "payment"),
        notifier=clients.notifier,
        worker_id=worker_id,
        limit=_limit(params),
    )


def _capture_payments(db, *, now, clients, params, worker_id):
    return capture_due(
        db,
        now=now,
        gateway=_require(clients.gateway, "payment"),
        notifier=clients.notifier,
        worker_id=worker_id,
        limit=_limit(params),
    )


def _submit_orders(db, *, now, clients, params, worker_id):
    return submit_due_orders(
        db,
        now=now,
        fulfillment=_require(clients.fulfillment, "fulfillment"),
        notifier=clients.notifier,
        worker_id=worker_id,
        limit=_limit(params),
    )


def _sync_vendor_orders(db, *, now, clients, params, worker_id):
    return sync_vendor_orders(
        db,
        now=now,
        fulfillment=_require(clients.fulfillment, "fulfillment"),
        notifier=clients.notifier,
        limit=_limit(params),
    )


def _reconcile_funding(db, *, now, clients, params, worker_id):
    return reconcile_funding(db, now=now, fulfillment=_require(clients.fulfillment, "fulfillment"), notifier=clients.notifier)


STAGES: dict[str, StageFn] = {
    "evaluate_rules": _evaluate_rules,
    "select_products": _select_products,
    "sweep_approvals": _sweep_approvals,
    "authorize_payments": _authorize_payments,
    "capture_payments": _capture_payments,
    "reconcile_funding": _reconcile_funding,
    "submit_orders": _submit_orders,
    "sync_vendor_orders": _sync_vendor_orders,
}


def run_internal_job_once(
    db: Session,
    *,
    job: InternalJob,
    clients: StageClients,
    now: datetime | None = None,
    worker_id: str | None = None,
) -> StageRunStats:
    if now is None:
        now = utcnow()

    stage = STAGES.get(job.stage)
    if stage is None:
        raise ValueError(f"Unknown stage: {job.stage}")

    return stage(db, now=now, clients=clients, params=job.params or {}, worker_id=worker_id)
