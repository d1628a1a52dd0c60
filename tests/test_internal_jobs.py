from datetime import datetime, timedelta

import pytest

from app.models.auto_gift_execution import AutoGiftExecution
from app.models.internal_job import InternalJob
from app.services.internal_job_runner import STAGES, StageClients, compute_next_run_at_from_schedule, run_internal_job_once
from app.services.internal_job_scheduler import _claim_due_jobs, run_job

from tests.fakes import NOW


DAILY = {"type": "cron", "cron": "0 6 * * *", "timezone": "UTC"}


def _job(db, stage="evaluate_rules", *, schedule=DAILY, next_run_at=NOW - timedelta(minutes=1), **extra):
    job = InternalJob(job_key=f"JOB_{stage.upper()}", stage=stage, params={}, active=True, schedule=schedule, next_run_at=next_run_at, **extra)
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


# =============================================================================
# Schedules
# =============================================================================

def test_next_run_from_cron():
    assert compute_next_run_at_from_schedule(base_utc=NOW, schedule=DAILY) == datetime(2025, 12, 19, 6, 0)


def test_next_run_honours_timezone():
    schedule = {"type": "cron", "cron": "0 6 * * *", "timezone": "America/New_York"}
    # 06:00 EST is 11:00 UTC
    assert compute_next_run_at_from_schedule(base_utc=NOW, schedule=schedule) == datetime(2025, 12, 18, 11, 0)


def test_missing_schedule_means_manual_only():
    assert compute_next_run_at_from_schedule(base_utc=NOW, schedule=None) is None


def test_unsupported_schedule_type():
    with pytest.raises(ValueError):
        compute_next_run_at_from_schedule(base_utc=NOW, schedule={"type": "interval", "seconds": 60})


def test_every_pipeline_stage_is_registered():
    assert set(STAGES) == {
        "evaluate_rules",
        "select_products",
        "sweep_approvals",
        "authorize_payments",
        "capture_payments",
        "reconcile_funding",
        "submit_orders",
        "sync_vendor_orders",
    }


# =============================================================================
# Running jobs
# =============================================================================

def test_run_job_records_stats_and_advances(db, make_rule, clients):
    make_rule()
    job = _job(db)

    stats = run_job(db, job, clients=clients, worker_id="test-worker", run_now=NOW)

    db.refresh(job)
    assert stats.succeeded == 1
    assert job.last_status == "SUCCESS"
    assert job.last_stats["succeeded"] == 1
    assert job.last_run_at == NOW
    assert job.next_run_at == datetime(2025, 12, 19, 6, 0)
    assert job.locked_at is None
    assert db.query(AutoGiftExecution).count() == 1


def test_failed_stage_is_recorded_and_still_rescheduled(db, clients):
    job = _job(db, stage="capture_payments")
    no_gateway = StageClients(fulfillment=clients.fulfillment, notifier=clients.notifier)

    stats = run_job(db, job, clients=no_gateway, worker_id="test-worker", run_now=NOW)

    db.refresh(job)
    assert stats is None
    assert job.last_status == "FAILED"
    assert "payment client is not configured" in job.last_error
    assert job.next_run_at == datetime(2025, 12, 19, 6, 0)


def test_unknown_stage_is_rejected(db, clients):
    job = InternalJob(job_key="BOGUS", stage="launch_rockets", params={})

    with pytest.raises(ValueError):
        run_internal_job_once(db, job=job, clients=clients, now=NOW)


def test_claim_picks_due_unlocked_jobs(db):
    due = _job(db, "evaluate_rules")
    _job(db, "select_products", next_run_at=NOW + timedelta(hours=1))
    _job(db, "submit_orders", locked_at=NOW - timedelta(seconds=30), locked_by="other")

    jobs = _claim_due_jobs(db, now=NOW, worker_id="me", batch_size=10, lock_ttl_seconds=600)

    assert [j.id for j in jobs] == [due.id]
    assert jobs[0].locked_by == "me"
