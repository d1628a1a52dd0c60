from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.config import (
    INTERNAL_JOB_BATCH_SIZE,
    INTERNAL_JOB_IDLE_SLEEP_SECONDS,
    INTERNAL_JOB_LOCK_TTL_SECONDS,
    INTERNAL_JOB_MAX_SLEEP_SECONDS,
    INTERNAL_JOB_WORKER_ID,
)
from app.db import SessionLocal
from app.logging_config import configure_logging
from app.models.internal_job import InternalJob
from app.services.internal_job_runner import (
    StageClients,
    compute_next_run_at_from_schedule,
    default_clients,
    run_internal_job_once,
)
from app.timeutil import utcnow


logger = logging.getLogger(__name__)


def _schedulable(db: Session, columns, *, now: datetime, lock_ttl_seconds: int):
    """Active scheduled jobs that nobody holds a live lock on."""
    stale_lock = now - timedelta(seconds=int(lock_ttl_seconds))
    return (
        db.query(columns)
        .filter(
            InternalJob.active.is_(True),
            InternalJob.schedule.isnot(None),
            InternalJob.next_run_at.isnot(None),
            or_(InternalJob.locked_at.is_(None), InternalJob.locked_at < stale_lock),
        )
        .order_by(InternalJob.next_run_at.asc())
    )


def _claim_due_jobs(
    db: Session,
    *,
    now: datetime,
    worker_id: str,
    batch_size: int,
    lock_ttl_seconds: int,
):
    jobs = (
        _schedulable(db, InternalJob, now=now, lock_ttl_seconds=lock_ttl_seconds)
        .filter(InternalJob.next_run_at <= now)
        .with_for_update(skip_locked=True)
        .limit(batch_size)
        .all()
    )
    for job in jobs:
        job.locked_at = now
        job.locked_by = worker_id
    return jobs


def _idle_seconds(db: Session, *, now: datetime, lock_ttl_seconds: int, idle_sleep_seconds: int, max_sleep_seconds: int) -> int:
    next_due = _schedulable(db, InternalJob.next_run_at, now=now, lock_ttl_seconds=lock_ttl_seconds).first()
    if not next_due or next_due[0] is None:
        return idle_sleep_seconds
    wait = (next_due[0] - now).total_seconds()
    if wait <= 0:
        return idle_sleep_seconds
    return min(max_sleep_seconds, max(1, int(wait)))


def run_job(db: Session, job: InternalJob, *, clients: StageClients, worker_id: str, run_now: datetime | None = None):
    """Run one claimed job and record the outcome on its row.

    ``next_run_at`` moves forward even when the stage fails, so a broken
    dependency cannot turn into a tight retry loop.
    """
    if run_now is None:
        run_now = utcnow()

    stats = None
    try:
        logger.info(
            "running internal job",
            extra={"job_id": str(job.id), "job_key": job.job_key, "stage": job.stage, "run_now": run_now.isoformat()},
        )
        stats = run_internal_job_once(db, job=job, clients=clients, now=run_now, worker_id=worker_id)
        job.last_status = "SUCCESS"
        job.last_error = None
        job.last_stats = stats.as_dict()

        logger.info(
            "internal job success",
            extra={"job_id": str(job.id), "job_key": job.job_key, "stage": job.stage, **stats.as_dict()},
        )

    except Exception as e:
        # stages commit per item; drop whatever the failing item left behind
        db.rollback()
        job.last_status = "FAILED"
        job.last_error = str(e)[:2000]

        logger.exception(
            "internal job failed",
            extra={"job_id": str(job.id), "job_key": job.job_key, "stage": job.stage},
        )

    finally:
        job.last_run_at = run_now
        job.next_run_at = compute_next_run_at_from_schedule(base_utc=run_now, schedule=job.schedule)
        job.locked_at = None
        job.locked_by = None
        db.commit()

    return stats


def run_scheduler_loop(
    *,
    worker_id: str | None = None,
    batch_size: int = INTERNAL_JOB_BATCH_SIZE,
    lock_ttl_seconds: int = INTERNAL_JOB_LOCK_TTL_SECONDS,
    idle_sleep_seconds: int = INTERNAL_JOB_IDLE_SLEEP_SECONDS,
    max_sleep_seconds: int = INTERNAL_JOB_MAX_SLEEP_SECONDS,
    clients: StageClients | None = None,
):
    worker_id = worker_id or INTERNAL_JOB_WORKER_ID
    clients = clients or default_clients()

    logger.info(
        "pipeline scheduler started",
        extra={"worker_id": worker_id, "batch_size": batch_size, "lock_ttl_seconds": lock_ttl_seconds},
    )

    while True:
        now = utcnow()
        with SessionLocal() as db:
            jobs = _claim_due_jobs(db, now=now, worker_id=worker_id, batch_size=batch_size, lock_ttl_seconds=lock_ttl_seconds)
            db.commit()

            if not jobs:
                pause = _idle_seconds(
                    db,
                    now=now,
                    lock_ttl_seconds=lock_ttl_seconds,
                    idle_sleep_seconds=idle_sleep_seconds,
                    max_sleep_seconds=max_sleep_seconds,
                )
                logger.debug("nothing due", extra={"sleep_for_seconds": pause, "now": now.isoformat()})
                time.sleep(pause)
                continue

            logger.info("claimed pipeline jobs", extra={"count": len(jobs), "stages": [j.stage for j in jobs]})
            for job in jobs:
                run_job(db, job, clients=clients, worker_id=worker_id)


def main():
    configure_logging()
    run_scheduler_loop()


if __name__ == "__main__":
    main()
