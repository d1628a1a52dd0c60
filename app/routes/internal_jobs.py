from datetime import datetime, timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.db import get_db
from app.deps.clients import get_stage_clients
from app.deps.user import get_operator_id
from app.models.internal_job import InternalJob
from app.schemas.internal_job import InternalJobCreate, InternalJobOut, InternalJobUpdate
from app.schemas.internal_job_stage_catalog import get_internal_job_stage_catalog
from app.services.internal_job_runner import STAGES, StageClients, compute_next_run_at_from_schedule
from app.services.internal_job_scheduler import run_job
from app.timeutil import utcnow


router = APIRouter(prefix="/admin/internal-jobs", tags=["admin-internal-jobs"], dependencies=[Depends(get_operator_id)])


def _check_stage(stage: str):
    if stage not in STAGES:
        raise HTTPException(status_code=400, detail=f"Unknown stage '{stage}'. Expected one of: {sorted(STAGES)}")


def _first_run_at(schedule: dict | None, *, now: datetime, first_run_at: datetime | None, start_in_seconds: int | None):
    if first_run_at is not None:
        return first_run_at
    if start_in_seconds is not None:
        return now + timedelta(seconds=int(start_in_seconds))
    try:
        return compute_next_run_at_from_schedule(base_utc=now, schedule=schedule)
    except (ValueError, KeyError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid schedule: {e}")


def _get_job(db: Session, job_id: UUID) -> InternalJob:
    job = db.query(InternalJob).filter(InternalJob.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Internal job not found")
    return job


@router.get("/ui-catalog")
def get_internal_jobs_ui_catalog():
    return {
        "job": {
            "jsonSchema": InternalJobCreate.model_json_schema(),
            "uiHints": {
                "job_key": {"widget": "text", "placeholder": "ex: AUTOGIFT_CAPTURE_PAYMENTS"},
                "stage": {"widget": "select", "options": sorted(STAGES)},
                "params": {"widget": "json_object"},
                "schedule": {"widget": "cron", "placeholder": "ex: 0 9 * * *"},
                "active": {"widget": "switch"},
                "first_run_at": {"widget": "datetime"},
                "start_in_seconds": {"widget": "number"},
            },
        },
        "stages": get_internal_job_stage_catalog(),
    }


@router.get("", response_model=list[InternalJobOut])
def list_internal_jobs(
    active: bool | None = None,
    db: Session = Depends(get_db),
):
    q = db.query(InternalJob)
    if active is not None:
        q = q.filter(InternalJob.active.is_(active))
    return q.order_by(InternalJob.created_at.desc()).all()


@router.post("", response_model=InternalJobOut)
def create_internal_job(
    payload: InternalJobCreate,
    db: Session = Depends(get_db),
):
    _check_stage(payload.stage)
    if db.query(InternalJob.id).filter(InternalJob.job_key == payload.job_key).first():
        raise HTTPException(status_code=409, detail="job_key already exists")

    schedule = payload.schedule.model_dump() if payload.schedule else None
    job = InternalJob(
        job_key=payload.job_key,
        stage=payload.stage,
        params=payload.params,
        active=payload.active,
        schedule=schedule,
    )

    if payload.active and schedule:
        job.next_run_at = _first_run_at(
            schedule,
            now=utcnow(),
            first_run_at=payload.first_run_at,
            start_in_seconds=payload.start_in_seconds,
        )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


@router.get("/{job_id}", response_model=InternalJobOut)
def get_internal_job(
    job_id: UUID,
    db: Session = Depends(get_db),
):
    return _get_job(db, job_id)


@router.patch("/{job_id}", response_model=InternalJobOut)
def update_internal_job(
    job_id: UUID,
    payload: InternalJobUpdate,
    db: Session = Depends(get_db),
):
    job = _get_job(db, job_id)
    data = payload.model_dump(exclude_unset=True)

    if data.get("stage"):
        _check_stage(data["stage"])

    first_run_at = data.pop("first_run_at", None)
    start_in_seconds = data.pop("start_in_seconds", None)

    for k, v in data.items():
        setattr(job, k, v)

    if "schedule" in data or "active" in data or first_run_at is not None or start_in_seconds is not None:
        if job.active and job.schedule:
            if first_run_at is not None or start_in_seconds is not None or job.next_run_at is None or "schedule" in data:
                job.next_run_at = _first_run_at(
                    job.schedule,
                    now=utcnow(),
                    first_run_at=first_run_at,
                    start_in_seconds=start_in_seconds,
                )
        else:
            job.next_run_at = None

    db.commit()
    db.refresh(job)
    return job


@router.delete("/{job_id}")
def delete_internal_job(
    job_id: UUID,
    db: Session = Depends(get_db),
):
    job = _get_job(db, job_id)
    db.delete(job)
    db.commit()
    return {"deleted": True}


@router.post("/{job_id}/run")
def run_internal_job(
    job_id: UUID,
    operator_id: str = Depends(get_operator_id),
    clients: StageClients = Depends(get_stage_clients),
    db: Session = Depends(get_db),
):
    job = _get_job(db, job_id)
    if not job.active:
        raise HTTPException(status_code=400, detail="Internal job is inactive")

    now = utcnow()
    stats = run_job(db, job, clients=clients, worker_id=f"manual:{operator_id}", run_now=now)
    db.refresh(job)

    return {
        "jobId": str(job.id),
        "jobKey": job.job_key,
        "stage": job.stage,
        "ranAt": now.isoformat(),
        "status": job.last_status,
        "error": job.last_error,
        "stats": stats.as_dict() if stats is not None else None,
    }
