import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db import get_db, unit_of_work
from ..auth.security import Actor, get_current_actor
from ..models.models import Job, JobStatusHistory
from ..schemas.jobs import (
    JobCreate,
    JobUpdate,
    JobResponse,
    JobStatus,
    JobStatusChange,
    JobStatusChangeResult,
    JobStatusHistoryResponse,
    CrewAssignmentRequest,
    CrewAssignmentResult,
)
from ..services import coordinator
from ..services.audit import record_audit

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _get_job_or_404(db: Session, job_id: uuid.UUID) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get("", response_model=List[JobResponse])
def list_jobs(
    status: Optional[JobStatus] = Query(None),
    crew_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    """List jobs with filters"""
    query = db.query(Job)
    if status:
        query = query.filter(Job.status == status.value)
    if crew_id:
        query = query.filter(Job.crew_id == crew_id)
    return query.order_by(Job.scheduled_date.desc(), Job.created_at.desc()).limit(500).all()


@router.post("", response_model=JobResponse, status_code=201)
def create_job(
    payload: JobCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Create a job in the scheduled state"""
    return coordinator.create_job(db, actor_id=actor.id, **payload.model_dump())


@router.get("/{job_id}", response_model=JobResponse)
def get_job(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    return _get_job_or_404(db, job_id)


@router.put("/{job_id}", response_model=JobResponse)
def update_job(
    job_id: uuid.UUID,
    job_update: JobUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Update descriptive job fields"""
    changes = job_update.model_dump(exclude_unset=True)
    with unit_of_work(db):
        job = _get_job_or_404(db, job_id)
        for key, value in changes.items():
            setattr(job, key, value)
        job.updated_at = datetime.now(timezone.utc)
        record_audit(db, entity_type="job", entity_id=job.id, action="UPDATE", actor_id=actor.id, context=changes)
    db.refresh(job)
    return job


@router.patch("/{job_id}/status", response_model=JobStatusChangeResult)
def change_job_status(
    job_id: uuid.UUID,
    payload: JobStatusChange,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Move a job through scheduled -> in-progress -> completed (or cancelled)"""
    job, old_status = coordinator.update_job_status(
        db, job_id, payload.status.value, note=payload.note, actor_id=actor.id
    )
    return JobStatusChangeResult(job_id=job_id, old_status=old_status, new_status=job.status)


@router.get("/{job_id}/status-history", response_model=List[JobStatusHistoryResponse])
def get_job_status_history(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    _get_job_or_404(db, job_id)
    return db.query(JobStatusHistory).filter(
        JobStatusHistory.job_id == job_id
    ).order_by(JobStatusHistory.created_at.asc()).all()


@router.put("/{job_id}/crew", response_model=CrewAssignmentResult)
def assign_crew(
    job_id: uuid.UUID,
    payload: CrewAssignmentRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Assign a crew to a job (frees the job's previous crew)"""
    coordinator.assign_crew_to_job(db, job_id, payload.crew_id, actor_id=actor.id)
    return CrewAssignmentResult(job_id=job_id, crew_id=payload.crew_id)
