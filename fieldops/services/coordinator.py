"""
Assignment coordinator.

Every public function here is one atomic unit of work: it validates the
request, mutates jobs / crews / vehicles / assignments / maintenance rows,
re-derives vehicle status and appends audit rows, then commits. Any failure
rolls the whole unit back.

Concurrency: rows that gate a decision are read with SELECT ... FOR UPDATE,
and the partial unique index uq_vehicle_assignment_active backs the
"one active assignment per vehicle" rule when two callers race past the
check anyway.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional, Tuple, Type

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import unit_of_work
from ..errors import (
    AssignmentNotFound,
    AssignmentTargetRequired,
    CrewNotFound,
    CrewUnavailable,
    InvalidRequest,
    JobClosed,
    JobNotFound,
    MaintenanceNotFound,
    NotFound,
    VehicleAlreadyAssigned,
    VehicleNotAvailable,
    VehicleNotFound,
)
from ..models.models import Crew, Job, Vehicle, VehicleAssignment, VehicleMaintenance
from .audit import record_audit, record_job_status_change
from .transitions import JOB, VEHICLE_ASSIGNMENT, VEHICLE_MAINTENANCE, ensure_transition, is_terminal
from .vehicle_status import (
    ASSIGNABLE_STATUSES,
    MANUAL_STATUSES,
    derive_vehicle_status,
    get_active_assignment,
    refresh_vehicle_status,
)


logger = structlog.get_logger(__name__)

MAINTENANCE_INITIAL_STATUSES = ("scheduled", "in-progress", "completed", "deferred")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _today() -> date:
    return _now().date()


def _load(db: Session, model, entity_id, not_found: Type[NotFound], lock: bool = False):
    query = db.query(model).filter(model.id == entity_id)
    if lock:
        query = query.populate_existing().with_for_update()
    obj = query.first()
    if obj is None:
        raise not_found(entity_id)
    return obj


def _crew_state(crew: Crew) -> str:
    return "available" if crew.is_available else "assigned"


def _free_crew(db: Session, crew: Crew, actor_id, note: Optional[str] = None) -> None:
    released_job_id = crew.current_job_id
    crew.is_available = True
    crew.current_job_id = None
    crew.updated_at = _now()
    record_audit(
        db,
        entity_type="crew",
        entity_id=crew.id,
        action="RELEASE",
        old_state="assigned",
        new_state="available",
        actor_id=actor_id,
        note=note,
        context={"job_id": released_job_id},
    )


def _refresh_and_audit(db: Session, vehicle: Vehicle, actor_id, reason: str, context: Optional[dict] = None) -> str:
    old_status = vehicle.status
    new_status = refresh_vehicle_status(db, vehicle)
    if new_status != old_status:
        record_audit(
            db,
            entity_type="vehicle",
            entity_id=vehicle.id,
            action="STATUS_CHANGE",
            old_state=old_status,
            new_state=new_status,
            actor_id=actor_id,
            note=reason,
            context=context,
        )
    return new_status


# ---------- JOBS & CREWS ----------
def create_job(
    db: Session,
    title: str,
    scheduled_date: date,
    total_estimate: float = 0,
    customer_name: Optional[str] = None,
    address: Optional[str] = None,
    notes: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> Job:
    """Create a job in the scheduled state."""
    with unit_of_work(db):
        job = Job(
            title=title,
            scheduled_date=scheduled_date,
            total_estimate=total_estimate,
            customer_name=customer_name,
            address=address,
            notes=notes,
            status="scheduled",
            created_by=actor_id,
        )
        db.add(job)
        db.flush()
        record_audit(db, entity_type="job", entity_id=job.id, action="CREATE", new_state="scheduled", actor_id=actor_id)
    logger.info("job_created", job_id=str(job.id))
    return job


def assign_crew_to_job(db: Session, job_id, crew_id, actor_id: Optional[uuid.UUID] = None) -> Job:
    """
    Bind a crew to a job.

    The crew must be free, already on this job, or still bound to a job that
    has since been closed. The job's previous crew is freed in the same
    transaction.
    """
    with unit_of_work(db):
        job = _load(db, Job, job_id, JobNotFound, lock=True)
        crew = _load(db, Crew, crew_id, CrewNotFound, lock=True)

        if is_terminal(JOB, job.status):
            raise JobClosed(job.id, job.status)

        if not crew.is_available and crew.current_job_id != job.id:
            current_job = db.query(Job).filter(Job.id == crew.current_job_id).first()
            if current_job is not None and not is_terminal(JOB, current_job.status):
                raise CrewUnavailable(crew.id, crew.current_job_id)

        previous_crew_id = job.crew_id
        if previous_crew_id is not None and previous_crew_id != crew.id:
            previous = db.query(Crew).filter(Crew.id == previous_crew_id).populate_existing().with_for_update().first()
            if previous is not None and previous.current_job_id == job.id:
                _free_crew(db, previous, actor_id, note="Replaced on job")

        old_crew_state = _crew_state(crew)
        stale_job_id = crew.current_job_id if crew.current_job_id != job.id else None

        job.crew_id = crew.id
        job.updated_at = _now()
        crew.is_available = False
        crew.current_job_id = job.id
        crew.updated_at = _now()

        record_audit(
            db,
            entity_type="job",
            entity_id=job.id,
            action="ASSIGN",
            old_state=str(previous_crew_id) if previous_crew_id else None,
            new_state=str(crew.id),
            actor_id=actor_id,
            note="Crew assigned",
            context={"crew_id": crew.id, "previous_crew_id": previous_crew_id},
        )
        record_audit(
            db,
            entity_type="crew",
            entity_id=crew.id,
            action="ASSIGN",
            old_state=old_crew_state,
            new_state="assigned",
            actor_id=actor_id,
            context={"job_id": job.id, "previous_job_id": stale_job_id},
        )
    logger.info("crew_assigned", job_id=str(job_id), crew_id=str(crew_id))
    return job


def release_crew(db: Session, crew_id, actor_id: Optional[uuid.UUID] = None, note: Optional[str] = None) -> Crew:
    """Free a crew. The job keeps crew_id as a historical back-reference."""
    with unit_of_work(db):
        crew = _load(db, Crew, crew_id, CrewNotFound, lock=True)
        if not crew.is_available:
            _free_crew(db, crew, actor_id, note=note)
    logger.info("crew_released", crew_id=str(crew_id))
    return crew


def update_job_status(
    db: Session,
    job_id,
    new_status: str,
    note: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> Tuple[Job, str]:
    """
    Move a job through its lifecycle. Returns (job, old_status).

    Closing a job frees its crew only when RELEASE_CREW_ON_JOB_CLOSE is set.
    """
    with unit_of_work(db):
        job = _load(db, Job, job_id, JobNotFound, lock=True)
        old_status = job.status
        ensure_transition(JOB, old_status, new_status, entity_id=job.id)

        job.status = new_status
        job.updated_at = _now()
        record_job_status_change(db, job.id, old_status, new_status, actor_id=actor_id, note=note)

        if settings.release_crew_on_job_close and is_terminal(JOB, new_status) and job.crew_id is not None:
            crew = db.query(Crew).filter(Crew.id == job.crew_id).populate_existing().with_for_update().first()
            if crew is not None and crew.current_job_id == job.id:
                _free_crew(db, crew, actor_id, note=f"Job {new_status}")
    logger.info("job_status_changed", job_id=str(job_id), old_status=old_status, new_status=new_status)
    return job, old_status


# ---------- VEHICLE ASSIGNMENTS ----------
def _insert_assignment(db: Session, assignment: VehicleAssignment) -> None:
    db.add(assignment)
    try:
        db.flush()
    except IntegrityError as e:
        # Lost the race: another transaction committed an active row first
        raise VehicleAlreadyAssigned(assignment.vehicle_id) from e


def _create_assignment(
    db: Session,
    vehicle_id,
    status: str,
    crew_id=None,
    job_id=None,
    assignment_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    start_mileage: Optional[float] = None,
    notes: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> VehicleAssignment:
    if crew_id is None and job_id is None:
        raise AssignmentTargetRequired(vehicle_id)

    with unit_of_work(db):
        vehicle = _load(db, Vehicle, vehicle_id, VehicleNotFound, lock=True)
        if crew_id is not None:
            _load(db, Crew, crew_id, CrewNotFound)
        if job_id is not None:
            _load(db, Job, job_id, JobNotFound)

        current_status = derive_vehicle_status(db, vehicle)
        if status == "active":
            existing = get_active_assignment(db, vehicle.id)
            if existing is not None:
                raise VehicleAlreadyAssigned(vehicle.id, existing.id)
            if current_status not in ASSIGNABLE_STATUSES:
                raise VehicleNotAvailable(vehicle.id, current_status)
        elif current_status in MANUAL_STATUSES:
            raise VehicleNotAvailable(vehicle.id, current_status)

        assignment = VehicleAssignment(
            vehicle_id=vehicle.id,
            crew_id=crew_id,
            job_id=job_id,
            assignment_type=assignment_type or ("crew" if crew_id is not None else "job"),
            status=status,
            start_date=start_date or _today(),
            end_date=end_date,
            start_mileage=start_mileage if start_mileage is not None else vehicle.mileage,
            assigned_by=actor_id,
            notes=notes,
        )
        _insert_assignment(db, assignment)

        context = {"vehicle_id": vehicle.id, "crew_id": crew_id, "job_id": job_id}
        record_audit(
            db,
            entity_type="vehicle_assignment",
            entity_id=assignment.id,
            action="ASSIGN",
            new_state=status,
            actor_id=actor_id,
            note=notes,
            context=context,
        )
        _refresh_and_audit(db, vehicle, actor_id, reason="Assignment created", context={"assignment_id": assignment.id})
    return assignment


def assign_vehicle(
    db: Session,
    vehicle_id,
    crew_id=None,
    job_id=None,
    assignment_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    start_mileage: Optional[float] = None,
    notes: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> VehicleAssignment:
    """Create an active assignment; the vehicle becomes in-use."""
    assignment = _create_assignment(
        db, vehicle_id, "active",
        crew_id=crew_id, job_id=job_id, assignment_type=assignment_type,
        start_date=start_date, end_date=end_date, start_mileage=start_mileage,
        notes=notes, actor_id=actor_id,
    )
    logger.info("vehicle_assigned", vehicle_id=str(vehicle_id), assignment_id=str(assignment.id))
    return assignment


def schedule_vehicle_assignment(
    db: Session,
    vehicle_id,
    crew_id=None,
    job_id=None,
    assignment_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    notes: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> VehicleAssignment:
    """Book a vehicle ahead of time; an otherwise idle vehicle shows as reserved."""
    assignment = _create_assignment(
        db, vehicle_id, "scheduled",
        crew_id=crew_id, job_id=job_id, assignment_type=assignment_type,
        start_date=start_date, end_date=end_date, notes=notes, actor_id=actor_id,
    )
    logger.info("vehicle_assignment_scheduled", vehicle_id=str(vehicle_id), assignment_id=str(assignment.id))
    return assignment


def _load_assignment_for_update(db: Session, assignment_id, vehicle_id=None) -> Tuple[VehicleAssignment, Vehicle]:
    # Lock order matches _create_assignment: vehicle row first
    assignment = _load(db, VehicleAssignment, assignment_id, AssignmentNotFound)
    if vehicle_id is not None and assignment.vehicle_id != vehicle_id:
        raise AssignmentNotFound(assignment_id)
    vehicle = _load(db, Vehicle, assignment.vehicle_id, VehicleNotFound, lock=True)
    assignment = _load(db, VehicleAssignment, assignment_id, AssignmentNotFound, lock=True)
    return assignment, vehicle


def start_vehicle_assignment(
    db: Session,
    assignment_id,
    vehicle_id=None,
    start_mileage: Optional[float] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> VehicleAssignment:
    """Activate a scheduled assignment (scheduled -> active)."""
    with unit_of_work(db):
        assignment, vehicle = _load_assignment_for_update(db, assignment_id, vehicle_id)
        ensure_transition(VEHICLE_ASSIGNMENT, assignment.status, "active", entity_id=assignment.id)

        existing = get_active_assignment(db, vehicle.id)
        if existing is not None:
            raise VehicleAlreadyAssigned(vehicle.id, existing.id)
        current_status = derive_vehicle_status(db, vehicle)
        if current_status not in ASSIGNABLE_STATUSES:
            raise VehicleNotAvailable(vehicle.id, current_status)

        assignment.status = "active"
        assignment.start_mileage = start_mileage if start_mileage is not None else vehicle.mileage
        assignment.updated_at = _now()
        _insert_assignment(db, assignment)

        record_audit(
            db,
            entity_type="vehicle_assignment",
            entity_id=assignment.id,
            action="STATUS_CHANGE",
            old_state="scheduled",
            new_state="active",
            actor_id=actor_id,
            context={"vehicle_id": vehicle.id},
        )
        _refresh_and_audit(db, vehicle, actor_id, reason="Assignment started", context={"assignment_id": assignment.id})
    logger.info("vehicle_assignment_started", vehicle_id=str(assignment.vehicle_id), assignment_id=str(assignment_id))
    return assignment


def release_vehicle_assignment(
    db: Session,
    assignment_id,
    outcome: str,
    vehicle_id=None,
    end_mileage: Optional[float] = None,
    notes: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> VehicleAssignment:
    """
    Close an assignment as completed or cancelled.

    The vehicle goes back to available unless another assignment, an open
    maintenance ticket or a manual override says otherwise.
    """
    with unit_of_work(db):
        assignment, vehicle = _load_assignment_for_update(db, assignment_id, vehicle_id)
        old_status = assignment.status
        ensure_transition(VEHICLE_ASSIGNMENT, old_status, outcome, entity_id=assignment.id)

        assignment.status = outcome
        assignment.end_date = _today()
        if end_mileage is not None:
            assignment.end_mileage = end_mileage
            if vehicle.mileage is None or end_mileage > vehicle.mileage:
                vehicle.mileage = end_mileage
        if notes:
            assignment.notes = f"{assignment.notes}\n{notes}" if assignment.notes else notes
        assignment.updated_at = _now()

        record_audit(
            db,
            entity_type="vehicle_assignment",
            entity_id=assignment.id,
            action="RELEASE",
            old_state=old_status,
            new_state=outcome,
            actor_id=actor_id,
            note=notes,
            context={"vehicle_id": vehicle.id, "end_mileage": end_mileage},
        )
        _refresh_and_audit(db, vehicle, actor_id, reason="Assignment released", context={"assignment_id": assignment.id})
    logger.info("vehicle_assignment_released", assignment_id=str(assignment_id), outcome=outcome)
    return assignment


# ---------- MAINTENANCE ----------
def create_maintenance_record(
    db: Session,
    vehicle_id,
    title: str,
    status: str = "scheduled",
    maintenance_type: str = "routine",
    priority: str = "medium",
    description: Optional[str] = None,
    scheduled_date: Optional[date] = None,
    estimated_cost: Optional[float] = None,
    performed_by: Optional[str] = None,
    notes: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> VehicleMaintenance:
    """Open a maintenance ticket. An in-progress ticket puts the vehicle in maintenance."""
    if status not in MAINTENANCE_INITIAL_STATUSES:
        raise InvalidRequest("Maintenance records cannot be created in this status", requested_state=status)

    with unit_of_work(db):
        vehicle = _load(db, Vehicle, vehicle_id, VehicleNotFound, lock=True)
        record = VehicleMaintenance(
            vehicle_id=vehicle.id,
            title=title,
            status=status,
            maintenance_type=maintenance_type,
            priority=priority,
            description=description,
            scheduled_date=scheduled_date,
            completed_date=_today() if status == "completed" else None,
            estimated_cost=estimated_cost,
            performed_by=performed_by,
            notes=notes,
            created_by=actor_id,
        )
        db.add(record)
        db.flush()

        record_audit(
            db,
            entity_type="vehicle_maintenance",
            entity_id=record.id,
            action="CREATE",
            new_state=status,
            actor_id=actor_id,
            context={"vehicle_id": vehicle.id},
        )
        _refresh_and_audit(db, vehicle, actor_id, reason="Maintenance opened", context={"maintenance_id": record.id})
    logger.info("maintenance_created", vehicle_id=str(vehicle_id), maintenance_id=str(record.id), status=status)
    return record


def update_maintenance_status(
    db: Session,
    maintenance_id,
    new_status: str,
    vehicle_id=None,
    completed_mileage: Optional[float] = None,
    actual_cost: Optional[float] = None,
    notes: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> Tuple[VehicleMaintenance, str]:
    """Move a maintenance ticket through its lifecycle. Returns (record, old_status)."""
    with unit_of_work(db):
        record = _load(db, VehicleMaintenance, maintenance_id, MaintenanceNotFound)
        if vehicle_id is not None and record.vehicle_id != vehicle_id:
            raise MaintenanceNotFound(maintenance_id)
        vehicle = _load(db, Vehicle, record.vehicle_id, VehicleNotFound, lock=True)
        record = _load(db, VehicleMaintenance, maintenance_id, MaintenanceNotFound, lock=True)

        old_status = record.status
        ensure_transition(VEHICLE_MAINTENANCE, old_status, new_status, entity_id=record.id)

        record.status = new_status
        if new_status == "completed":
            record.completed_date = _today()
            if completed_mileage is not None:
                record.completed_mileage = completed_mileage
                if vehicle.mileage is None or completed_mileage > vehicle.mileage:
                    vehicle.mileage = completed_mileage
        if actual_cost is not None:
            record.actual_cost = actual_cost
        if notes:
            record.notes = f"{record.notes}\n{notes}" if record.notes else notes
        record.updated_at = _now()

        record_audit(
            db,
            entity_type="vehicle_maintenance",
            entity_id=record.id,
            action="STATUS_CHANGE",
            old_state=old_status,
            new_state=new_status,
            actor_id=actor_id,
            note=notes,
            context={"vehicle_id": vehicle.id},
        )
        _refresh_and_audit(db, vehicle, actor_id, reason="Maintenance status changed", context={"maintenance_id": record.id})
    logger.info("maintenance_status_changed", maintenance_id=str(maintenance_id), old_status=old_status, new_status=new_status)
    return record, old_status


# ---------- MANUAL OVERRIDES ----------
def set_vehicle_override(
    db: Session,
    vehicle_id,
    manual_status: Optional[str],
    note: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> Vehicle:
    """Set (retired / out-of-service) or clear (None) the manual status override."""
    if manual_status is not None and manual_status not in MANUAL_STATUSES:
        raise InvalidRequest("Override must be retired or out-of-service", requested_state=manual_status)

    with unit_of_work(db):
        vehicle = _load(db, Vehicle, vehicle_id, VehicleNotFound, lock=True)
        if manual_status is not None:
            active = get_active_assignment(db, vehicle.id)
            if active is not None:
                raise VehicleAlreadyAssigned(vehicle.id, active.id)

        old_override = vehicle.manual_status
        vehicle.manual_status = manual_status
        vehicle.updated_at = _now()
        record_audit(
            db,
            entity_type="vehicle",
            entity_id=vehicle.id,
            action="OVERRIDE",
            old_state=old_override,
            new_state=manual_status,
            actor_id=actor_id,
            note=note,
        )
        _refresh_and_audit(db, vehicle, actor_id, reason="Manual override changed")
    logger.info("vehicle_override_set", vehicle_id=str(vehicle_id), manual_status=manual_status)
    return vehicle
