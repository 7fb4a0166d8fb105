import uuid
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import or_

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db import get_db, unit_of_work
from ..errors import InvalidRequest
from ..auth.security import Actor, get_current_actor
from ..models.models import (
    Vehicle,
    VehicleAssignment,
    VehicleMaintenance,
)
from ..schemas.fleet import (
    VehicleCreate,
    VehicleUpdate,
    VehicleOverride,
    VehicleResponse,
    VehicleStatus,
    VehicleAssignmentCreate,
    VehicleAssignmentStart,
    VehicleAssignmentRelease,
    VehicleAssignmentResponse,
    VehicleAssignmentResult,
    VehicleAssignmentsOverview,
    VehicleMaintenanceCreate,
    VehicleMaintenanceStatusUpdate,
    VehicleMaintenanceResponse,
    VehicleMaintenanceResult,
    MaintenanceStatus,
)
from ..services import coordinator
from ..services.audit import record_audit

router = APIRouter(prefix="/fleet", tags=["fleet"])


def _get_vehicle_or_404(db: Session, vehicle_id: uuid.UUID) -> Vehicle:
    vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return vehicle


def _assignment_result(db: Session, assignment: VehicleAssignment) -> VehicleAssignmentResult:
    vehicle = _get_vehicle_or_404(db, assignment.vehicle_id)
    return VehicleAssignmentResult(
        assignment_id=assignment.id,
        vehicle_id=assignment.vehicle_id,
        status=assignment.status,
        vehicle_status=vehicle.status,
    )


# ---------- VEHICLES ----------
@router.get("/vehicles", response_model=List[VehicleResponse])
def list_vehicles(
    status: Optional[VehicleStatus] = Query(None),
    assigned_crew_id: Optional[uuid.UUID] = Query(None),
    assigned_job_id: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    """List vehicles with filters"""
    query = db.query(Vehicle)

    if status:
        query = query.filter(Vehicle.status == status.value)
    if assigned_crew_id:
        query = query.filter(Vehicle.assigned_crew_id == assigned_crew_id)
    if assigned_job_id:
        query = query.filter(Vehicle.assigned_job_id == assigned_job_id)
    if search:
        search_term = f"%{search}%"
        query = query.filter(
            or_(
                Vehicle.name.ilike(search_term),
                Vehicle.license_plate.ilike(search_term),
                Vehicle.vin.ilike(search_term),
                Vehicle.make.ilike(search_term),
                Vehicle.model.ilike(search_term),
            )
        )

    return query.order_by(Vehicle.created_at.desc()).limit(500).all()


@router.get("/vehicles/{vehicle_id}", response_model=VehicleResponse)
def get_vehicle(
    vehicle_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    """Get vehicle detail"""
    return _get_vehicle_or_404(db, vehicle_id)


@router.post("/vehicles", response_model=VehicleResponse, status_code=201)
def create_vehicle(
    vehicle: VehicleCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Register a vehicle; it starts available"""
    if db.query(Vehicle.id).filter(Vehicle.license_plate == vehicle.license_plate).first():
        raise HTTPException(status_code=409, detail="License plate already registered")

    with unit_of_work(db):
        new_vehicle = Vehicle(**vehicle.model_dump(), status="available", created_by=actor.id)
        db.add(new_vehicle)
        db.flush()
        record_audit(db, entity_type="vehicle", entity_id=new_vehicle.id, action="CREATE", new_state="available", actor_id=actor.id)
    db.refresh(new_vehicle)
    return new_vehicle


@router.put("/vehicles/{vehicle_id}", response_model=VehicleResponse)
def update_vehicle(
    vehicle_id: uuid.UUID,
    vehicle_update: VehicleUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Update descriptive vehicle fields (status is derived and never set here)"""
    changes = vehicle_update.model_dump(exclude_unset=True)
    with unit_of_work(db):
        vehicle = _get_vehicle_or_404(db, vehicle_id)
        plate = changes.get("license_plate")
        if plate is not None and plate != vehicle.license_plate:
            taken = db.query(Vehicle.id).filter(Vehicle.license_plate == plate, Vehicle.id != vehicle.id).first()
            if taken:
                raise HTTPException(status_code=409, detail="License plate already registered")
        mileage = changes.get("mileage")
        if mileage is not None and vehicle.mileage is not None and mileage < vehicle.mileage:
            raise InvalidRequest(
                "Mileage cannot be lowered", vehicle_id=vehicle.id, current_mileage=vehicle.mileage, requested_mileage=mileage
            )
        for key, value in changes.items():
            setattr(vehicle, key, value)
        vehicle.updated_at = datetime.now(timezone.utc)
        record_audit(db, entity_type="vehicle", entity_id=vehicle.id, action="UPDATE", actor_id=actor.id, context=changes)
    db.refresh(vehicle)
    return vehicle


@router.put("/vehicles/{vehicle_id}/override", response_model=VehicleResponse)
def set_vehicle_override(
    vehicle_id: uuid.UUID,
    payload: VehicleOverride,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Retire / take out of service, or clear the override with manual_status=null"""
    manual_status = payload.manual_status.value if payload.manual_status else None
    vehicle = coordinator.set_vehicle_override(db, vehicle_id, manual_status, note=payload.note, actor_id=actor.id)
    db.refresh(vehicle)
    return vehicle


# ---------- ASSIGNMENTS ----------
@router.get("/vehicles/{vehicle_id}/assignments", response_model=VehicleAssignmentsOverview)
def get_vehicle_assignments(
    vehicle_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    """Current assignment plus full history for a vehicle"""
    vehicle = _get_vehicle_or_404(db, vehicle_id)
    history = db.query(VehicleAssignment).filter(
        VehicleAssignment.vehicle_id == vehicle_id
    ).order_by(VehicleAssignment.start_date.desc(), VehicleAssignment.created_at.desc()).all()
    current = next((a for a in history if a.status == "active"), None)
    return VehicleAssignmentsOverview(
        vehicle_id=vehicle.id,
        vehicle_name=vehicle.name,
        current_assignment=current,
        assignment_history=history,
    )


@router.post("/vehicles/{vehicle_id}/assignments", response_model=VehicleAssignmentResult, status_code=201)
def assign_vehicle(
    vehicle_id: uuid.UUID,
    payload: VehicleAssignmentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Assign a vehicle to a crew and/or job (or book it ahead with scheduled=true)"""
    kwargs = dict(
        crew_id=payload.crew_id,
        job_id=payload.job_id,
        assignment_type=payload.assignment_type.value if payload.assignment_type else None,
        start_date=payload.start_date,
        end_date=payload.end_date,
        notes=payload.notes,
        actor_id=actor.id,
    )
    if payload.scheduled:
        assignment = coordinator.schedule_vehicle_assignment(db, vehicle_id, **kwargs)
    else:
        assignment = coordinator.assign_vehicle(db, vehicle_id, start_mileage=payload.start_mileage, **kwargs)
    return _assignment_result(db, assignment)


@router.get("/vehicles/{vehicle_id}/assignments/{assignment_id}", response_model=VehicleAssignmentResponse)
def get_vehicle_assignment(
    vehicle_id: uuid.UUID,
    assignment_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    assignment = db.query(VehicleAssignment).filter(
        VehicleAssignment.id == assignment_id,
        VehicleAssignment.vehicle_id == vehicle_id,
    ).first()
    if not assignment:
        raise HTTPException(status_code=404, detail="Assignment not found")
    return assignment


@router.post("/vehicles/{vehicle_id}/assignments/{assignment_id}/start", response_model=VehicleAssignmentResult)
def start_vehicle_assignment(
    vehicle_id: uuid.UUID,
    assignment_id: uuid.UUID,
    payload: Optional[VehicleAssignmentStart] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Activate a scheduled assignment"""
    assignment = coordinator.start_vehicle_assignment(
        db,
        assignment_id,
        vehicle_id=vehicle_id,
        start_mileage=payload.start_mileage if payload else None,
        actor_id=actor.id,
    )
    return _assignment_result(db, assignment)


@router.post("/vehicles/{vehicle_id}/assignments/{assignment_id}/release", response_model=VehicleAssignmentResult)
def release_vehicle_assignment(
    vehicle_id: uuid.UUID,
    assignment_id: uuid.UUID,
    payload: VehicleAssignmentRelease,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Complete or cancel an assignment"""
    assignment = coordinator.release_vehicle_assignment(
        db,
        assignment_id,
        payload.outcome.value,
        vehicle_id=vehicle_id,
        end_mileage=payload.end_mileage,
        notes=payload.notes,
        actor_id=actor.id,
    )
    return _assignment_result(db, assignment)


# ---------- MAINTENANCE ----------
@router.get("/vehicles/{vehicle_id}/maintenance", response_model=List[VehicleMaintenanceResponse])
def list_vehicle_maintenance(
    vehicle_id: uuid.UUID,
    status: Optional[MaintenanceStatus] = Query(None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    _get_vehicle_or_404(db, vehicle_id)
    query = db.query(VehicleMaintenance).filter(VehicleMaintenance.vehicle_id == vehicle_id)
    if status:
        query = query.filter(VehicleMaintenance.status == status.value)
    return query.order_by(VehicleMaintenance.created_at.desc()).all()


@router.post("/vehicles/{vehicle_id}/maintenance", response_model=VehicleMaintenanceResult, status_code=201)
def create_vehicle_maintenance(
    vehicle_id: uuid.UUID,
    payload: VehicleMaintenanceCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Open a maintenance ticket (in-progress puts the vehicle into maintenance)"""
    record = coordinator.create_maintenance_record(
        db,
        vehicle_id,
        title=payload.title,
        status=payload.status.value,
        maintenance_type=payload.maintenance_type.value,
        priority=payload.priority.value,
        description=payload.description,
        scheduled_date=payload.scheduled_date,
        estimated_cost=payload.estimated_cost,
        performed_by=payload.performed_by,
        notes=payload.notes,
        actor_id=actor.id,
    )
    vehicle = _get_vehicle_or_404(db, vehicle_id)
    return VehicleMaintenanceResult(
        maintenance_id=record.id,
        vehicle_id=vehicle.id,
        status=record.status,
        vehicle_status=vehicle.status,
    )


@router.patch("/vehicles/{vehicle_id}/maintenance/{maintenance_id}/status", response_model=VehicleMaintenanceResult)
def update_vehicle_maintenance_status(
    vehicle_id: uuid.UUID,
    maintenance_id: uuid.UUID,
    payload: VehicleMaintenanceStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Move a maintenance ticket along; vehicle status is recomputed"""
    record, old_status = coordinator.update_maintenance_status(
        db,
        maintenance_id,
        payload.status.value,
        vehicle_id=vehicle_id,
        completed_mileage=payload.completed_mileage,
        actual_cost=payload.actual_cost,
        notes=payload.notes,
        actor_id=actor.id,
    )
    vehicle = _get_vehicle_or_404(db, vehicle_id)
    return VehicleMaintenanceResult(
        maintenance_id=record.id,
        vehicle_id=vehicle.id,
        old_status=old_status,
        status=record.status,
        vehicle_status=vehicle.status,
    )
