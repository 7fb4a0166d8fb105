"""
Vehicle status derivation.
The only code path that writes vehicles.status / assigned_crew_id / assigned_job_id.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ..models.models import Vehicle, VehicleAssignment, VehicleMaintenance


MANUAL_STATUSES = ("retired", "out-of-service")
ASSIGNABLE_STATUSES = ("available", "reserved")


def get_active_assignment(db: Session, vehicle_id) -> Optional[VehicleAssignment]:
    return db.query(VehicleAssignment).filter(
        VehicleAssignment.vehicle_id == vehicle_id,
        VehicleAssignment.status == "active",
    ).first()


def has_scheduled_assignment(db: Session, vehicle_id) -> bool:
    return db.query(VehicleAssignment.id).filter(
        VehicleAssignment.vehicle_id == vehicle_id,
        VehicleAssignment.status == "scheduled",
    ).first() is not None


def has_open_maintenance(db: Session, vehicle_id) -> bool:
    return db.query(VehicleMaintenance.id).filter(
        VehicleMaintenance.vehicle_id == vehicle_id,
        VehicleMaintenance.status == "in-progress",
    ).first() is not None


def derive_vehicle_status(db: Session, vehicle: Vehicle) -> str:
    """
    Compute the composite status of a vehicle.

    Precedence: manual override > in-progress maintenance > active assignment
    > scheduled assignment > available.
    """
    if vehicle.manual_status in MANUAL_STATUSES:
        return vehicle.manual_status
    if has_open_maintenance(db, vehicle.id):
        return "maintenance"
    if get_active_assignment(db, vehicle.id) is not None:
        return "in-use"
    if has_scheduled_assignment(db, vehicle.id):
        return "reserved"
    return "available"


def refresh_vehicle_status(db: Session, vehicle: Vehicle) -> str:
    """Recompute and persist derived fields inside the caller's transaction."""
    db.flush()
    status = derive_vehicle_status(db, vehicle)
    active = get_active_assignment(db, vehicle.id)
    crew_id = active.crew_id if active else None
    job_id = active.job_id if active else None

    if (vehicle.status, vehicle.assigned_crew_id, vehicle.assigned_job_id) != (status, crew_id, job_id):
        vehicle.status = status
        vehicle.assigned_crew_id = crew_id
        vehicle.assigned_job_id = job_id
        vehicle.updated_at = datetime.now(timezone.utc)
        db.flush()
    return status
