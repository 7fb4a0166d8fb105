from datetime import date, datetime, timezone

from fieldops.models.models import Vehicle, VehicleAssignment, VehicleMaintenance
from fieldops.services import coordinator
from fieldops.services.vehicle_status import derive_vehicle_status, refresh_vehicle_status


def _add_assignment(db, vehicle, status, job_id=None, crew_id=None):
    assignment = VehicleAssignment(
        vehicle_id=vehicle.id, job_id=job_id, crew_id=crew_id, status=status, start_date=date.today()
    )
    db.add(assignment)
    db.flush()
    return assignment


def _add_maintenance(db, vehicle, status):
    record = VehicleMaintenance(vehicle_id=vehicle.id, title="Service", status=status)
    db.add(record)
    db.flush()
    return record


def test_idle_vehicle_is_available(db, make_vehicle):
    vehicle = make_vehicle()
    assert derive_vehicle_status(db, vehicle) == "available"


def test_precedence_chain(db, make_vehicle, make_job):
    vehicle = make_vehicle()
    job = make_job()

    _add_assignment(db, vehicle, "scheduled", job_id=job.id)
    assert derive_vehicle_status(db, vehicle) == "reserved"

    _add_assignment(db, vehicle, "active", job_id=job.id)
    assert derive_vehicle_status(db, vehicle) == "in-use"

    _add_maintenance(db, vehicle, "in-progress")
    assert derive_vehicle_status(db, vehicle) == "maintenance"

    vehicle.manual_status = "retired"
    assert derive_vehicle_status(db, vehicle) == "retired"


def test_closed_rows_do_not_count(db, make_vehicle, make_job):
    vehicle = make_vehicle()
    job = make_job()
    _add_assignment(db, vehicle, "completed", job_id=job.id)
    _add_assignment(db, vehicle, "cancelled", job_id=job.id)
    for status in ("scheduled", "completed", "cancelled", "deferred"):
        _add_maintenance(db, vehicle, status)

    assert derive_vehicle_status(db, vehicle) == "available"


def test_refresh_persists_status_and_assignment_targets(db, make_vehicle, make_job, make_crew):
    vehicle = make_vehicle()
    job = make_job()
    crew = make_crew()
    _add_assignment(db, vehicle, "active", job_id=job.id, crew_id=crew.id)

    assert refresh_vehicle_status(db, vehicle) == "in-use"
    db.commit()

    vehicle = db.get(Vehicle, vehicle.id)
    assert vehicle.status == "in-use"
    assert vehicle.assigned_job_id == job.id
    assert vehicle.assigned_crew_id == crew.id


def test_closing_everything_restores_available(db, make_vehicle, make_job):
    vehicle = make_vehicle()
    job = make_job()
    assignment = coordinator.assign_vehicle(db, vehicle.id, job_id=job.id)
    record = coordinator.create_maintenance_record(db, vehicle.id, title="Engine light", status="in-progress")
    assert db.get(Vehicle, vehicle.id).status == "maintenance"

    coordinator.release_vehicle_assignment(db, assignment.id, "completed")
    assert db.get(Vehicle, vehicle.id).status == "maintenance"

    result, old_status = coordinator.update_maintenance_status(db, record.id, "completed", completed_mileage=1200, actual_cost=310)

    assert old_status == "in-progress"
    vehicle = db.get(Vehicle, vehicle.id)
    assert result.completed_date == datetime.now(timezone.utc).date()
    assert vehicle.status == "available"
    assert vehicle.mileage == 1200


def test_manual_override_survives_closing_maintenance(db, make_vehicle):
    vehicle = make_vehicle()
    record = coordinator.create_maintenance_record(db, vehicle.id, title="Frame damage", status="in-progress")
    coordinator.set_vehicle_override(db, vehicle.id, "out-of-service")

    coordinator.update_maintenance_status(db, record.id, "cancelled")

    assert db.get(Vehicle, vehicle.id).status == "out-of-service"


def test_scheduled_maintenance_keeps_vehicle_available(db, make_vehicle):
    vehicle = make_vehicle()
    record = coordinator.create_maintenance_record(db, vehicle.id, title="Annual inspection")
    assert db.get(Vehicle, vehicle.id).status == "available"

    coordinator.update_maintenance_status(db, record.id, "in-progress")
    assert db.get(Vehicle, vehicle.id).status == "maintenance"
