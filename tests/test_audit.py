"""Audit trail: integrity hashing and fail-closed writes."""

import uuid
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from fieldops.errors import AuditWriteFailed, StoreTimeout
from fieldops.models.models import AuditLog, Vehicle, VehicleAssignment
from fieldops.services import audit, coordinator


def test_compute_integrity_hash_deterministic():
    ts = datetime(2024, 1, 1, 12, 0, 0)
    entity_id = uuid.uuid4()
    hash1 = audit.compute_integrity_hash("job", entity_id, "STATUS_CHANGE", "scheduled", "in-progress", None, None, None, ts, secret="s")
    hash2 = audit.compute_integrity_hash("job", entity_id, "STATUS_CHANGE", "scheduled", "in-progress", None, None, None, ts, secret="s")
    assert hash1 == hash2
    assert len(hash1) == 64  # SHA256 hex


def test_compute_integrity_hash_depends_on_secret_and_state():
    ts = datetime(2024, 1, 1, 12, 0, 0)
    entity_id = uuid.uuid4()
    base = audit.compute_integrity_hash("job", entity_id, "STATUS_CHANGE", "scheduled", "in-progress", None, None, None, ts, secret="s")
    assert base != audit.compute_integrity_hash("job", entity_id, "STATUS_CHANGE", "scheduled", "cancelled", None, None, None, ts, secret="s")
    assert base != audit.compute_integrity_hash("job", entity_id, "STATUS_CHANGE", "scheduled", "in-progress", None, None, None, ts, secret="other")


def test_recorded_entry_verifies_until_tampered(db, actor_id):
    entity_id = uuid.uuid4()
    entry = audit.record_audit(
        db,
        entity_type="vehicle",
        entity_id=entity_id,
        action="OVERRIDE",
        old_state=None,
        new_state="retired",
        actor_id=actor_id,
        note="End of life",
        context={"vehicle_id": entity_id},
    )
    db.commit()

    stored = db.query(AuditLog).filter(AuditLog.id == entry.id).one()
    assert stored.context == {"vehicle_id": str(entity_id)}
    assert audit.verify_integrity(stored)

    stored.new_state = "available"
    assert not audit.verify_integrity(stored)


def _fail_audit_insert(monkeypatch, db, error):
    real_flush = db.flush

    def flush(*args, **kwargs):
        if any(isinstance(obj, AuditLog) for obj in db.new):
            raise error
        return real_flush(*args, **kwargs)

    monkeypatch.setattr(db, "flush", flush)


def test_insert_failure_raises_audit_write_failed(monkeypatch, db):
    _fail_audit_insert(monkeypatch, db, ProgrammingError("INSERT INTO audit_logs", {}, Exception("relation audit_logs does not exist")))

    with pytest.raises(AuditWriteFailed) as exc_info:
        audit.record_audit(db, entity_type="job", entity_id=uuid.uuid4(), action="CREATE")

    assert exc_info.value.status_code == 500
    assert exc_info.value.retryable is False
    assert "does not exist" in exc_info.value.details["reason"]


def test_locked_audit_insert_is_a_retryable_timeout(monkeypatch, db):
    _fail_audit_insert(monkeypatch, db, OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked")))

    with pytest.raises(StoreTimeout) as exc_info:
        audit.record_audit(db, entity_type="job", entity_id=uuid.uuid4(), action="CREATE")

    assert exc_info.value.retryable is True


def test_audit_failure_rolls_back_assignment(monkeypatch, db, make_vehicle, make_job):
    vehicle = make_vehicle()
    job = make_job()
    audit_before = db.query(AuditLog).count()

    def failing_record_audit(db, entity_type, entity_id, *args, **kwargs):
        raise AuditWriteFailed(entity_type, entity_id, reason="audit store down")

    monkeypatch.setattr(coordinator, "record_audit", failing_record_audit)

    with pytest.raises(AuditWriteFailed):
        coordinator.assign_vehicle(db, vehicle.id, job_id=job.id)

    assert db.query(VehicleAssignment).count() == 0
    assert db.get(Vehicle, vehicle.id).status == "available"
    assert db.query(AuditLog).count() == audit_before


def test_get_audit_logs_filters_by_entity(db, make_job):
    j1 = make_job(title="J1")
    make_job(title="J2")
    coordinator.update_job_status(db, j1.id, "in-progress")

    rows = audit.get_audit_logs(db, entity_type="job", entity_id=j1.id)

    assert {r.action for r in rows} == {"CREATE", "STATUS_CHANGE"}
    assert all(r.entity_id == j1.id for r in rows)
