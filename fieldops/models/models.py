import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    JSON,
    Text,
    Index,
    CheckConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


# =====================
# Jobs & Crews
# =====================

class Job(Base):
    """Field-service job. Never deleted; cancellation is terminal."""
    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = uuid_pk()
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255))
    address: Mapped[Optional[str]] = mapped_column(Text)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    total_estimate: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled", index=True)  # scheduled|in-progress|completed|cancelled
    crew_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("crews.id", ondelete="SET NULL"), index=True)  # back-reference only
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    status_history = relationship("JobStatusHistory", back_populates="job", order_by="JobStatusHistory.created_at")


class Crew(Base):
    """Crew availability. is_available is False exactly when current_job_id is set."""
    __tablename__ = "crews"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    current_job_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("jobs.id", ondelete="SET NULL", use_alter=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "(is_available AND current_job_id IS NULL) OR (NOT is_available AND current_job_id IS NOT NULL)",
            name="ck_crew_availability_matches_job",
        ),
    )


class JobStatusHistory(Base):
    """Append-only job status transitions"""
    __tablename__ = "job_status_history"

    id: Mapped[uuid.UUID] = uuid_pk()
    job_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    old_status: Mapped[str] = mapped_column(String(20), nullable=False)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    note: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)

    job = relationship("Job", back_populates="status_history")


# =====================
# Fleet
# =====================

class Vehicle(Base):
    """Fleet vehicle. status and assigned_* are derived; manual_status overrides derivation."""
    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    license_plate: Mapped[str] = mapped_column(String(20), nullable=False, unique=True, index=True)
    vin: Mapped[Optional[str]] = mapped_column(String(17), unique=True)
    make: Mapped[Optional[str]] = mapped_column(String(100))
    model: Mapped[Optional[str]] = mapped_column(String(100))
    year: Mapped[Optional[int]] = mapped_column(Integer)
    vehicle_type: Mapped[str] = mapped_column(String(20), default="truck")  # truck|trailer|van|pickup|dump_truck|flatbed|other
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="available", index=True)  # available|in-use|maintenance|out-of-service|retired|reserved
    manual_status: Mapped[Optional[str]] = mapped_column(String(20))  # retired|out-of-service
    assigned_crew_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("crews.id", ondelete="SET NULL"), index=True)
    assigned_job_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("jobs.id", ondelete="SET NULL"), index=True)
    mileage: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    current_fuel_level: Mapped[Optional[float]] = mapped_column(Numeric(5, 2))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    assignments = relationship("VehicleAssignment", back_populates="vehicle", order_by="VehicleAssignment.created_at.desc()")
    maintenance_records = relationship("VehicleMaintenance", back_populates="vehicle", order_by="VehicleMaintenance.created_at.desc()")


class VehicleAssignment(Base):
    """Binding of a vehicle to a crew and/or job. (crew_id, job_id) never change after creation."""
    __tablename__ = "vehicle_assignments"

    id: Mapped[uuid.UUID] = uuid_pk()
    vehicle_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)
    crew_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("crews.id", ondelete="SET NULL"), index=True)
    job_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("jobs.id", ondelete="SET NULL"), index=True)
    assignment_type: Mapped[str] = mapped_column(String(20), nullable=False, default="crew")  # crew|job|maintenance|other
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled", index=True)  # scheduled|active|completed|cancelled
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    start_mileage: Mapped[Optional[float]] = mapped_column(Numeric(10, 2))
    end_mileage: Mapped[Optional[float]] = mapped_column(Numeric(10, 2))
    assigned_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    vehicle = relationship("Vehicle", back_populates="assignments")

    __table_args__ = (
        CheckConstraint("crew_id IS NOT NULL OR job_id IS NOT NULL", name="ck_vehicle_assignment_target"),
        # At most one active assignment per vehicle
        Index(
            "uq_vehicle_assignment_active",
            "vehicle_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_vehicle_assignment_vehicle_status", "vehicle_id", "status"),
    )


class VehicleMaintenance(Base):
    """Maintenance tickets. An in-progress ticket puts the vehicle in maintenance."""
    __tablename__ = "vehicle_maintenance"

    id: Mapped[uuid.UUID] = uuid_pk()
    vehicle_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)
    maintenance_type: Mapped[str] = mapped_column(String(20), nullable=False, default="routine")  # routine|repair|emergency|inspection|tire|brake|engine|transmission|other
    priority: Mapped[str] = mapped_column(String(20), default="medium")  # low|medium|high|urgent|critical
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled", index=True)  # scheduled|in-progress|completed|cancelled|deferred
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date)
    completed_date: Mapped[Optional[date]] = mapped_column(Date)
    completed_mileage: Mapped[Optional[float]] = mapped_column(Numeric(10, 2))
    estimated_cost: Mapped[Optional[float]] = mapped_column(Numeric(8, 2))
    actual_cost: Mapped[Optional[float]] = mapped_column(Numeric(8, 2))
    performed_by: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    vehicle = relationship("Vehicle", back_populates="maintenance_records")

    __table_args__ = (
        Index("idx_vehicle_maintenance_vehicle_status", "vehicle_id", "status"),
    )


# =====================
# Audit
# =====================

class AuditLog(Base):
    """Append-only audit log for every coordinated state change"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # job|crew|vehicle|vehicle_assignment|vehicle_maintenance
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|UPDATE|STATUS_CHANGE|ASSIGN|RELEASE|OVERRIDE
    old_state: Mapped[Optional[str]] = mapped_column(String(50))
    new_state: Mapped[Optional[str]] = mapped_column(String(50))
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    note: Mapped[Optional[str]] = mapped_column(Text)
    context: Mapped[Optional[dict]] = mapped_column(JSON)  # {vehicle_id, crew_id, job_id, ...}
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_actor', 'actor_id', 'timestamp_utc'),
    )
