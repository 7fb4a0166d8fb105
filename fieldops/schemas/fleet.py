import uuid
from datetime import date, datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


# Enums
class VehicleType(str, Enum):
    truck = "truck"
    trailer = "trailer"
    van = "van"
    pickup = "pickup"
    dump_truck = "dump_truck"
    flatbed = "flatbed"
    other = "other"


class VehicleStatus(str, Enum):
    available = "available"
    in_use = "in-use"
    maintenance = "maintenance"
    out_of_service = "out-of-service"
    retired = "retired"
    reserved = "reserved"


class VehicleOverrideStatus(str, Enum):
    retired = "retired"
    out_of_service = "out-of-service"


class AssignmentType(str, Enum):
    crew = "crew"
    job = "job"
    maintenance = "maintenance"
    other = "other"


class AssignmentStatus(str, Enum):
    scheduled = "scheduled"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class AssignmentOutcome(str, Enum):
    completed = "completed"
    cancelled = "cancelled"


class MaintenanceType(str, Enum):
    routine = "routine"
    repair = "repair"
    emergency = "emergency"
    inspection = "inspection"
    tire = "tire"
    brake = "brake"
    engine = "engine"
    transmission = "transmission"
    other = "other"


class MaintenancePriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"
    critical = "critical"


class MaintenanceStatus(str, Enum):
    scheduled = "scheduled"
    in_progress = "in-progress"
    completed = "completed"
    cancelled = "cancelled"
    deferred = "deferred"


# Vehicle Schemas
class VehicleBase(BaseModel):
    name: str
    license_plate: str
    vin: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    vehicle_type: VehicleType = VehicleType.truck
    mileage: float = Field(default=0, ge=0)
    current_fuel_level: Optional[float] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = None


class VehicleCreate(VehicleBase):
    pass


class VehicleUpdate(BaseModel):
    """Descriptive fields only. status and assignment links are derived."""
    name: Optional[str] = None
    license_plate: Optional[str] = None
    vin: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    vehicle_type: Optional[VehicleType] = None
    mileage: Optional[float] = Field(default=None, ge=0)
    current_fuel_level: Optional[float] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = None

    @field_validator("name", "license_plate", mode="before")
    @classmethod
    def required_not_null(cls, v):
        if v is None:
            raise ValueError("cannot be null")
        return v

    class Config:
        extra = "forbid"
        use_enum_values = True


class VehicleOverride(BaseModel):
    manual_status: Optional[VehicleOverrideStatus] = None  # None clears the override
    note: Optional[str] = None


class VehicleResponse(VehicleBase):
    id: uuid.UUID
    status: VehicleStatus
    manual_status: Optional[VehicleOverrideStatus] = None
    assigned_crew_id: Optional[uuid.UUID] = None
    assigned_job_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    created_by: Optional[uuid.UUID] = None

    class Config:
        from_attributes = True


# Assignment Schemas
class VehicleAssignmentCreate(BaseModel):
    crew_id: Optional[uuid.UUID] = None
    job_id: Optional[uuid.UUID] = None
    assignment_type: Optional[AssignmentType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_mileage: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
    scheduled: bool = False  # book ahead instead of activating now

    @model_validator(mode="after")
    def _check_window(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class VehicleAssignmentStart(BaseModel):
    start_mileage: Optional[float] = Field(default=None, ge=0)


class VehicleAssignmentRelease(BaseModel):
    outcome: AssignmentOutcome = AssignmentOutcome.completed
    end_mileage: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class VehicleAssignmentResponse(BaseModel):
    id: uuid.UUID
    vehicle_id: uuid.UUID
    crew_id: Optional[uuid.UUID] = None
    job_id: Optional[uuid.UUID] = None
    assignment_type: AssignmentType
    status: AssignmentStatus
    start_date: date
    end_date: Optional[date] = None
    start_mileage: Optional[float] = None
    end_mileage: Optional[float] = None
    assigned_by: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VehicleAssignmentResult(BaseModel):
    assignment_id: uuid.UUID
    vehicle_id: uuid.UUID
    status: AssignmentStatus
    vehicle_status: VehicleStatus


class VehicleAssignmentsOverview(BaseModel):
    vehicle_id: uuid.UUID
    vehicle_name: str
    current_assignment: Optional[VehicleAssignmentResponse] = None
    assignment_history: List[VehicleAssignmentResponse]


# Maintenance Schemas
class VehicleMaintenanceCreate(BaseModel):
    title: str
    maintenance_type: MaintenanceType = MaintenanceType.routine
    priority: MaintenancePriority = MaintenancePriority.medium
    status: MaintenanceStatus = MaintenanceStatus.scheduled
    description: Optional[str] = None
    scheduled_date: Optional[date] = None
    estimated_cost: Optional[float] = Field(default=None, ge=0)
    performed_by: Optional[str] = None
    notes: Optional[str] = None


class VehicleMaintenanceStatusUpdate(BaseModel):
    status: MaintenanceStatus
    completed_mileage: Optional[float] = Field(default=None, ge=0)
    actual_cost: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class VehicleMaintenanceResponse(BaseModel):
    id: uuid.UUID
    vehicle_id: uuid.UUID
    title: str
    maintenance_type: MaintenanceType
    priority: MaintenancePriority
    status: MaintenanceStatus
    description: Optional[str] = None
    scheduled_date: Optional[date] = None
    completed_date: Optional[date] = None
    completed_mileage: Optional[float] = None
    estimated_cost: Optional[float] = None
    actual_cost: Optional[float] = None
    performed_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VehicleMaintenanceResult(BaseModel):
    maintenance_id: uuid.UUID
    vehicle_id: uuid.UUID
    old_status: Optional[MaintenanceStatus] = None
    status: MaintenanceStatus
    vehicle_status: VehicleStatus
