import uuid
from datetime import date, datetime
from typing import Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class JobStatus(str, Enum):
    scheduled = "scheduled"
    in_progress = "in-progress"
    completed = "completed"
    cancelled = "cancelled"


# Job Schemas
class JobBase(BaseModel):
    title: str
    scheduled_date: date
    total_estimate: float = Field(default=0, ge=0)
    customer_name: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None


class JobCreate(JobBase):
    pass


class JobUpdate(BaseModel):
    """Descriptive fields only. status and crew_id have dedicated endpoints."""
    title: Optional[str] = None
    scheduled_date: Optional[date] = None
    total_estimate: Optional[float] = Field(default=None, ge=0)
    customer_name: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("title", "scheduled_date", mode="before")
    @classmethod
    def required_not_null(cls, v):
        if v is None:
            raise ValueError("cannot be null")
        return v

    class Config:
        extra = "forbid"


class JobResponse(JobBase):
    id: uuid.UUID
    status: JobStatus
    crew_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    created_by: Optional[uuid.UUID] = None

    class Config:
        from_attributes = True


class JobStatusChange(BaseModel):
    status: JobStatus
    note: Optional[str] = None


class JobStatusChangeResult(BaseModel):
    job_id: uuid.UUID
    old_status: JobStatus
    new_status: JobStatus


class JobStatusHistoryResponse(BaseModel):
    id: uuid.UUID
    job_id: uuid.UUID
    old_status: JobStatus
    new_status: JobStatus
    changed_by: Optional[uuid.UUID] = None
    note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CrewAssignmentRequest(BaseModel):
    crew_id: uuid.UUID


class CrewAssignmentResult(BaseModel):
    job_id: uuid.UUID
    crew_id: uuid.UUID


# Crew Schemas
class CrewCreate(BaseModel):
    name: str
    capacity: int = Field(default=2, ge=1)


class CrewResponse(BaseModel):
    id: uuid.UUID
    name: str
    capacity: int
    is_available: bool
    current_job_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CrewRelease(BaseModel):
    note: Optional[str] = None
