"""
Domain errors raised by the consistency engine.

Every error carries a stable machine code, an HTTP status for the API
boundary and structured details (entity id, current state, attempted state)
so callers can render a precise message.
"""
from typing import Any, Dict, Optional


class FieldOpsError(Exception):
    code = "FIELDOPS_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "detail": self.message,
            "error": self.code,
            "retryable": self.retryable,
        }
        payload.update({k: str(v) if not isinstance(v, (int, float, bool, list)) else v for k, v in self.details.items()})
        return payload


# ---------- NOT FOUND ----------
class NotFound(FieldOpsError):
    code = "NOT_FOUND"
    status_code = 404
    entity_kind = "entity"

    def __init__(self, entity_id: Any):
        super().__init__(f"{self.entity_kind.capitalize()} not found", entity_kind=self.entity_kind, entity_id=entity_id)
        self.entity_id = entity_id


class JobNotFound(NotFound):
    code = "JOB_NOT_FOUND"
    entity_kind = "job"


class CrewNotFound(NotFound):
    code = "CREW_NOT_FOUND"
    entity_kind = "crew"


class VehicleNotFound(NotFound):
    code = "VEHICLE_NOT_FOUND"
    entity_kind = "vehicle"


class AssignmentNotFound(NotFound):
    code = "ASSIGNMENT_NOT_FOUND"
    entity_kind = "assignment"


class MaintenanceNotFound(NotFound):
    code = "MAINTENANCE_NOT_FOUND"
    entity_kind = "maintenance"


# ---------- STATE MACHINE ----------
class InvalidTransition(FieldOpsError):
    code = "INVALID_TRANSITION"
    status_code = 422

    def __init__(self, entity_kind: str, current_state: str, requested_state: str, entity_id: Any = None):
        super().__init__(
            f"Cannot move {entity_kind} from '{current_state}' to '{requested_state}'",
            entity_kind=entity_kind,
            entity_id=entity_id,
            current_state=current_state,
            requested_state=requested_state,
        )
        self.entity_kind = entity_kind
        self.current_state = current_state
        self.requested_state = requested_state


# ---------- CONFLICTS ----------
class ConflictingAssignment(FieldOpsError):
    code = "CONFLICTING_ASSIGNMENT"
    status_code = 409


class CrewUnavailable(ConflictingAssignment):
    code = "CREW_UNAVAILABLE"

    def __init__(self, crew_id: Any, current_job_id: Any):
        super().__init__("Crew is already assigned to another open job", crew_id=crew_id, current_job_id=current_job_id)


class JobClosed(ConflictingAssignment):
    code = "JOB_CLOSED"

    def __init__(self, job_id: Any, status: str):
        super().__init__("Job is closed and cannot take a crew", job_id=job_id, current_state=status)


class VehicleNotAvailable(ConflictingAssignment):
    code = "VEHICLE_NOT_AVAILABLE"

    def __init__(self, vehicle_id: Any, status: str):
        super().__init__("Vehicle is not available for assignment", vehicle_id=vehicle_id, current_state=status)


class VehicleAlreadyAssigned(ConflictingAssignment):
    code = "VEHICLE_ALREADY_ASSIGNED"

    def __init__(self, vehicle_id: Any, assignment_id: Any = None):
        super().__init__("Vehicle already has an active assignment", vehicle_id=vehicle_id, assignment_id=assignment_id)


# ---------- BAD REQUEST ----------
class InvalidRequest(FieldOpsError):
    code = "INVALID_REQUEST"
    status_code = 400


class AssignmentTargetRequired(InvalidRequest):
    code = "ASSIGNMENT_TARGET_REQUIRED"

    def __init__(self, vehicle_id: Any):
        super().__init__("crew_id or job_id is required", vehicle_id=vehicle_id)


# ---------- STORE ----------
class StoreTimeout(FieldOpsError):
    code = "STORE_TIMEOUT"
    status_code = 503
    retryable = True


class StoreUnavailable(FieldOpsError):
    code = "STORE_UNAVAILABLE"
    status_code = 503
    retryable = True


class AuditWriteFailed(FieldOpsError):
    code = "AUDIT_WRITE_FAILED"
    status_code = 500

    def __init__(self, entity_type: str, entity_id: Any, reason: Optional[str] = None):
        super().__init__("Audit record could not be written", entity_type=entity_type, entity_id=entity_id, reason=reason)
