"""
Audit logging service.
Append-only audit log with integrity hashing.

Entries are written inside the caller's transaction and never committed
here: if an entry cannot be written the whole operation must roll back.
"""
import hashlib
import json
from datetime import datetime
from typing import Optional, Dict, Any

import structlog
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.models import AuditLog, JobStatusHistory
from ..config import settings
from ..db import translate_store_error
from ..errors import AuditWriteFailed


logger = structlog.get_logger(__name__)


def _integrity_secret() -> Optional[str]:
    return settings.audit_integrity_secret or settings.jwt_secret


def compute_integrity_hash(
    entity_type: str,
    entity_id: Any,
    action: str,
    old_state: Optional[str],
    new_state: Optional[str],
    actor_id: Optional[Any],
    note: Optional[str],
    context: Optional[Dict],
    timestamp_utc: datetime,
    secret: Optional[str] = None,
) -> Optional[str]:
    if secret is None:
        secret = _integrity_secret()
    if not secret:
        return None

    canonical_data = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "action": action,
        "old_state": old_state,
        "new_state": new_state,
        "actor_id": str(actor_id) if actor_id else None,
        "note": note,
        "context": context,
        "timestamp_utc": timestamp_utc.isoformat(),
    }
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)

    hash_input = f"{canonical_json}:{secret}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def _append(db: Session, entry, entity_type: str, entity_id: Any) -> None:
    # Pending caller changes flush outside the audit error mapping
    db.flush()
    try:
        db.add(entry)
        db.flush()
    except OperationalError as e:
        raise translate_store_error(e) from e
    except SQLAlchemyError as e:
        logger.error("audit_write_failed", entity_type=entity_type, entity_id=str(entity_id), error=str(e))
        raise AuditWriteFailed(entity_type, entity_id, reason=str(e)) from e


def record_audit(
    db: Session,
    entity_type: str,
    entity_id: Any,
    action: str,
    old_state: Optional[str] = None,
    new_state: Optional[str] = None,
    actor_id: Optional[Any] = None,
    note: Optional[str] = None,
    context: Optional[Dict] = None,
) -> AuditLog:
    """
    Append an audit entry to the current transaction.

    Args:
        db: Database session (transaction owned by the caller)
        entity_type: job|crew|vehicle|vehicle_assignment|vehicle_maintenance
        entity_id: Entity ID
        action: CREATE|UPDATE|STATUS_CHANGE|ASSIGN|RELEASE|OVERRIDE
        old_state: State before the change
        new_state: State after the change
        actor_id: Actor who performed the change
        note: Optional free text
        context: Related ids (vehicle_id, crew_id, job_id, ...)

    Raises:
        AuditWriteFailed: the entry could not be flushed
    """
    timestamp_utc = datetime.utcnow().replace(tzinfo=None)
    if context:
        context = {k: str(v) if v is not None else None for k, v in context.items()}

    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        old_state=old_state,
        new_state=new_state,
        actor_id=actor_id,
        note=note,
        context=context,
        timestamp_utc=timestamp_utc,
        integrity_hash=compute_integrity_hash(
            entity_type, entity_id, action, old_state, new_state, actor_id, note, context, timestamp_utc
        ),
    )
    _append(db, audit_log, entity_type, entity_id)
    return audit_log


def record_job_status_change(
    db: Session,
    job_id: Any,
    old_status: str,
    new_status: str,
    actor_id: Optional[Any] = None,
    note: Optional[str] = None,
) -> JobStatusHistory:
    """Append a job_status_history row and the matching audit entry."""
    history = JobStatusHistory(
        job_id=job_id,
        old_status=old_status,
        new_status=new_status,
        changed_by=actor_id,
        note=note,
    )
    _append(db, history, "job", job_id)

    record_audit(
        db,
        entity_type="job",
        entity_id=job_id,
        action="STATUS_CHANGE",
        old_state=old_status,
        new_state=new_status,
        actor_id=actor_id,
        note=note,
    )
    return history


def verify_integrity(entry: AuditLog, secret: Optional[str] = None) -> bool:
    """Recompute an entry's hash and compare it with the stored one."""
    expected = compute_integrity_hash(
        entry.entity_type,
        entry.entity_id,
        entry.action,
        entry.old_state,
        entry.new_state,
        entry.actor_id,
        entry.note,
        entry.context,
        entry.timestamp_utc.replace(tzinfo=None),
        secret=secret,
    )
    return expected is not None and expected == entry.integrity_hash


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[Any] = None,
    limit: int = 100,
    offset: int = 0
) -> list:
    """
    Get audit logs with optional filtering.

    Args:
        db: Database session
        entity_type: Filter by entity type
        entity_id: Filter by entity ID
        limit: Maximum number of results
        offset: Offset for pagination

    Returns:
        List of AuditLog objects
    """
    query = db.query(AuditLog)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)

    query = query.order_by(AuditLog.timestamp_utc.desc())
    query = query.limit(limit).offset(offset)

    return query.all()
