import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import Actor, get_current_actor
from ..schemas.audit import AuditLogResponse
from ..services.audit import get_audit_logs

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=List[AuditLogResponse])
def list_audit_logs(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[uuid.UUID] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    """Audit trail, newest first"""
    return get_audit_logs(db, entity_type=entity_type, entity_id=entity_id, limit=limit, offset=offset)
