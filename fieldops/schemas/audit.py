import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    entity_type: str
    entity_id: uuid.UUID
    action: str
    old_state: Optional[str] = None
    new_state: Optional[str] = None
    actor_id: Optional[uuid.UUID] = None
    note: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    timestamp_utc: datetime
    integrity_hash: Optional[str] = None

    class Config:
        from_attributes = True
