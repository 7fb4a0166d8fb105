import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db import get_db, unit_of_work
from ..auth.security import Actor, get_current_actor
from ..models.models import Crew
from ..schemas.jobs import CrewCreate, CrewResponse, CrewRelease
from ..services import coordinator
from ..services.audit import record_audit

router = APIRouter(prefix="/crews", tags=["crews"])


@router.get("", response_model=List[CrewResponse])
def list_crews(
    available: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    """List crews, optionally only free (or only busy) ones"""
    query = db.query(Crew)
    if available is not None:
        query = query.filter(Crew.is_available == available)
    return query.order_by(Crew.name.asc()).all()


@router.post("", response_model=CrewResponse, status_code=201)
def create_crew(
    payload: CrewCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Create a crew; new crews start available"""
    with unit_of_work(db):
        crew = Crew(name=payload.name, capacity=payload.capacity, is_available=True)
        db.add(crew)
        db.flush()
        record_audit(db, entity_type="crew", entity_id=crew.id, action="CREATE", new_state="available", actor_id=actor.id)
    db.refresh(crew)
    return crew


@router.get("/{crew_id}", response_model=CrewResponse)
def get_crew(
    crew_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    crew = db.query(Crew).filter(Crew.id == crew_id).first()
    if not crew:
        raise HTTPException(status_code=404, detail="Crew not found")
    return crew


@router.post("/{crew_id}/release", response_model=CrewResponse)
def release_crew(
    crew_id: uuid.UUID,
    payload: Optional[CrewRelease] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Free a crew from its current job"""
    crew = coordinator.release_crew(db, crew_id, actor_id=actor.id, note=payload.note if payload else None)
    db.refresh(crew)
    return crew
