"""
Status transition rules for jobs, vehicle assignments and maintenance tickets.
Pure functions: nothing here touches the database.
"""
from typing import Any, Dict, FrozenSet, Optional

from ..errors import InvalidTransition


JOB = "job"
VEHICLE_ASSIGNMENT = "vehicle_assignment"
VEHICLE_MAINTENANCE = "vehicle_maintenance"


TRANSITIONS: Dict[str, Dict[str, FrozenSet[str]]] = {
    JOB: {
        "scheduled": frozenset({"in-progress", "cancelled"}),
        "in-progress": frozenset({"completed", "cancelled"}),
        "completed": frozenset(),
        "cancelled": frozenset(),
    },
    VEHICLE_ASSIGNMENT: {
        "scheduled": frozenset({"active", "cancelled"}),
        "active": frozenset({"completed", "cancelled"}),
        "completed": frozenset(),
        "cancelled": frozenset(),
    },
    VEHICLE_MAINTENANCE: {
        "scheduled": frozenset({"in-progress", "cancelled", "deferred"}),
        "in-progress": frozenset({"completed", "cancelled"}),
        "completed": frozenset(),
        "cancelled": frozenset(),
        "deferred": frozenset(),
    },
}


def allowed_transitions(entity_kind: str, current_state: str) -> FrozenSet[str]:
    table = TRANSITIONS.get(entity_kind)
    if table is None:
        raise ValueError(f"Unknown entity kind: {entity_kind}")
    return table.get(current_state, frozenset())


def can_transition(entity_kind: str, current_state: str, proposed_state: str) -> bool:
    # Self-transitions are never listed, so they fall out as False
    return proposed_state in allowed_transitions(entity_kind, current_state)


def is_terminal(entity_kind: str, state: str) -> bool:
    return not allowed_transitions(entity_kind, state)


def ensure_transition(entity_kind: str, current_state: str, proposed_state: str, entity_id: Optional[Any] = None) -> None:
    """Raise InvalidTransition unless current_state -> proposed_state is legal."""
    if not can_transition(entity_kind, current_state, proposed_state):
        raise InvalidTransition(entity_kind, current_state, proposed_state, entity_id=entity_id)
