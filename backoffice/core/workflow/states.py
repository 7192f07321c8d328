"""Workflow instance states and transitions.

State Machine Diagram:

    ┌─────────────┐
    │ EN_PROGRESO │ ◄──┐ ADVANCE (approved, next approval level)
    └──────┬──────┘ ───┘
           │
           ├──────────────────┐
           │ APPROVE          │ REJECT
    ┌──────▼─────┐     ┌──────▼─────┐
    │  APROBADO  │     │ RECHAZADO  │
    └────────────┘     └────────────┘

APROBADO and RECHAZADO are absorbing.
"""

from enum import Enum
from typing import Set, Dict, Optional, NamedTuple


class InstanceState(str, Enum):
    """States of a workflow instance."""

    IN_PROGRESS = "en_progreso"   # Waiting on the current approval step

    # Terminal states
    APPROVED = "aprobado"
    REJECTED = "rechazado"


class StepType(str, Enum):
    """Kinds of workflow step."""

    START = "inicio"
    APPROVAL = "aprobacion"
    END = "fin"


class Edge(str, Enum):
    """Labels of the named edges leaving a step."""

    NEXT = "siguiente"      # inicio → first approval step
    APPROVE = "aprobar"     # approval step → next approval step or fin
    REJECT = "rechazar"


class HistoryAction(str, Enum):
    """Actions recorded in the workflow history."""

    STARTED = "iniciado"
    APPROVED = "aprobado"
    REJECTED = "rechazado"


class InstanceTransition(str, Enum):
    """Decisions that move an instance."""

    ADVANCE = "advance"     # EN_PROGRESO → EN_PROGRESO (next level)
    APPROVE = "approve"     # EN_PROGRESO → APROBADO
    REJECT = "reject"       # EN_PROGRESO → RECHAZADO


class TransitionRule(NamedTuple):
    """Defines a valid state transition."""
    from_state: InstanceState
    to_state: InstanceState
    transition: InstanceTransition
    history_action: HistoryAction


TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(InstanceState.IN_PROGRESS, InstanceState.IN_PROGRESS,
                   InstanceTransition.ADVANCE, HistoryAction.APPROVED),
    TransitionRule(InstanceState.IN_PROGRESS, InstanceState.APPROVED,
                   InstanceTransition.APPROVE, HistoryAction.APPROVED),
    TransitionRule(InstanceState.IN_PROGRESS, InstanceState.REJECTED,
                   InstanceTransition.REJECT, HistoryAction.REJECTED),
]

# Build lookup tables for efficient access
VALID_TRANSITIONS: Dict[InstanceState, Set[InstanceTransition]] = {}
TRANSITION_TARGETS: Dict[tuple[InstanceState, InstanceTransition], TransitionRule] = {}

for rule in TRANSITION_RULES:
    VALID_TRANSITIONS.setdefault(rule.from_state, set()).add(rule.transition)
    TRANSITION_TARGETS[(rule.from_state, rule.transition)] = rule


TERMINAL_STATES: Set[InstanceState] = {
    InstanceState.APPROVED,
    InstanceState.REJECTED,
}


def can_transition(from_state: InstanceState, transition: InstanceTransition) -> bool:
    """Check if a transition is valid from the given state."""
    return transition in VALID_TRANSITIONS.get(from_state, set())


def get_transition_rule(from_state: InstanceState, transition: InstanceTransition) -> Optional[TransitionRule]:
    """Get the transition rule for a state/action combination."""
    return TRANSITION_TARGETS.get((from_state, transition))

