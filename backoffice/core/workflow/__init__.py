"""Approval workflow engine.

Decides when an entity action needs approval, runs multi-level approval
chains and applies the outcome to the entity. ``service.create_workflow_service``
wires the engine with its default collaborators.
"""

from .errors import (
    WorkflowError,
    ConfigurationError,
    PermissionDeniedError,
    StateConflictError,
    InstanceNotFoundError,
    EntityNotFoundError,
    NotificationError,
)
from .states import InstanceState, InstanceTransition, StepType, Edge, HistoryAction, TERMINAL_STATES
from .machine import InstanceStateMachine
from .conditions import EvaluationContext, parse_condition, evaluate

__all__ = [
    "WorkflowError",
    "ConfigurationError",
    "PermissionDeniedError",
    "StateConflictError",
    "InstanceNotFoundError",
    "EntityNotFoundError",
    "NotificationError",
    "InstanceState",
    "InstanceTransition",
    "StepType",
    "Edge",
    "HistoryAction",
    "TERMINAL_STATES",
    "InstanceStateMachine",
    "EvaluationContext",
    "parse_condition",
    "evaluate",
]
