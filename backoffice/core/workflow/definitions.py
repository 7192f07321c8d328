"""Typed step configuration and step-graph navigation.

Steps store their configuration as JSON; the engine only reads it through
``step_config`` which returns the variant matching the step type.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple, Union

from sqlalchemy.orm import Session

from backoffice.db.models import WorkflowStep, WorkflowTransition

from .errors import ConfigurationError
from .states import Edge, StepType

CHANGE_STATE_ACTION = "cambiar_estado"


class ApproverType(str, Enum):
    """Approver resolution strategies."""
    ROLE = "rol"
    USER = "usuario"
    PERMISSION = "permiso"
    SUPERVISOR = "supervisor"


@dataclass(frozen=True)
class StartStepConfig:
    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "StartStepConfig":
        return cls()


@dataclass(frozen=True)
class ApprovalStepConfig:
    approver_type: ApproverType
    approvers: Tuple[Any, ...] = ()
    timeout_hours: Optional[float] = None
    supervisor_level: int = 1
    any_supervisor_level: bool = False
    fallback_role: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ApprovalStepConfig":
        """
        Accepts both the engine layout::

            {"aprobadores_tipo": "rol", "aprobadores": ["gerente"],
             "timeout_horas": 48, "supervisor_config": {"fallback_rol": "admin"}}

        and the designer layout::

            {"aprobador": {"tipo": "supervisor", "valor": null,
                           "supervisor_config": {"nivel": 2}}, "timeout_horas": 48}
        """
        designer = raw.get("aprobador")
        if isinstance(designer, Mapping):
            raw_type = designer.get("tipo")
            raw_approvers = designer.get("valor")
            supervisor = designer.get("supervisor_config") or raw.get("supervisor_config") or {}
        else:
            raw_type = raw.get("aprobadores_tipo")
            raw_approvers = raw.get("aprobadores")
            supervisor = raw.get("supervisor_config") or {}

        if not raw_type:
            raise ConfigurationError("Approval step has no approver type")
        try:
            approver_type = ApproverType(str(raw_type).lower())
        except ValueError:
            raise ConfigurationError(f"Unknown approver type: {raw_type!r}")

        if raw_approvers is None:
            approvers: Tuple[Any, ...] = ()
        elif isinstance(raw_approvers, (list, tuple)):
            approvers = tuple(raw_approvers)
        else:
            approvers = (raw_approvers,)

        if approver_type != ApproverType.SUPERVISOR and not approvers:
            raise ConfigurationError(f"Approval step of type '{approver_type.value}' lists no approvers")

        timeout = raw.get("timeout_horas")
        try:
            timeout_hours = float(timeout) if timeout not in (None, "") else None
            level = int(supervisor.get("nivel") or 1)
        except (TypeError, ValueError):
            raise ConfigurationError("Approval step has a non-numeric timeout or supervisor level")
        if timeout_hours is not None and timeout_hours <= 0:
            raise ConfigurationError("timeout_horas must be positive")
        if level < 1:
            raise ConfigurationError("Supervisor level must be at least 1")

        return cls(
            approver_type=approver_type,
            approvers=approvers,
            timeout_hours=timeout_hours,
            supervisor_level=level,
            any_supervisor_level=bool(supervisor.get("cualquier_nivel", False)),
            fallback_role=supervisor.get("fallback_rol") or None,
        )


@dataclass(frozen=True)
class EndStepConfig:
    action: Optional[str] = None
    target_state: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "EndStepConfig":
        return cls(action=raw.get("accion"), target_state=raw.get("estado_nuevo"))

    @property
    def changes_state(self) -> bool:
        return self.action == CHANGE_STATE_ACTION and bool(self.target_state)


StepConfig = Union[StartStepConfig, ApprovalStepConfig, EndStepConfig]

_CONFIG_TYPES = {
    StepType.START: StartStepConfig,
    StepType.APPROVAL: ApprovalStepConfig,
    StepType.END: EndStepConfig,
}


def parse_step_config(step_type: str, raw: Optional[Mapping[str, Any]]) -> StepConfig:
    """
    Build the typed config for a step.

    Raises:
        ConfigurationError: If the step type is unknown or the config invalid
    """
    try:
        kind = StepType(step_type)
    except ValueError:
        raise ConfigurationError(f"Unknown step type: {step_type!r}")
    return _CONFIG_TYPES[kind].from_dict(raw or {})


def step_config(step: WorkflowStep) -> StepConfig:
    return parse_step_config(step.step_type, step.config)


def find_start_step(session: Session, workflow_id: int) -> Optional[WorkflowStep]:
    return (
        session.query(WorkflowStep)
        .filter(
            WorkflowStep.workflow_id == workflow_id,
            WorkflowStep.step_type == StepType.START.value,
        )
        .order_by(WorkflowStep.position, WorkflowStep.id)
        .first()
    )


def follow_edge(session: Session, step_id: int, edge: Edge) -> Optional[WorkflowStep]:
    """Return the step reached from ``step_id`` through ``edge``, if any."""
    return (
        session.query(WorkflowStep)
        .join(WorkflowTransition, WorkflowTransition.to_step_id == WorkflowStep.id)
        .filter(
            WorkflowTransition.from_step_id == step_id,
            WorkflowTransition.label == edge.value,
        )
        .order_by(WorkflowTransition.position, WorkflowTransition.id)
        .first()
    )
