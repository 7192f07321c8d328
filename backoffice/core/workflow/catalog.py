"""Workflow definition catalog.

Read models for configured workflows plus the structural check that guards
publishing: a definition only becomes active when its step graph can run.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from backoffice.common.timeutils import utcnow
from backoffice.db.models import WorkflowDefinition, WorkflowInstance, WorkflowStep, WorkflowTransition
from backoffice.db.tenancy import TenantScope

from .definitions import follow_edge, parse_step_config
from .errors import ConfigurationError, StateConflictError
from .states import Edge, InstanceState, StepType

logger = logging.getLogger(__name__)


def check_structure(session: Session, definition: WorkflowDefinition) -> Dict[str, Any]:
    """
    Check that a definition's step graph can run.

    A runnable graph has exactly one ``inicio`` step followed by an approval
    step, at least one ``fin`` step, no step without a transition and a
    valid config on every step (approval steps other than supervisor steps
    must list their approvers).

    Returns:
        ``{"valid": bool, "errors": [...], "stats": {...}}``
    """
    steps = (
        session.query(WorkflowStep)
        .filter(WorkflowStep.workflow_id == definition.id)
        .order_by(WorkflowStep.position, WorkflowStep.id)
        .all()
    )
    transitions = (
        session.query(WorkflowTransition)
        .filter(WorkflowTransition.workflow_id == definition.id)
        .all()
    )
    starts = [s for s in steps if s.step_type == StepType.START.value]
    ends = [s for s in steps if s.step_type == StepType.END.value]
    approvals = [s for s in steps if s.step_type == StepType.APPROVAL.value]

    errors: List[str] = []
    if not starts:
        errors.append("Missing start step")
    elif len(starts) > 1:
        errors.append("Only one start step is allowed")
    else:
        first = follow_edge(session, starts[0].id, Edge.NEXT)
        if first is None or first.step_type != StepType.APPROVAL.value:
            errors.append("Start step is not followed by an approval step")

    if not ends:
        errors.append("Missing end step")

    connected = {t.from_step_id for t in transitions} | {t.to_step_id for t in transitions}
    orphans = [s.name for s in steps if s.id not in connected]
    if orphans:
        errors.append(f"Unconnected steps: {', '.join(orphans)}")

    for step in steps:
        try:
            parse_step_config(step.step_type, step.config)
        except ConfigurationError as e:
            errors.append(f'Step "{step.name}": {e}')

    return {
        "valid": not errors,
        "errors": errors,
        "stats": {
            "total_steps": len(steps),
            "total_transitions": len(transitions),
            "start_steps": len(starts),
            "end_steps": len(ends),
            "approval_steps": len(approvals),
        },
    }


class DefinitionService:
    """List, inspect, validate and publish workflow definitions."""

    def __init__(self, scope: TenantScope):
        self.scope = scope

    def validate_structure(self, workflow_id: int, org_id: int) -> Dict[str, Any]:
        """
        Raises:
            ConfigurationError: If the workflow does not exist in the organization
        """
        with self.scope.query(org_id) as session:
            return check_structure(session, self._get(session, workflow_id, org_id))

    def set_active(self, workflow_id: int, active: bool, org_id: int) -> Dict[str, Any]:
        """
        Publish or unpublish a definition.

        Publishing runs the structural check first; unpublishing never does,
        so a broken definition can always be taken out of evaluation.
        Instances already running are not affected either way.

        Raises:
            ConfigurationError: If the workflow is unknown or its graph is invalid
            StateConflictError: If the definition is already in that state
        """
        with self.scope.transaction(org_id) as session:
            definition = self._get(session, workflow_id, org_id)
            if definition.is_active == active:
                raise StateConflictError(
                    f"Workflow {definition.code} is already {'active' if active else 'inactive'}"
                )

            if active:
                report = check_structure(session, definition)
                if not report["valid"]:
                    raise ConfigurationError(
                        f"Cannot publish workflow {definition.code}: {'; '.join(report['errors'])}"
                    )

            definition.is_active = active
            definition.updated_at = utcnow()
            session.flush()

            logger.info(f"Workflow {definition.code} {'published' if active else 'unpublished'} (org {org_id})")
            return self._definition_to_dict(session, definition)

    def list_definitions(
        self,
        org_id: int,
        *,
        entity_type: Optional[str] = None,
        active: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        """Definitions grouped by entity type, each in evaluation order."""
        with self.scope.query(org_id) as session:
            query = session.query(WorkflowDefinition).filter(WorkflowDefinition.org_id == org_id)
            if entity_type:
                query = query.filter(WorkflowDefinition.entity_type == entity_type)
            if active is not None:
                query = query.filter(WorkflowDefinition.is_active.is_(active))
            definitions = query.order_by(WorkflowDefinition.entity_type, WorkflowDefinition.id).all()
            ids = [d.id for d in definitions]

            step_counts = dict(
                session.query(WorkflowStep.workflow_id, func.count(WorkflowStep.id))
                .filter(WorkflowStep.workflow_id.in_(ids))
                .group_by(WorkflowStep.workflow_id)
                .all()
            )
            running = dict(
                session.query(WorkflowInstance.workflow_id, func.count(WorkflowInstance.id))
                .filter(
                    WorkflowInstance.workflow_id.in_(ids),
                    WorkflowInstance.state == InstanceState.IN_PROGRESS.value,
                )
                .group_by(WorkflowInstance.workflow_id)
                .all()
            )

            items = []
            for definition in definitions:
                item = self._definition_to_dict(session, definition, with_graph=False)
                item["total_steps"] = step_counts.get(definition.id, 0)
                item["active_instances"] = running.get(definition.id, 0)
                items.append(item)
            return items

    def get_definition(self, workflow_id: int, org_id: int) -> Optional[Dict[str, Any]]:
        """Definition with its steps and transitions, or None."""
        with self.scope.query(org_id) as session:
            definition = (
                session.query(WorkflowDefinition)
                .filter(WorkflowDefinition.id == workflow_id, WorkflowDefinition.org_id == org_id)
                .first()
            )
            if definition is None:
                return None
            return self._definition_to_dict(session, definition)

    def _get(self, session: Session, workflow_id: int, org_id: int) -> WorkflowDefinition:
        definition = (
            session.query(WorkflowDefinition)
            .filter(WorkflowDefinition.id == workflow_id, WorkflowDefinition.org_id == org_id)
            .first()
        )
        if definition is None:
            raise ConfigurationError(f"Workflow {workflow_id} not found")
        return definition

    def _definition_to_dict(
        self,
        session: Session,
        definition: WorkflowDefinition,
        with_graph: bool = True,
    ) -> Dict[str, Any]:
        result = {
            "id": definition.id,
            "code": definition.code,
            "name": definition.name,
            "description": definition.description,
            "entity_type": definition.entity_type,
            "activation_condition": definition.activation_condition,
            "is_active": definition.is_active,
            "created_at": definition.created_at.isoformat() if definition.created_at else None,
            "updated_at": definition.updated_at.isoformat() if definition.updated_at else None,
        }
        if not with_graph:
            return result

        steps = (
            session.query(WorkflowStep)
            .filter(WorkflowStep.workflow_id == definition.id)
            .order_by(WorkflowStep.position, WorkflowStep.id)
            .all()
        )
        by_id = {s.id: s for s in steps}
        transitions = (
            session.query(WorkflowTransition)
            .filter(WorkflowTransition.workflow_id == definition.id)
            .order_by(WorkflowTransition.position, WorkflowTransition.id)
            .all()
        )
        result["steps"] = [
            {
                "id": s.id,
                "code": s.code,
                "name": s.name,
                "step_type": s.step_type,
                "config": s.config,
                "position": s.position,
            }
            for s in steps
        ]
        result["transitions"] = [
            {
                "id": t.id,
                "label": t.label,
                "from_step_id": t.from_step_id,
                "from_step_code": by_id[t.from_step_id].code if t.from_step_id in by_id else None,
                "to_step_id": t.to_step_id,
                "to_step_code": by_id[t.to_step_id].code if t.to_step_id in by_id else None,
            }
            for t in transitions
        ]
        return result
