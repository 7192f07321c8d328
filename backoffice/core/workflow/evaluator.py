"""Decides whether a pending entity action needs approval."""

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from sqlalchemy.orm import Session

from backoffice.core.config import Settings, get_settings
from backoffice.db.models import Organization, User, UserBranch, WorkflowDefinition
from backoffice.db.tenancy import TenantScope

from .conditions import EvaluationContext, parse_condition

logger = logging.getLogger(__name__)


def resolve_branch(session: Session, user_id: int, default_branch_id: Optional[int] = None) -> Optional[int]:
    """Branch of a user: managed branch first, then any active assignment."""
    assignment = (
        session.query(UserBranch)
        .filter(UserBranch.user_id == user_id, UserBranch.is_active.is_(True))
        .order_by(UserBranch.is_manager.desc(), UserBranch.id)
        .first()
    )
    if assignment is not None:
        return assignment.branch_id
    return default_branch_id


def build_context(
    session: Session,
    entity_data: Mapping[str, Any],
    actor_id: int,
    branch_id: Optional[int],
    org_id: int,
) -> EvaluationContext:
    actor: Dict[str, Any] = {"id": actor_id}
    references: Dict[str, Any] = {}

    org = session.get(Organization, org_id)
    if org is not None and org.settings:
        references.update(org.settings)

    user = session.get(User, actor_id)
    if user is not None and user.org_id == org_id:
        role = user.role
        actor["email"] = user.email
        actor["rol"] = role.code if role else None
        actor["limite_aprobacion"] = user.approval_limit
        references["limite_aprobacion_usuario"] = user.approval_limit
        references["limite_aprobacion_rol"] = role.approval_limit if role else None

    return EvaluationContext(
        entity=dict(entity_data or {}),
        actor_id=actor_id,
        branch_id=branch_id,
        actor=actor,
        references=references,
    )


def select_definition(
    definitions: Iterable[WorkflowDefinition],
    context: EvaluationContext,
) -> Optional[WorkflowDefinition]:
    """First definition whose activation condition holds, in the given order."""
    for definition in definitions:
        matched = parse_condition(definition.activation_condition).evaluate(context)
        logger.debug(f"Workflow {definition.code} (id={definition.id}) condition -> {matched}")
        if matched:
            return definition
    return None


class ConditionEvaluator:
    """Read-only lookup of the workflow that governs an entity action."""

    def __init__(self, scope: TenantScope, settings: Optional[Settings] = None):
        self.scope = scope
        self.settings = settings or get_settings()

    def evaluate_requires_approval(
        self,
        entity_type: str,
        entity_id: int,
        entity_data: Mapping[str, Any],
        actor_id: int,
        org_id: int,
    ) -> Optional[WorkflowDefinition]:
        """
        Find the workflow that applies to an entity action.

        Active definitions for the entity type are checked in ascending id
        order and the first match wins.

        Returns:
            The applicable definition, or None if no approval is required

        Raises:
            ConfigurationError: If a stored condition is malformed
        """
        with self.scope.query(org_id) as session:
            branch_id = resolve_branch(session, actor_id, self.settings.default_branch_id)
            context = build_context(session, entity_data, actor_id, branch_id, org_id)

            definitions = (
                session.query(WorkflowDefinition)
                .filter(
                    WorkflowDefinition.org_id == org_id,
                    WorkflowDefinition.entity_type == entity_type,
                    WorkflowDefinition.is_active.is_(True),
                )
                .order_by(WorkflowDefinition.id)
                .all()
            )
            if not definitions:
                logger.info(f"No workflows configured for {entity_type} in org {org_id}")
                return None

            match = select_definition(definitions, context)

        if match is None:
            logger.info(f"No workflow applies to {entity_type} {entity_id}")
        else:
            logger.info(f"Workflow {match.code} (id={match.id}) applies to {entity_type} {entity_id}")
        return match
