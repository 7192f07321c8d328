"""Opens workflow instances."""

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from backoffice.common.jsonutils import to_jsonable
from backoffice.common.timeutils import utcnow
from backoffice.core.config import Settings, get_settings
from backoffice.db.models import WorkflowDefinition, WorkflowHistory, WorkflowInstance, WorkflowStep
from backoffice.db.tenancy import TenantScope, run_after_commit

from .bindings import BindingRegistry
from .definitions import find_start_step, follow_edge, step_config
from .errors import ConfigurationError, NotificationError
from .states import Edge, HistoryAction, InstanceState, StepType

if TYPE_CHECKING:
    from backoffice.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


class WorkflowInstantiator:
    """
    Creates an instance at the first approval step of a workflow.

    The instance row and its ``iniciado`` history row are written in one
    transaction: the caller's session when one is passed, otherwise a tenant
    transaction of its own. Approvers are notified once that transaction
    commits; a notification failure is logged and never undoes the start.
    """

    def __init__(
        self,
        scope: TenantScope,
        dispatcher: "NotificationDispatcher",
        bindings: BindingRegistry,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.scope = scope
        self.dispatcher = dispatcher
        self.bindings = bindings
        self.settings = settings or get_settings()
        self.clock = clock

    def start_workflow(
        self,
        workflow_id: int,
        entity_type: str,
        entity_id: int,
        context_snapshot: Optional[Dict[str, Any]],
        actor_id: int,
        org_id: int,
        session: Optional[Session] = None,
    ) -> WorkflowInstance:
        """
        Start a workflow for an entity.

        Args:
            workflow_id: Definition to run
            entity_type: Type of the governed entity (e.g. 'orden_compra')
            entity_id: ID of the governed entity
            context_snapshot: Entity data captured at start
            actor_id: User starting the workflow
            org_id: Organization ID for scoping
            session: Caller's session to join. The caller commits it.

        Returns:
            The created instance

        Raises:
            ConfigurationError: If the workflow has no start or approval step
            ValueError: If the snapshot holds a NaN or infinite number
        """
        if session is not None:
            instance = self._create(session, workflow_id, entity_type, entity_id,
                                    context_snapshot, actor_id, org_id)
            instance_id = instance.id
            run_after_commit(session, lambda: self._notify_approvers(instance_id, org_id))
            return instance

        with self.scope.transaction(org_id) as own_session:
            instance = self._create(own_session, workflow_id, entity_type, entity_id,
                                    context_snapshot, actor_id, org_id)
        self._notify_approvers(instance.id, org_id)
        return instance

    def _create(
        self,
        session: Session,
        workflow_id: int,
        entity_type: str,
        entity_id: int,
        context_snapshot: Optional[Dict[str, Any]],
        actor_id: int,
        org_id: int,
    ) -> WorkflowInstance:
        logger.info(f"Starting workflow {workflow_id} for {entity_type} {entity_id} (user {actor_id})")

        definition = session.get(WorkflowDefinition, workflow_id)
        if definition is None or definition.org_id != org_id:
            raise ConfigurationError(f"Workflow {workflow_id} not found")
        if definition.entity_type != entity_type:
            raise ConfigurationError(
                f"Workflow {definition.code} governs '{definition.entity_type}', not '{entity_type}'"
            )
        # Fail now rather than when the decision cannot be applied
        self.bindings.get(entity_type)

        start = find_start_step(session, workflow_id)
        if start is None:
            raise ConfigurationError(f"Workflow {definition.code} has no start step")

        first: Optional[WorkflowStep] = follow_edge(session, start.id, Edge.NEXT)
        if first is None or first.step_type != StepType.APPROVAL.value:
            raise ConfigurationError(f"Workflow {definition.code} has no approval step after its start")

        config = step_config(first)
        timeout_hours = config.timeout_hours or self.settings.default_timeout_hours
        now = self.clock()

        instance = WorkflowInstance(
            org_id=org_id,
            workflow_id=workflow_id,
            entity_type=entity_type,
            entity_id=entity_id,
            current_step_id=first.id,
            state=InstanceState.IN_PROGRESS.value,
            context=to_jsonable(dict(context_snapshot or {})),
            initiated_by=actor_id,
            deadline=now + timedelta(hours=timeout_hours),
            started_at=now,
        )
        session.add(instance)
        session.flush()

        session.add(WorkflowHistory(
            instance_id=instance.id,
            step_id=start.id,
            action=HistoryAction.STARTED.value,
            user_id=actor_id,
            data={"mensaje": "Workflow iniciado", "paso_destino": first.id},
        ))
        session.flush()

        logger.info(f"Workflow instance {instance.id} started at step {first.code} (deadline {instance.deadline})")
        return instance

    def _notify_approvers(self, instance_id: int, org_id: int) -> None:
        try:
            self.dispatcher.notify_approvers(instance_id, org_id)
        except NotificationError as e:
            logger.error(f"Approver notification failed for instance {instance_id}: {e}")
