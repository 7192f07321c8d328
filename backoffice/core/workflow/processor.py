"""Approve/reject processing for workflow instances.

Each decision is one tenant transaction:

    1. lock the instance row (SELECT ... FOR UPDATE)
    2. require en_progreso, else StateConflictError
    3. check the actor may act on the current step, else PermissionDeniedError
    4. move the instance, write one history row, run the entity binding
    5. commit

The instance's version column backs up the row lock: where the database
cannot lock rows, the second of two concurrent writers fails at flush and
is reported as StateConflictError. Notifications go out after the commit.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from backoffice.common.timeutils import utcnow
from backoffice.db.models import NotificationKind, WorkflowHistory, WorkflowInstance, WorkflowStep
from backoffice.db.tenancy import TenantScope

from .approvers import ApproverResolver
from .bindings import BindingRegistry
from .definitions import EndStepConfig, follow_edge, step_config
from .errors import (
    ConfigurationError,
    InstanceNotFoundError,
    NotificationError,
    PermissionDeniedError,
    StateConflictError,
)
from .machine import InstanceStateMachine
from .states import Edge, InstanceState, InstanceTransition, StepType

if TYPE_CHECKING:
    from backoffice.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

PermissionCheck = Callable[[Session, WorkflowInstance, int], bool]


class ApprovalProcessor:
    """
    Processes approval decisions.

    Handles:
    - Multi-level chains: approving an intermediate step advances the instance
    - Terminal approval and rejection through the entity's binding
    - Best-effort notification of next approvers and of the requester
    """

    def __init__(
        self,
        scope: TenantScope,
        resolver: ApproverResolver,
        bindings: BindingRegistry,
        dispatcher: "NotificationDispatcher",
        permission_check: Optional[PermissionCheck] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.scope = scope
        self.resolver = resolver
        self.bindings = bindings
        self.dispatcher = dispatcher
        self.permission_check = permission_check or resolver.can_approve
        self.clock = clock

    def approve(
        self,
        instance_id: int,
        actor_id: int,
        comment: Optional[str],
        org_id: int,
    ) -> WorkflowInstance:
        """
        Approve the instance's current step.

        Returns:
            The updated instance

        Raises:
            InstanceNotFoundError: If the instance does not exist in the organization
            StateConflictError: If the instance was already approved or rejected
            PermissionDeniedError: If the actor cannot approve the current step
            ConfigurationError: If the step graph cannot be followed
        """
        logger.info(f"Processing approval of instance {instance_id} by user {actor_id}")
        try:
            with self.scope.transaction(org_id) as session:
                instance, machine = self._lock(session, instance_id, actor_id, org_id)
                acted_step_id = instance.current_step_id

                next_step = follow_edge(session, acted_step_id, Edge.APPROVE)
                end_config, transition = self._next_move(next_step)

                record = machine.transition(transition, user_id=actor_id, comment=comment)
                now = self.clock()
                if next_step is not None:
                    instance.current_step_id = next_step.id
                instance.state = record["to_state"]
                instance.result = {"decision": "aprobado", "comentario": comment, "aprobado_por": actor_id}
                instance.updated_at = now
                if machine.is_terminal:
                    instance.completed_at = now

                session.add(WorkflowHistory(
                    instance_id=instance.id,
                    step_id=acted_step_id,
                    action=record["history_action"],
                    user_id=actor_id,
                    comment=comment,
                    data={
                        "estado_anterior": record["from_state"],
                        "estado_nuevo": record["to_state"],
                        "paso_siguiente": next_step.id if next_step is not None else None,
                    },
                ))

                if machine.is_terminal:
                    self.bindings.get(instance.entity_type).on_approved(session, instance, end_config)
                session.flush()
        except StaleDataError as e:
            raise StateConflictError(
                f"Workflow instance {instance_id} was processed concurrently",
                instance_id=instance_id,
            ) from e

        if machine.is_terminal:
            logger.info(f"Workflow instance {instance_id} approved")
            self._notify_requester(instance, NotificationKind.APPROVAL_COMPLETED, actor_id, comment)
        else:
            logger.info(f"Workflow instance {instance_id} advanced to step {instance.current_step_id}")
            self._notify_approvers(instance)
            self._notify_requester(instance, NotificationKind.APPROVAL_ADVANCED, actor_id, comment)
        return instance

    def reject(
        self,
        instance_id: int,
        actor_id: int,
        reason: Optional[str],
        org_id: int,
    ) -> WorkflowInstance:
        """
        Reject the instance at its current step.

        The entity is reverted by its binding in the same transaction.

        Raises:
            InstanceNotFoundError: If the instance does not exist in the organization
            StateConflictError: If the instance was already approved or rejected
            PermissionDeniedError: If the actor cannot act on the current step
        """
        logger.info(f"Processing rejection of instance {instance_id} by user {actor_id}")
        try:
            with self.scope.transaction(org_id) as session:
                instance, machine = self._lock(session, instance_id, actor_id, org_id)

                record = machine.transition(InstanceTransition.REJECT, user_id=actor_id, comment=reason)
                now = self.clock()
                instance.state = record["to_state"]
                instance.result = {"decision": "rechazado", "motivo": reason, "rechazado_por": actor_id}
                instance.updated_at = now
                instance.completed_at = now

                session.add(WorkflowHistory(
                    instance_id=instance.id,
                    step_id=instance.current_step_id,
                    action=record["history_action"],
                    user_id=actor_id,
                    comment=reason,
                    data={"estado_anterior": record["from_state"], "estado_nuevo": record["to_state"]},
                ))

                self.bindings.get(instance.entity_type).on_rejected(session, instance)
                session.flush()
        except StaleDataError as e:
            raise StateConflictError(
                f"Workflow instance {instance_id} was processed concurrently",
                instance_id=instance_id,
            ) from e

        logger.info(f"Workflow instance {instance_id} rejected")
        self._notify_requester(instance, NotificationKind.APPROVAL_REJECTED, actor_id, reason)
        return instance

    def _lock(
        self,
        session: Session,
        instance_id: int,
        actor_id: int,
        org_id: int,
    ) -> Tuple[WorkflowInstance, InstanceStateMachine]:
        instance = (
            session.query(WorkflowInstance)
            .filter(WorkflowInstance.id == instance_id, WorkflowInstance.org_id == org_id)
            .with_for_update()
            .first()
        )
        if instance is None:
            raise InstanceNotFoundError(instance_id)

        machine = InstanceStateMachine(instance.id, InstanceState(instance.state))
        machine.assert_active()

        if not self.permission_check(session, instance, actor_id):
            raise PermissionDeniedError(actor_id, instance_id)
        return instance, machine

    def _next_move(
        self,
        next_step: Optional[WorkflowStep],
    ) -> Tuple[Optional[EndStepConfig], InstanceTransition]:
        if next_step is None:
            return None, InstanceTransition.APPROVE
        if next_step.step_type == StepType.END.value:
            return step_config(next_step), InstanceTransition.APPROVE
        if next_step.step_type == StepType.APPROVAL.value:
            return None, InstanceTransition.ADVANCE
        raise ConfigurationError(
            f"Step {next_step.code} of type '{next_step.step_type}' cannot follow an approval"
        )

    def _notify_approvers(self, instance: WorkflowInstance) -> None:
        try:
            self.dispatcher.notify_approvers(instance.id, instance.org_id)
        except NotificationError as e:
            logger.error(f"Approver notification failed for instance {instance.id}: {e}")

    def _notify_requester(
        self,
        instance: WorkflowInstance,
        outcome: NotificationKind,
        actor_id: int,
        comment: Optional[str],
    ) -> None:
        try:
            self.dispatcher.notify_requester(instance.id, outcome, actor_id, comment, instance.org_id)
        except NotificationError as e:
            logger.error(f"Requester notification failed for instance {instance.id}: {e}")
