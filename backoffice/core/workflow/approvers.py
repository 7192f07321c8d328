"""Approver resolution for approval steps."""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from backoffice.db.models import WorkflowInstance, WorkflowStep

from .definitions import ApprovalStepConfig, ApproverType, step_config
from .errors import ConfigurationError
from .roster import Approver, ApproverRoster, SqlApproverRoster

logger = logging.getLogger(__name__)


class ApproverResolver:
    """
    Resolves who can act on an approval step.

    The requester id is only handed to the roster for supervisor steps.
    A supervisor step that finds nobody falls back to the configured role;
    without a fallback the step has no approvers and the instance stalls
    until an administrator intervenes.
    """

    def __init__(self, roster: Optional[ApproverRoster] = None):
        self.roster = roster or SqlApproverRoster()

    def resolve(
        self,
        session: Session,
        step: WorkflowStep,
        org_id: int,
        requester_id: Optional[int] = None,
    ) -> List[Approver]:
        """
        Args:
            session: Tenant session
            step: An ``aprobacion`` step
            org_id: Organization ID for scoping
            requester_id: User who started the workflow

        Raises:
            ConfigurationError: If the step is not an approval step
        """
        config = step_config(step)
        if not isinstance(config, ApprovalStepConfig):
            raise ConfigurationError(f"Step {step.id} ({step.step_type}) is not an approval step")

        is_supervisor = config.approver_type == ApproverType.SUPERVISOR
        approvers = self.roster.approvers_for_step(
            session, step, org_id, requester_id if is_supervisor else None
        )

        if not approvers and is_supervisor:
            if not config.fallback_role:
                logger.error(
                    f"No supervisor for requester {requester_id} on step {step.id} "
                    f"and no fallback role configured"
                )
                return []
            logger.info(
                f"No supervisor for requester {requester_id} on step {step.id}, "
                f"falling back to role '{config.fallback_role}'"
            )
            approvers = self.roster.role_members(session, org_id, config.fallback_role, step.workflow_id)

        if not approvers:
            logger.warning(f"No approvers resolved for step {step.id} ({step.code})")
        return approvers

    def depends_on_requester(self, step: WorkflowStep) -> bool:
        """Whether the approvers of ``step`` vary with who started the instance."""
        config = step_config(step)
        return isinstance(config, ApprovalStepConfig) and config.approver_type == ApproverType.SUPERVISOR

    def resolve_for_instance(self, session: Session, instance: WorkflowInstance) -> List[Approver]:
        """Approvers of the instance's current step."""
        if instance.current_step_id is None:
            return []
        step = session.get(WorkflowStep, instance.current_step_id)
        if step is None:
            return []
        return self.resolve(session, step, instance.org_id, instance.initiated_by)

    def can_approve(self, session: Session, instance: WorkflowInstance, user_id: int) -> bool:
        return any(a.user_id == user_id for a in self.resolve_for_instance(session, instance))
