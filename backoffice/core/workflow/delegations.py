"""Approval delegations.

A user hands their approval duties to a colleague for a period of time,
optionally for a single workflow. The roster honours active delegations
when resolving approvers.
"""

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from backoffice.common.timeutils import utcnow
from backoffice.db.models import User, WorkflowDefinition, WorkflowDelegation
from backoffice.db.tenancy import TenantScope

from .errors import StateConflictError

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("ends_on", "is_active", "reason")


class DelegationService:
    """Create, list, update and delete a user's delegations."""

    def __init__(self, scope: TenantScope, clock: Callable[[], date] = date.today):
        self.scope = scope
        self.clock = clock

    def create(
        self,
        user_id: int,
        delegate_user_id: int,
        starts_on: date,
        ends_on: date,
        org_id: int,
        *,
        workflow_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Delegate ``user_id``'s approvals to ``delegate_user_id``.

        Raises:
            ValueError: If the delegate is unknown, inactive or the user
                themself, or the period is empty
            StateConflictError: If an active delegation overlaps the period
        """
        if delegate_user_id == user_id:
            raise ValueError("A user cannot delegate to themself")
        if ends_on < starts_on:
            raise ValueError("Delegation ends before it starts")

        with self.scope.transaction(org_id) as session:
            delegate = (
                session.query(User)
                .filter(User.id == delegate_user_id, User.org_id == org_id, User.is_active.is_(True))
                .first()
            )
            if delegate is None:
                raise ValueError(f"Delegate user {delegate_user_id} not found")
            if workflow_id is not None:
                workflow = session.get(WorkflowDefinition, workflow_id)
                if workflow is None or workflow.org_id != org_id:
                    raise ValueError(f"Workflow {workflow_id} not found")

            scope = WorkflowDelegation.workflow_id.is_(None)
            if workflow_id is not None:
                scope = or_(scope, WorkflowDelegation.workflow_id == workflow_id)
            overlapping = (
                session.query(WorkflowDelegation.id)
                .filter(
                    WorkflowDelegation.org_id == org_id,
                    WorkflowDelegation.original_user_id == user_id,
                    WorkflowDelegation.is_active.is_(True),
                    WorkflowDelegation.ends_on >= starts_on,
                    WorkflowDelegation.starts_on <= ends_on,
                    scope,
                )
                .first()
            )
            if overlapping is not None:
                raise StateConflictError("An active delegation already covers that period")

            delegation = WorkflowDelegation(
                org_id=org_id,
                original_user_id=user_id,
                delegate_user_id=delegate_user_id,
                workflow_id=workflow_id,
                starts_on=starts_on,
                ends_on=ends_on,
                reason=reason,
                is_active=True,
            )
            session.add(delegation)
            session.flush()

            logger.info(f"Delegation {delegation.id} created: user {user_id} -> user {delegate_user_id}")
            return self._to_dict(session, delegation)

    def list(
        self,
        user_id: int,
        org_id: int,
        *,
        as_delegate: bool = False,
        active: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        """Delegations the user granted, or received with ``as_delegate``."""
        with self.scope.query(org_id) as session:
            column = WorkflowDelegation.delegate_user_id if as_delegate else WorkflowDelegation.original_user_id
            query = session.query(WorkflowDelegation).filter(
                WorkflowDelegation.org_id == org_id,
                column == user_id,
            )
            if active is not None:
                query = query.filter(WorkflowDelegation.is_active.is_(active))
            rows = query.order_by(WorkflowDelegation.starts_on.desc(), WorkflowDelegation.id.desc()).all()
            return [self._to_dict(session, d) for d in rows]

    def update(self, delegation_id: int, user_id: int, org_id: int, **changes: Any) -> Dict[str, Any]:
        """
        Change ``ends_on``, ``is_active`` or ``reason`` of the user's delegation.

        Raises:
            ValueError: If the delegation is not the user's or nothing changes
        """
        fields = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        if not fields:
            raise ValueError("No fields to update")

        with self.scope.transaction(org_id) as session:
            delegation = self._owned(session, delegation_id, user_id, org_id)
            if "ends_on" in fields and fields["ends_on"] < delegation.starts_on:
                raise ValueError("Delegation ends before it starts")
            for name, value in fields.items():
                setattr(delegation, name, value)
            delegation.updated_at = utcnow()
            session.flush()
            return self._to_dict(session, delegation)

    def delete(self, delegation_id: int, user_id: int, org_id: int) -> Dict[str, Any]:
        with self.scope.transaction(org_id) as session:
            delegation = self._owned(session, delegation_id, user_id, org_id)
            data = self._to_dict(session, delegation)
            session.delete(delegation)
            logger.info(f"Delegation {delegation_id} deleted by user {user_id}")
            return data

    def _owned(self, session: Session, delegation_id: int, user_id: int, org_id: int) -> WorkflowDelegation:
        delegation = (
            session.query(WorkflowDelegation)
            .filter(
                WorkflowDelegation.id == delegation_id,
                WorkflowDelegation.org_id == org_id,
                WorkflowDelegation.original_user_id == user_id,
            )
            .first()
        )
        if delegation is None:
            raise ValueError(f"Delegation {delegation_id} not found")
        return delegation

    def _period_status(self, delegation: WorkflowDelegation) -> str:
        today = self.clock()
        if delegation.ends_on < today:
            return "expirada"
        if delegation.starts_on > today:
            return "futura"
        return "activa"

    def _to_dict(self, session: Session, delegation: WorkflowDelegation) -> Dict[str, Any]:
        original = session.get(User, delegation.original_user_id)
        delegate = session.get(User, delegation.delegate_user_id)
        workflow = session.get(WorkflowDefinition, delegation.workflow_id) if delegation.workflow_id else None
        return {
            "id": delegation.id,
            "original_user_id": delegation.original_user_id,
            "original_user_name": original.display_name if original else None,
            "delegate_user_id": delegation.delegate_user_id,
            "delegate_user_name": delegate.display_name if delegate else None,
            "delegate_email": delegate.email if delegate else None,
            "workflow_id": delegation.workflow_id,
            "workflow_name": workflow.name if workflow else None,
            "starts_on": delegation.starts_on.isoformat(),
            "ends_on": delegation.ends_on.isoformat(),
            "reason": delegation.reason,
            "is_active": delegation.is_active,
            "period_status": self._period_status(delegation),
        }
