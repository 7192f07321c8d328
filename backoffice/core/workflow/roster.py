"""Approver roster: who may act on an approval step.

``SqlApproverRoster`` reads users, roles and delegations from the tenant's
session. Each approver strategy is a method registered by approver type.
Active delegations add the delegate next to the original approver.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from backoffice.core.rbac import has_any_permission
from backoffice.db.models import Role, User, WorkflowDelegation, WorkflowStep

from .definitions import ApprovalStepConfig, ApproverType, step_config
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Approver:
    user_id: int
    name: Optional[str]
    email: str
    is_delegate: bool = False


class ApproverRoster(ABC):
    """Capability that turns an approval step into candidate approvers."""

    @abstractmethod
    def approvers_for_step(
        self,
        session: Session,
        step: WorkflowStep,
        org_id: int,
        requester_id: Optional[int] = None,
    ) -> List[Approver]:
        ...

    @abstractmethod
    def role_members(
        self,
        session: Session,
        org_id: int,
        role_code: str,
        workflow_id: Optional[int] = None,
    ) -> List[Approver]:
        ...


StrategyFn = Callable[[Session, int, ApprovalStepConfig, Optional[int]], List[User]]


class SqlApproverRoster(ApproverRoster):

    def __init__(self, clock: Callable[[], date] = date.today):
        self.clock = clock
        self._strategies: Dict[ApproverType, StrategyFn] = {
            ApproverType.ROLE: self._by_role,
            ApproverType.USER: self._by_user,
            ApproverType.PERMISSION: self._by_permission,
            ApproverType.SUPERVISOR: self._by_supervisor,
        }

    def approvers_for_step(
        self,
        session: Session,
        step: WorkflowStep,
        org_id: int,
        requester_id: Optional[int] = None,
    ) -> List[Approver]:
        config = step_config(step)
        if not isinstance(config, ApprovalStepConfig):
            raise ConfigurationError(f"Step {step.id} is not an approval step")
        users = self._strategies[config.approver_type](session, org_id, config, requester_id)
        return self._with_delegates(session, org_id, step.workflow_id, users)

    def role_members(
        self,
        session: Session,
        org_id: int,
        role_code: str,
        workflow_id: Optional[int] = None,
    ) -> List[Approver]:
        users = self._users_with_roles(session, org_id, [role_code])
        return self._with_delegates(session, org_id, workflow_id, users)

    def _active_users(self, session: Session, org_id: int):
        return session.query(User).filter(User.org_id == org_id, User.is_active.is_(True))

    def _users_with_roles(self, session: Session, org_id: int, codes: Iterable[str]) -> List[User]:
        return (
            self._active_users(session, org_id)
            .join(Role, User.role_id == Role.id)
            .filter(Role.org_id == org_id, Role.code.in_([str(c) for c in codes]))
            .order_by(User.id)
            .all()
        )

    def _by_role(self, session, org_id, config, requester_id) -> List[User]:
        return self._users_with_roles(session, org_id, config.approvers)

    def _by_user(self, session, org_id, config, requester_id) -> List[User]:
        try:
            ids = [int(v) for v in config.approvers]
        except (TypeError, ValueError):
            raise ConfigurationError(f"Approver user ids must be integers: {config.approvers!r}")
        return self._active_users(session, org_id).filter(User.id.in_(ids)).order_by(User.id).all()

    def _by_permission(self, session, org_id, config, requester_id) -> List[User]:
        wanted = [str(p) for p in config.approvers]
        candidates = (
            self._active_users(session, org_id)
            .join(Role, User.role_id == Role.id)
            .order_by(User.id)
            .all()
        )
        return [
            u for u in candidates
            if has_any_permission(u, wanted)
        ]

    def _by_supervisor(self, session, org_id, config, requester_id) -> List[User]:
        if requester_id is None:
            return []
        requester = session.get(User, requester_id)
        if requester is None or requester.org_id != org_id:
            return []

        chain: List[User] = []
        seen = {requester.id}
        current = requester
        while current.supervisor_id and current.supervisor_id not in seen:
            supervisor = session.get(User, current.supervisor_id)
            if supervisor is None or supervisor.org_id != org_id:
                break
            seen.add(supervisor.id)
            chain.append(supervisor)
            current = supervisor
            if not config.any_supervisor_level and len(chain) >= config.supervisor_level:
                break

        if config.any_supervisor_level:
            candidates = chain
        else:
            candidates = chain[config.supervisor_level - 1:config.supervisor_level]
        return [u for u in candidates if u.is_active]

    def _with_delegates(
        self,
        session: Session,
        org_id: int,
        workflow_id: Optional[int],
        users: List[User],
    ) -> List[Approver]:
        approvers = [Approver(u.id, u.name, u.email) for u in users]
        if not approvers:
            return approvers

        seen = {a.user_id for a in approvers}
        today = self.clock()
        scope = WorkflowDelegation.workflow_id.is_(None)
        if workflow_id is not None:
            scope = or_(scope, WorkflowDelegation.workflow_id == workflow_id)

        rows = (
            session.query(WorkflowDelegation, User)
            .join(User, User.id == WorkflowDelegation.delegate_user_id)
            .filter(
                WorkflowDelegation.org_id == org_id,
                WorkflowDelegation.original_user_id.in_(list(seen)),
                WorkflowDelegation.is_active.is_(True),
                WorkflowDelegation.starts_on <= today,
                WorkflowDelegation.ends_on >= today,
                User.is_active.is_(True),
                scope,
            )
            .order_by(WorkflowDelegation.id)
            .all()
        )
        for delegation, delegate in rows:
            if delegate.id in seen:
                continue
            seen.add(delegate.id)
            logger.debug(
                f"User {delegate.id} acts for user {delegation.original_user_id} "
                f"(delegation {delegation.id})"
            )
            approvers.append(Approver(delegate.id, delegate.name, delegate.email, is_delegate=True))
        return approvers
