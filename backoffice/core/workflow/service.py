"""Workflow service facade.

Provides the API the HTTP layer calls: the four engine operations plus the
approval inbox, decision history and definition catalog.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import and_, false, or_
from sqlalchemy.orm import Query, Session, sessionmaker

from backoffice.common.logger import setup_logger
from backoffice.common.timeutils import utcnow
from backoffice.core.config import Settings, get_settings
from backoffice.db.models import User, WorkflowDefinition, WorkflowHistory, WorkflowInstance, WorkflowStep
from backoffice.db.session import get_session_factory
from backoffice.db.tenancy import TenantScope
from backoffice.services.notifications import DatabaseNotifier, NotificationDispatcher, Notifier

from .approvers import ApproverResolver
from .bindings import BindingRegistry, PurchaseOrderBinding
from .catalog import DefinitionService
from .evaluator import ConditionEvaluator
from .instantiator import WorkflowInstantiator
from .processor import ApprovalProcessor
from .roster import ApproverRoster
from .states import InstanceState, TERMINAL_STATES

logger = logging.getLogger(__name__)


class WorkflowService:
    """
    High-level service for approval workflows.

    Handles:
    - Deciding whether an entity action requires approval
    - Starting workflow instances
    - Approving and rejecting
    - Querying the approval inbox and the decision history
    - Validating, publishing and reading workflow definitions
    """

    def __init__(
        self,
        scope: TenantScope,
        evaluator: ConditionEvaluator,
        instantiator: WorkflowInstantiator,
        processor: ApprovalProcessor,
        resolver: ApproverResolver,
        bindings: BindingRegistry,
        definitions: Optional[DefinitionService] = None,
    ):
        self.scope = scope
        self.evaluator = evaluator
        self.instantiator = instantiator
        self.processor = processor
        self.resolver = resolver
        self.bindings = bindings
        self.definitions = definitions or DefinitionService(scope)

    def evaluate_requires_approval(
        self,
        entity_type: str,
        entity_id: int,
        entity_data: Mapping[str, Any],
        actor_id: int,
        org_id: int,
    ) -> Optional[WorkflowDefinition]:
        return self.evaluator.evaluate_requires_approval(entity_type, entity_id, entity_data, actor_id, org_id)

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
        return self.instantiator.start_workflow(
            workflow_id, entity_type, entity_id, context_snapshot, actor_id, org_id, session=session
        )

    def approve(self, instance_id: int, actor_id: int, comment: Optional[str], org_id: int) -> WorkflowInstance:
        return self.processor.approve(instance_id, actor_id, comment, org_id)

    def reject(self, instance_id: int, actor_id: int, reason: Optional[str], org_id: int) -> WorkflowInstance:
        return self.processor.reject(instance_id, actor_id, reason, org_id)

    def validate_structure(self, workflow_id: int, org_id: int) -> Dict[str, Any]:
        return self.definitions.validate_structure(workflow_id, org_id)

    def set_active(self, workflow_id: int, active: bool, org_id: int) -> Dict[str, Any]:
        return self.definitions.set_active(workflow_id, active, org_id)

    def list_definitions(
        self,
        org_id: int,
        *,
        entity_type: Optional[str] = None,
        active: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        return self.definitions.list_definitions(org_id, entity_type=entity_type, active=active)

    def get_definition(self, workflow_id: int, org_id: int) -> Optional[Dict[str, Any]]:
        return self.definitions.get_definition(workflow_id, org_id)

    def list_pending(
        self,
        user_id: int,
        org_id: int,
        *,
        entity_type: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Instances waiting on a step the user can approve, oldest first."""
        with self.scope.query(org_id) as session:
            pending = self._pending_query(session, user_id, org_id, entity_type)
            total = pending.count()
            page = pending.offset(offset).limit(limit).all()
            now = utcnow()
            items = []
            for instance in page:
                item = self._instance_to_dict(session, instance)
                item["hours_pending"] = round((now - instance.started_at).total_seconds() / 3600, 2)
                items.append(item)

        return {
            "instances": items,
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    def count_pending(self, user_id: int, org_id: int) -> int:
        with self.scope.query(org_id) as session:
            return self._pending_query(session, user_id, org_id).count()

    def get_instance(self, instance_id: int, org_id: int) -> Optional[Dict[str, Any]]:
        """Instance details with its history, newest entry first."""
        with self.scope.query(org_id) as session:
            instance = (
                session.query(WorkflowInstance)
                .filter(WorkflowInstance.id == instance_id, WorkflowInstance.org_id == org_id)
                .first()
            )
            if instance is None:
                return None

            result = self._instance_to_dict(session, instance)
            rows = (
                session.query(WorkflowHistory)
                .filter(WorkflowHistory.instance_id == instance.id)
                .order_by(WorkflowHistory.created_at.desc(), WorkflowHistory.id.desc())
                .all()
            )
            result["history"] = [self._history_to_dict(row) for row in rows]
            return result

    def list_history(
        self,
        org_id: int,
        *,
        entity_type: Optional[str] = None,
        state: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Decided instances, most recently completed first."""
        with self.scope.query(org_id) as session:
            query = session.query(WorkflowInstance).filter(
                WorkflowInstance.org_id == org_id,
                WorkflowInstance.state.in_([s.value for s in TERMINAL_STATES]),
            )
            if entity_type:
                query = query.filter(WorkflowInstance.entity_type == entity_type)
            if state:
                query = query.filter(WorkflowInstance.state == state)
            if date_from:
                query = query.filter(WorkflowInstance.completed_at >= date_from)
            if date_to:
                query = query.filter(WorkflowInstance.completed_at <= date_to)

            total = query.count()
            rows = (
                query.order_by(WorkflowInstance.completed_at.desc(), WorkflowInstance.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            items = []
            for instance in rows:
                item = self._instance_to_dict(session, instance)
                item["decided_by"] = self._last_decider(session, instance.id)
                items.append(item)

        return {
            "instances": items,
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    def _pending_query(
        self,
        session: Session,
        user_id: int,
        org_id: int,
        entity_type: Optional[str] = None,
    ) -> Query:
        """
        In-progress instances waiting on the user, oldest first.

        Approvers are resolved once per current step, or once per step and
        requester for supervisor steps; the result is turned back into a
        filter so counting and paging stay in SQL.
        """
        query = session.query(WorkflowInstance).filter(
            WorkflowInstance.org_id == org_id,
            WorkflowInstance.state == InstanceState.IN_PROGRESS.value,
        )
        if entity_type:
            query = query.filter(WorkflowInstance.entity_type == entity_type)

        waiting = (
            query.with_entities(WorkflowInstance.current_step_id, WorkflowInstance.initiated_by)
            .distinct()
            .all()
        )
        steps: Dict[int, Optional[WorkflowStep]] = {}
        decided: Dict[Tuple[int, Optional[int]], bool] = {}
        clauses = []
        for step_id, requester_id in waiting:
            if step_id not in steps:
                steps[step_id] = session.get(WorkflowStep, step_id) if step_id is not None else None
            step = steps[step_id]
            if step is None:
                continue

            per_requester = self.resolver.depends_on_requester(step)
            key = (step_id, requester_id if per_requester else None)
            if key in decided:
                continue
            approvers = self.resolver.resolve(session, step, org_id, requester_id)
            decided[key] = any(a.user_id == user_id for a in approvers)
            if not decided[key]:
                continue

            if per_requester:
                clauses.append(and_(
                    WorkflowInstance.current_step_id == step_id,
                    WorkflowInstance.initiated_by == requester_id,
                ))
            else:
                clauses.append(WorkflowInstance.current_step_id == step_id)

        query = query.filter(or_(*clauses) if clauses else false())
        return query.order_by(WorkflowInstance.started_at.asc(), WorkflowInstance.id.asc())

    def _last_decider(self, session: Session, instance_id: int) -> Optional[str]:
        row = (
            session.query(User)
            .join(WorkflowHistory, WorkflowHistory.user_id == User.id)
            .filter(
                WorkflowHistory.instance_id == instance_id,
                WorkflowHistory.action.in_(["aprobado", "rechazado"]),
            )
            .order_by(WorkflowHistory.created_at.desc(), WorkflowHistory.id.desc())
            .first()
        )
        return row.display_name if row else None

    def _instance_to_dict(self, session: Session, instance: WorkflowInstance) -> Dict[str, Any]:
        """Convert a WorkflowInstance model to dictionary."""
        definition = session.get(WorkflowDefinition, instance.workflow_id)
        step = session.get(WorkflowStep, instance.current_step_id) if instance.current_step_id else None
        requester = session.get(User, instance.initiated_by) if instance.initiated_by else None
        summary = None
        if instance.entity_type in self.bindings:
            entity = self.bindings.get(instance.entity_type).describe(session, instance.entity_id)
            summary = {
                "title": entity.title,
                "amount": str(entity.amount) if entity.amount is not None else None,
                "url": entity.url,
            }

        return {
            "id": instance.id,
            "workflow_id": instance.workflow_id,
            "workflow_name": definition.name if definition else None,
            "entity_type": instance.entity_type,
            "entity_id": instance.entity_id,
            "entity_summary": summary,
            "state": instance.state,
            "current_step_id": instance.current_step_id,
            "current_step_name": step.name if step else None,
            "context": instance.context,
            "result": instance.result,
            "initiated_by": instance.initiated_by,
            "requester_name": requester.display_name if requester else None,
            "deadline": instance.deadline.isoformat() if instance.deadline else None,
            "started_at": instance.started_at.isoformat() if instance.started_at else None,
            "completed_at": instance.completed_at.isoformat() if instance.completed_at else None,
        }

    def _history_to_dict(self, row: WorkflowHistory) -> Dict[str, Any]:
        return {
            "id": row.id,
            "step_id": row.step_id,
            "step_name": row.step.name if row.step else None,
            "action": row.action,
            "user_id": row.user_id,
            "user_name": row.user.display_name if row.user else None,
            "comment": row.comment,
            "data": row.data,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }


def create_workflow_service(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    bindings: Optional[BindingRegistry] = None,
    roster: Optional[ApproverRoster] = None,
    notifier: Optional[Notifier] = None,
) -> WorkflowService:
    """Wire the engine with its default collaborators."""
    settings = settings or get_settings()
    setup_logger("backoffice", settings)

    scope = TenantScope(session_factory or get_session_factory())
    bindings = bindings or BindingRegistry([PurchaseOrderBinding(settings.draft_entity_state)])
    resolver = ApproverResolver(roster)
    dispatcher = NotificationDispatcher(
        scope,
        notifier or DatabaseNotifier(scope),
        resolver,
        bindings,
        settings,
    )

    return WorkflowService(
        scope=scope,
        evaluator=ConditionEvaluator(scope, settings),
        instantiator=WorkflowInstantiator(scope, dispatcher, bindings, settings),
        processor=ApprovalProcessor(scope, resolver, bindings, dispatcher),
        resolver=resolver,
        bindings=bindings,
        definitions=DefinitionService(scope),
    )
