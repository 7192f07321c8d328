"""Notification dispatch for workflow events.

Handles:
- Telling the approvers of a step that a request awaits them
- Telling the requester how their request was decided
- Rendering message text from templates

Dispatch runs only after a decision has committed, in sessions of its own.
Any failure surfaces as NotificationError, which callers log and drop.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional

from jinja2 import Environment, StrictUndefined
from sqlalchemy.orm import Session

from backoffice.core.config import Settings, get_settings
from backoffice.core.workflow.approvers import ApproverResolver
from backoffice.core.workflow.bindings import BindingRegistry, EntitySummary
from backoffice.core.workflow.errors import NotificationError
from backoffice.db.models import Notification, NotificationKind, User, WorkflowInstance, WorkflowStep
from backoffice.db.tenancy import TenantScope

logger = logging.getLogger(__name__)


def format_money(value: Any) -> str:
    try:
        return f"{Decimal(str(value)):,.2f}"
    except (InvalidOperation, ValueError):
        return str(value)


_env = Environment(undefined=StrictUndefined, autoescape=False, trim_blocks=True)
_env.filters["money"] = format_money


# Message templates
MESSAGE_TEMPLATES: Dict[NotificationKind, Dict[str, str]] = {
    NotificationKind.APPROVAL_PENDING: {
        "title": "Nueva solicitud de aprobación",
        "body": "{{ entity }}{% if amount is not none %} por ${{ amount|money }}{% endif %} requiere tu aprobación",
        "level": "warning",
        "icon": "check-circle",
    },
    NotificationKind.APPROVAL_ADVANCED: {
        "title": "Solicitud en revisión",
        "body": (
            "{{ entity }} fue aprobada por {{ actor }} y pasó a {{ step }}"
            "{% if comment %}: \"{{ comment }}\"{% endif %}"
        ),
        "level": "info",
        "icon": "clock",
    },
    NotificationKind.APPROVAL_COMPLETED: {
        "title": "Solicitud aprobada",
        "body": "{{ entity }} fue aprobada por {{ actor }}{% if comment %}: \"{{ comment }}\"{% endif %}",
        "level": "success",
        "icon": "check-circle",
    },
    NotificationKind.APPROVAL_REJECTED: {
        "title": "Solicitud rechazada",
        "body": "{{ entity }} fue rechazada por {{ actor }}{% if comment %}: \"{{ comment }}\"{% endif %}",
        "level": "error",
        "icon": "x-circle",
    },
}


@dataclass(frozen=True)
class NotificationMessage:
    kind: str
    title: str
    message: str
    level: str = "info"
    icon: Optional[str] = None
    action_url: Optional[str] = None
    category: str = "sistema"
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None


def render_message(kind: NotificationKind, **values: Any) -> NotificationMessage:
    """Render the template for ``kind``. Extra keys of NotificationMessage
    (action_url, entity_type, entity_id) are taken from ``values``."""
    template = MESSAGE_TEMPLATES[kind]
    body = _env.from_string(template["body"]).render(
        entity=values.get("entity"),
        amount=values.get("amount"),
        actor=values.get("actor"),
        step=values.get("step"),
        comment=values.get("comment"),
    )
    return NotificationMessage(
        kind=kind.value,
        title=template["title"],
        message=body,
        level=template["level"],
        icon=template["icon"],
        action_url=values.get("action_url"),
        entity_type=values.get("entity_type"),
        entity_id=values.get("entity_id"),
    )


class Notifier(ABC):
    """Notification capability."""

    @abstractmethod
    def notify_one(self, org_id: int, user_id: int, message: NotificationMessage) -> None:
        ...

    @abstractmethod
    def notify_many(self, org_id: int, user_ids: Iterable[int], message: NotificationMessage) -> int:
        ...


class DatabaseNotifier(Notifier):
    """Stores in-app notifications, one row per recipient."""

    def __init__(self, scope: TenantScope):
        self.scope = scope

    def notify_one(self, org_id: int, user_id: int, message: NotificationMessage) -> None:
        self.notify_many(org_id, [user_id], message)

    def notify_many(self, org_id: int, user_ids: Iterable[int], message: NotificationMessage) -> int:
        recipients = list(dict.fromkeys(user_ids))
        if not recipients:
            return 0
        with self.scope.transaction(org_id) as session:
            for user_id in recipients:
                session.add(Notification(
                    org_id=org_id,
                    user_id=user_id,
                    kind=message.kind,
                    category=message.category,
                    title=message.title,
                    message=message.message,
                    level=message.level,
                    icon=message.icon,
                    action_url=message.action_url,
                    entity_type=message.entity_type,
                    entity_id=message.entity_id,
                ))
        return len(recipients)


class NotificationDispatcher:
    """Builds workflow notifications and hands them to a Notifier."""

    def __init__(
        self,
        scope: TenantScope,
        notifier: Notifier,
        resolver: ApproverResolver,
        bindings: BindingRegistry,
        settings: Optional[Settings] = None,
    ):
        self.scope = scope
        self.notifier = notifier
        self.resolver = resolver
        self.bindings = bindings
        self.settings = settings or get_settings()

    def notify_approvers(self, instance_id: int, org_id: int) -> int:
        """
        Notify the approvers of an instance's current step.

        Returns:
            Number of users notified

        Raises:
            NotificationError: If the notification could not be produced
        """
        try:
            with self.scope.query(org_id) as session:
                instance = self._load(session, instance_id, org_id)
                approvers = self.resolver.resolve_for_instance(session, instance)
                if not approvers:
                    logger.warning(
                        f"No approvers to notify for instance {instance_id} "
                        f"(step {instance.current_step_id})"
                    )
                    return 0
                summary = self._describe(session, instance)
                message = render_message(
                    NotificationKind.APPROVAL_PENDING,
                    entity=summary.title,
                    amount=summary.amount,
                    action_url=self._url(f"/aprobaciones/{instance.id}"),
                    entity_type=instance.entity_type,
                    entity_id=instance.entity_id,
                )

            count = self.notifier.notify_many(org_id, [a.user_id for a in approvers], message)
            logger.info(f"Notified {count} approvers of instance {instance_id}")
            return count
        except NotificationError:
            raise
        except Exception as e:
            raise NotificationError(f"Could not notify approvers of instance {instance_id}: {e}") from e

    def notify_requester(
        self,
        instance_id: int,
        outcome: NotificationKind,
        actor_id: int,
        comment: Optional[str],
        org_id: int,
    ) -> bool:
        """
        Tell the requester how a decision went.

        Returns:
            False when the instance has no recorded requester

        Raises:
            NotificationError: If the notification could not be produced
        """
        try:
            with self.scope.query(org_id) as session:
                instance = self._load(session, instance_id, org_id)
                if not instance.initiated_by:
                    return False
                actor = session.get(User, actor_id)
                step = session.get(WorkflowStep, instance.current_step_id) if instance.current_step_id else None
                summary = self._describe(session, instance)
                message = render_message(
                    outcome,
                    entity=summary.title,
                    amount=summary.amount,
                    actor=actor.display_name if actor else "Un administrador",
                    step=step.name if step else "",
                    comment=comment,
                    action_url=self._url(summary.url),
                    entity_type=instance.entity_type,
                    entity_id=instance.entity_id,
                )
                requester_id = instance.initiated_by

            self.notifier.notify_one(org_id, requester_id, message)
            logger.info(f"Notified requester {requester_id} of instance {instance_id}: {outcome.value}")
            return True
        except NotificationError:
            raise
        except Exception as e:
            raise NotificationError(f"Could not notify requester of instance {instance_id}: {e}") from e

    def _load(self, session: Session, instance_id: int, org_id: int) -> WorkflowInstance:
        instance = session.get(WorkflowInstance, instance_id)
        if instance is None or instance.org_id != org_id:
            raise NotificationError(f"Workflow instance {instance_id} not found")
        return instance

    def _describe(self, session: Session, instance: WorkflowInstance) -> EntitySummary:
        if instance.entity_type in self.bindings:
            return self.bindings.get(instance.entity_type).describe(session, instance.entity_id)
        return EntitySummary(title=f"Solicitud #{instance.entity_id}")

    def _url(self, path: Optional[str]) -> Optional[str]:
        if not path:
            return None
        return f"{self.settings.app_base_url.rstrip('/')}{path}"
