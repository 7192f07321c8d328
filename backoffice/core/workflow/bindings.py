"""Entity action bindings.

A binding applies a workflow outcome to the governed entity. Hooks run
inside the decision's transaction, so a failing hook rolls the decision
back. Bindings are registered per entity type when the engine is built;
an instance whose entity type has no binding is a configuration error.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from backoffice.common.timeutils import utcnow
from backoffice.db.models import PurchaseOrder, WorkflowInstance

from .definitions import EndStepConfig
from .errors import ConfigurationError, EntityNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntitySummary:
    """What notifications say about an entity."""
    title: str
    amount: Optional[Decimal] = None
    url: Optional[str] = None


class EntityActionBinding(ABC):
    entity_type: str

    @abstractmethod
    def on_approved(
        self,
        session: Session,
        instance: WorkflowInstance,
        end_config: Optional[EndStepConfig],
    ) -> None:
        """Apply the approved outcome. ``end_config`` is None when the chain
        ends without a ``fin`` step."""

    @abstractmethod
    def on_rejected(self, session: Session, instance: WorkflowInstance) -> None:
        """Revert the entity after a rejection."""

    def describe(self, session: Session, entity_id: int) -> EntitySummary:
        return EntitySummary(title=f"Solicitud #{entity_id}")


class BindingRegistry:

    def __init__(self, bindings: Optional[Iterable[EntityActionBinding]] = None):
        self._bindings: Dict[str, EntityActionBinding] = {}
        for binding in bindings or []:
            self.register(binding)

    def register(self, binding: EntityActionBinding) -> None:
        if binding.entity_type in self._bindings:
            raise ConfigurationError(f"Binding for '{binding.entity_type}' already registered")
        self._bindings[binding.entity_type] = binding

    def get(self, entity_type: str) -> EntityActionBinding:
        try:
            return self._bindings[entity_type]
        except KeyError:
            raise ConfigurationError(f"No action binding registered for entity type '{entity_type}'")

    def __contains__(self, entity_type: str) -> bool:
        return entity_type in self._bindings

    @property
    def entity_types(self) -> list[str]:
        return sorted(self._bindings)


class PurchaseOrderBinding(EntityActionBinding):
    """Approval releases the order; rejection sends it back to draft."""

    entity_type = "orden_compra"

    def __init__(self, draft_state: str = "borrador"):
        self.draft_state = draft_state

    def _load(self, session: Session, instance: WorkflowInstance) -> PurchaseOrder:
        order = (
            session.query(PurchaseOrder)
            .filter(
                PurchaseOrder.id == instance.entity_id,
                PurchaseOrder.org_id == instance.org_id,
            )
            .with_for_update()
            .first()
        )
        if order is None:
            raise EntityNotFoundError(self.entity_type, instance.entity_id)
        return order

    def on_approved(self, session, instance, end_config) -> None:
        if end_config is None or not end_config.changes_state:
            logger.info(f"Purchase order {instance.entity_id} approved without a state change")
            return
        order = self._load(session, instance)
        previous = order.state
        order.state = end_config.target_state
        order.sent_at = utcnow()
        logger.info(f"Purchase order {order.folio}: {previous} -> {order.state}")

    def on_rejected(self, session, instance) -> None:
        order = self._load(session, instance)
        previous = order.state
        order.state = self.draft_state
        logger.info(f"Purchase order {order.folio}: {previous} -> {order.state} (rejected)")

    def describe(self, session: Session, entity_id: int) -> EntitySummary:
        order = session.get(PurchaseOrder, entity_id)
        if order is None:
            return super().describe(session, entity_id)
        return EntitySummary(
            title=f"Orden de Compra {order.folio}",
            amount=order.total,
            url=f"/inventario/ordenes-compra/{order.id}",
        )
