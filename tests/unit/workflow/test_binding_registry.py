"""Tests for the entity action binding registry."""

import pytest

from backoffice.core.workflow.bindings import (
    BindingRegistry,
    EntityActionBinding,
    EntitySummary,
    PurchaseOrderBinding,
)
from backoffice.core.workflow.errors import ConfigurationError


class RequisitionBinding(EntityActionBinding):
    entity_type = "requisicion"

    def on_approved(self, session, instance, end_config):
        pass

    def on_rejected(self, session, instance):
        pass


class TestBindingRegistry:

    def test_lookup_by_entity_type(self):
        po = PurchaseOrderBinding()
        registry = BindingRegistry([po, RequisitionBinding()])

        assert registry.get("orden_compra") is po
        assert "requisicion" in registry
        assert "factura" not in registry
        assert registry.entity_types == ["orden_compra", "requisicion"]

    def test_unknown_entity_type(self):
        with pytest.raises(ConfigurationError, match="factura"):
            BindingRegistry().get("factura")

    def test_duplicate_registration(self):
        registry = BindingRegistry([PurchaseOrderBinding()])
        with pytest.raises(ConfigurationError):
            registry.register(PurchaseOrderBinding("cancelada"))

    def test_default_description(self):
        summary = RequisitionBinding().describe(None, 15)
        assert summary == EntitySummary(title="Solicitud #15")

    def test_draft_state_configurable(self):
        assert PurchaseOrderBinding().draft_state == "borrador"
        assert PurchaseOrderBinding("en_edicion").draft_state == "en_edicion"
