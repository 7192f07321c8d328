"""Tests for the approval inbox and history read models."""

import pytest

from backoffice.core.workflow.roster import SqlApproverRoster
from backoffice.core.workflow.service import create_workflow_service
from tests.factories import create_purchase_order, create_workflow, role_level, supervisor_level


pytestmark = [pytest.mark.db, pytest.mark.integration]


@pytest.fixture
def chain(db_session, purchasing):
    workflow = create_workflow(db_session, org=purchasing.org, name="OC monto alto",
                               levels=[role_level("gerente"), role_level("director")])
    orders = [
        create_purchase_order(db_session, org=purchasing.org, created_by=purchasing.requester, total=total)
        for total in ("6000", "9000", "12000")
    ]
    db_session.commit()
    return workflow, orders


def _start_all(service, purchasing, workflow, orders):
    return [
        service.start_workflow(workflow.id, "orden_compra", o.id, {"total": o.total},
                               purchasing.requester.id, purchasing.org.id)
        for o in orders
    ]


class TestPendingInbox:

    def test_lists_instances_at_users_step(self, workflow_service, purchasing, chain):
        workflow, orders = chain
        instances = _start_all(workflow_service, purchasing, workflow, orders)

        page = workflow_service.list_pending(purchasing.manager.id, purchasing.org.id)
        assert page["total"] == 3
        assert [i["id"] for i in page["instances"]] == [i.id for i in instances]
        first = page["instances"][0]
        assert first["workflow_name"] == "OC monto alto"
        assert first["current_step_name"] == "Nivel 1"
        assert first["requester_name"] == "Carla Compras"
        assert first["entity_summary"]["title"] == f"Orden de Compra {orders[0].folio}"
        assert first["hours_pending"] >= 0

        assert workflow_service.count_pending(purchasing.director.id, purchasing.org.id) == 0

    def test_moves_to_next_level_after_approval(self, workflow_service, purchasing, chain):
        workflow, orders = chain
        instances = _start_all(workflow_service, purchasing, workflow, orders)
        workflow_service.approve(instances[1].id, purchasing.manager.id, None, purchasing.org.id)

        assert workflow_service.count_pending(purchasing.manager.id, purchasing.org.id) == 2
        director_page = workflow_service.list_pending(purchasing.director.id, purchasing.org.id)
        assert [i["id"] for i in director_page["instances"]] == [instances[1].id]

    def test_pagination(self, workflow_service, purchasing, chain):
        workflow, orders = chain
        instances = _start_all(workflow_service, purchasing, workflow, orders)

        page = workflow_service.list_pending(purchasing.manager.id, purchasing.org.id, limit=2, offset=2)
        assert page["total"] == 3
        assert [i["id"] for i in page["instances"]] == [instances[2].id]

    def test_entity_type_filter(self, workflow_service, purchasing, chain):
        workflow, orders = chain
        _start_all(workflow_service, purchasing, workflow, orders)

        page = workflow_service.list_pending(purchasing.manager.id, purchasing.org.id, entity_type="requisicion")
        assert page["total"] == 0


class TestInstanceDetails:

    def test_history_newest_first(self, workflow_service, purchasing, chain):
        workflow, orders = chain
        instance = _start_all(workflow_service, purchasing, workflow, orders[:1])[0]
        workflow_service.approve(instance.id, purchasing.manager.id, "revisado", purchasing.org.id)

        details = workflow_service.get_instance(instance.id, purchasing.org.id)
        assert details["state"] == "en_progreso"
        assert [h["action"] for h in details["history"]] == ["aprobado", "iniciado"]
        assert details["history"][0]["user_name"] == "Gabriel Gerente"
        assert details["history"][0]["comment"] == "revisado"
        assert details["history"][0]["step_name"] == "Nivel 1"

    def test_unknown_or_foreign_instance(self, workflow_service, purchasing, chain):
        workflow, orders = chain
        instance = _start_all(workflow_service, purchasing, workflow, orders[:1])[0]

        assert workflow_service.get_instance(instance.id, purchasing.org.id + 1000) is None
        assert workflow_service.get_instance(987654, purchasing.org.id) is None


class TestDecisionHistory:

    def test_only_decided_instances(self, workflow_service, purchasing, chain):
        workflow, orders = chain
        instances = _start_all(workflow_service, purchasing, workflow, orders)
        workflow_service.reject(instances[0].id, purchasing.manager.id, "no", purchasing.org.id)
        workflow_service.approve(instances[1].id, purchasing.manager.id, None, purchasing.org.id)
        workflow_service.approve(instances[1].id, purchasing.director.id, None, purchasing.org.id)

        history = workflow_service.list_history(purchasing.org.id)
        assert history["total"] == 2
        assert [i["id"] for i in history["instances"]] == [instances[1].id, instances[0].id]
        assert history["instances"][0]["decided_by"] == "Diana Director"
        assert history["instances"][1]["decided_by"] == "Gabriel Gerente"

        rejected = workflow_service.list_history(purchasing.org.id, state="rechazado")
        assert [i["id"] for i in rejected["instances"]] == [instances[0].id]


class TestPendingResolution:

    def test_supervisor_step_lists_only_own_reports(self, workflow_service, db_session, purchasing):
        workflow = create_workflow(db_session, org=purchasing.org, levels=[supervisor_level(1)])
        db_session.commit()

        mine = workflow_service.start_workflow(
            workflow.id, "orden_compra", 1, {}, purchasing.requester.id, purchasing.org.id
        )
        workflow_service.start_workflow(
            workflow.id, "orden_compra", 2, {}, purchasing.outsider.id, purchasing.org.id
        )

        page = workflow_service.list_pending(purchasing.manager.id, purchasing.org.id)
        assert [i["id"] for i in page["instances"]] == [mine.id]
        assert page["total"] == 1
        assert workflow_service.count_pending(purchasing.director.id, purchasing.org.id) == 0

    def test_approvers_resolved_once_per_step(self, settings, session_factory, notifier, purchasing, chain):
        calls = []

        class CountingRoster(SqlApproverRoster):
            def approvers_for_step(self, session, step, org_id, requester_id=None):
                calls.append(step.id)
                return super().approvers_for_step(session, step, org_id, requester_id)

        service = create_workflow_service(settings=settings, session_factory=session_factory,
                                          notifier=notifier, roster=CountingRoster())
        workflow, orders = chain
        _start_all(service, purchasing, workflow, orders)
        service.start_workflow(workflow.id, "orden_compra", orders[0].id, {}, purchasing.outsider.id, purchasing.org.id)
        calls.clear()

        assert service.count_pending(purchasing.manager.id, purchasing.org.id) == 4
        assert len(calls) == 1
