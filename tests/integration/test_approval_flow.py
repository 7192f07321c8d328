"""End-to-end approval flows: start, approve through the chain, reject."""

import pytest

from backoffice.core.workflow.errors import (
    EntityNotFoundError,
    InstanceNotFoundError,
    PermissionDeniedError,
    StateConflictError,
)
from backoffice.core.workflow.processor import ApprovalProcessor
from backoffice.core.workflow.service import create_workflow_service
from backoffice.db.models import NotificationKind, PurchaseOrder, WorkflowHistory, WorkflowInstance
from tests.doubles import FailingNotifier, RecordingNotifier
from tests.factories import create_purchase_order, create_workflow, get_step, role_level


pytestmark = [pytest.mark.db, pytest.mark.integration]


def _history(db_session, instance_id):
    db_session.expire_all()
    return (
        db_session.query(WorkflowHistory)
        .filter(WorkflowHistory.instance_id == instance_id)
        .order_by(WorkflowHistory.id)
        .all()
    )


def _reload(db_session, model, id_):
    db_session.expire_all()
    return db_session.get(model, id_)


@pytest.fixture
def two_level(db_session, purchasing):
    workflow = create_workflow(
        db_session,
        org=purchasing.org,
        code="oc-monto-alto",
        levels=[role_level("gerente"), role_level("director")],
    )
    order = create_purchase_order(db_session, org=purchasing.org, created_by=purchasing.requester, total="8000")
    db_session.commit()
    return workflow, order


def _start(service, purchasing, workflow, order):
    return service.start_workflow(
        workflow.id,
        "orden_compra",
        order.id,
        {"folio": order.folio, "total": order.total},
        purchasing.requester.id,
        purchasing.org.id,
    )


# ---------------------------------------------------------------------------
# Multi-level approval
# ---------------------------------------------------------------------------


class TestTwoLevelChain:

    def test_start_notifies_only_first_level(self, workflow_service, notifier, purchasing, two_level):
        workflow, order = two_level
        instance = _start(workflow_service, purchasing, workflow, order)

        assert instance.state == "en_progreso"
        assert notifier.recipients(NotificationKind.APPROVAL_PENDING) == [purchasing.manager.id]

    def test_requires_both_approvals(self, workflow_service, db_session, purchasing, two_level):
        workflow, order = two_level
        instance = _start(workflow_service, purchasing, workflow, order)

        first = workflow_service.approve(instance.id, purchasing.manager.id, "ok gerencia", purchasing.org.id)
        assert first.state == "en_progreso"
        assert first.current_step_id == get_step(db_session, workflow, "nivel_2").id
        assert first.completed_at is None
        assert _reload(db_session, PurchaseOrder, order.id).state == "pendiente_aprobacion"

        second = workflow_service.approve(instance.id, purchasing.director.id, "ok dirección", purchasing.org.id)
        assert second.state == "aprobado"
        assert second.completed_at is not None
        assert second.result == {"decision": "aprobado", "comentario": "ok dirección",
                                 "aprobado_por": purchasing.director.id}

        released = _reload(db_session, PurchaseOrder, order.id)
        assert released.state == "enviada"
        assert released.sent_at is not None

    def test_history_records_each_decision(self, workflow_service, db_session, purchasing, two_level):
        workflow, order = two_level
        instance = _start(workflow_service, purchasing, workflow, order)
        workflow_service.approve(instance.id, purchasing.manager.id, None, purchasing.org.id)
        workflow_service.approve(instance.id, purchasing.director.id, None, purchasing.org.id)

        rows = _history(db_session, instance.id)
        assert [r.action for r in rows] == ["iniciado", "aprobado", "aprobado"]
        assert rows[0].step_id == get_step(db_session, workflow, "inicio").id
        assert rows[1].step_id == get_step(db_session, workflow, "nivel_1").id
        assert rows[1].user_id == purchasing.manager.id
        assert rows[1].data["estado_nuevo"] == "en_progreso"
        assert rows[2].step_id == get_step(db_session, workflow, "nivel_2").id
        assert rows[2].data["estado_nuevo"] == "aprobado"

    def test_second_level_cannot_act_first(self, workflow_service, db_session, purchasing, two_level):
        workflow, order = two_level
        instance = _start(workflow_service, purchasing, workflow, order)

        with pytest.raises(PermissionDeniedError):
            workflow_service.approve(instance.id, purchasing.director.id, None, purchasing.org.id)

        assert _reload(db_session, WorkflowInstance, instance.id).state == "en_progreso"
        assert len(_history(db_session, instance.id)) == 1

    def test_next_level_notified_after_commit(self, settings, session_factory, purchasing, two_level):
        """Level 2 hears about the request only once level 1's decision is durable."""
        workflow, order = two_level
        observed = []

        class SnapshotNotifier(RecordingNotifier):
            def notify_many(self, org_id, user_ids, message):
                with session_factory() as reader:
                    rows = reader.query(WorkflowHistory).filter(WorkflowHistory.action == "aprobado").count()
                observed.append((list(user_ids), rows))
                return super().notify_many(org_id, user_ids, message)

        snapshot = SnapshotNotifier()
        service = create_workflow_service(settings=settings, session_factory=session_factory, notifier=snapshot)
        instance = _start(service, purchasing, workflow, order)
        service.approve(instance.id, purchasing.manager.id, "ok", purchasing.org.id)

        assert observed == [([purchasing.manager.id], 0), ([purchasing.director.id], 1)]

    def test_requester_told_about_progress_and_outcome(self, workflow_service, notifier, purchasing, two_level):
        workflow, order = two_level
        instance = _start(workflow_service, purchasing, workflow, order)
        workflow_service.approve(instance.id, purchasing.manager.id, None, purchasing.org.id)
        workflow_service.approve(instance.id, purchasing.director.id, "adelante", purchasing.org.id)

        assert notifier.recipients(NotificationKind.APPROVAL_ADVANCED) == [purchasing.requester.id]
        assert notifier.recipients(NotificationKind.APPROVAL_COMPLETED) == [purchasing.requester.id]
        done = notifier.messages(NotificationKind.APPROVAL_COMPLETED)[0]
        assert "Diana Director" in done.message
        assert '"adelante"' in done.message


# ---------------------------------------------------------------------------
# Rejection
# ---------------------------------------------------------------------------


class TestRejection:

    @pytest.mark.parametrize("approvals_before", [0, 1])
    def test_reject_at_any_level_reverts_order(
        self, workflow_service, db_session, notifier, purchasing, two_level, approvals_before
    ):
        workflow, order = two_level
        instance = _start(workflow_service, purchasing, workflow, order)
        rejecter = purchasing.manager
        if approvals_before:
            workflow_service.approve(instance.id, purchasing.manager.id, None, purchasing.org.id)
            rejecter = purchasing.director

        rejected = workflow_service.reject(instance.id, rejecter.id, "precio fuera de mercado", purchasing.org.id)

        assert rejected.state == "rechazado"
        assert rejected.completed_at is not None
        assert rejected.result["motivo"] == "precio fuera de mercado"
        assert _reload(db_session, PurchaseOrder, order.id).state == "borrador"
        assert _history(db_session, instance.id)[-1].action == "rechazado"
        assert notifier.recipients(NotificationKind.APPROVAL_REJECTED) == [purchasing.requester.id]
        assert "precio fuera de mercado" in notifier.messages(NotificationKind.APPROVAL_REJECTED)[0].message

    def test_outsider_cannot_reject(self, workflow_service, purchasing, two_level):
        workflow, order = two_level
        instance = _start(workflow_service, purchasing, workflow, order)

        with pytest.raises(PermissionDeniedError):
            workflow_service.reject(instance.id, purchasing.outsider.id, "no", purchasing.org.id)


# ---------------------------------------------------------------------------
# Single level and end step handling
# ---------------------------------------------------------------------------


class TestSingleLevel:

    def test_approval_applies_end_step_state(self, workflow_service, db_session, purchasing):
        workflow = create_workflow(
            db_session,
            org=purchasing.org,
            levels=[role_level("gerente")],
            end_config={"accion": "cambiar_estado", "estado_nuevo": "autorizada"},
        )
        order = create_purchase_order(db_session, org=purchasing.org, created_by=purchasing.requester)
        db_session.commit()

        instance = _start(workflow_service, purchasing, workflow, order)
        approved = workflow_service.approve(instance.id, purchasing.manager.id, None, purchasing.org.id)

        assert approved.state == "aprobado"
        assert approved.current_step_id == get_step(db_session, workflow, "fin").id
        assert _reload(db_session, PurchaseOrder, order.id).state == "autorizada"

    def test_chain_without_end_step_leaves_order_alone(self, workflow_service, db_session, purchasing):
        workflow = create_workflow(db_session, org=purchasing.org, levels=[role_level("gerente")], with_end=False)
        order = create_purchase_order(db_session, org=purchasing.org, created_by=purchasing.requester)
        db_session.commit()

        instance = _start(workflow_service, purchasing, workflow, order)
        approved = workflow_service.approve(instance.id, purchasing.manager.id, None, purchasing.org.id)

        assert approved.state == "aprobado"
        assert _reload(db_session, PurchaseOrder, order.id).state == "pendiente_aprobacion"

    def test_end_step_without_state_change(self, workflow_service, db_session, purchasing):
        workflow = create_workflow(
            db_session, org=purchasing.org, levels=[role_level("gerente")], end_config={"accion": "notificar"}
        )
        order = create_purchase_order(db_session, org=purchasing.org, created_by=purchasing.requester)
        db_session.commit()

        instance = _start(workflow_service, purchasing, workflow, order)
        workflow_service.approve(instance.id, purchasing.manager.id, None, purchasing.org.id)

        assert _reload(db_session, PurchaseOrder, order.id).state == "pendiente_aprobacion"


# ---------------------------------------------------------------------------
# Terminal states and errors
# ---------------------------------------------------------------------------


class TestTerminalStates:

    @pytest.fixture
    def approved_instance(self, workflow_service, db_session, purchasing):
        workflow = create_workflow(db_session, org=purchasing.org, levels=[role_level("gerente")])
        order = create_purchase_order(db_session, org=purchasing.org, created_by=purchasing.requester)
        db_session.commit()
        instance = _start(workflow_service, purchasing, workflow, order)
        workflow_service.approve(instance.id, purchasing.manager.id, None, purchasing.org.id)
        return instance

    def test_approve_after_approval_conflicts(self, workflow_service, purchasing, approved_instance):
        with pytest.raises(StateConflictError) as exc_info:
            workflow_service.approve(approved_instance.id, purchasing.manager.id, None, purchasing.org.id)
        assert exc_info.value.state == "aprobado"

    def test_reject_after_approval_conflicts(self, workflow_service, db_session, purchasing, approved_instance):
        with pytest.raises(StateConflictError):
            workflow_service.reject(approved_instance.id, purchasing.manager.id, "tarde", purchasing.org.id)
        assert _reload(db_session, WorkflowInstance, approved_instance.id).state == "aprobado"

    def test_terminal_check_precedes_permission_check(self, workflow_service, purchasing, approved_instance):
        with pytest.raises(StateConflictError):
            workflow_service.approve(approved_instance.id, purchasing.outsider.id, None, purchasing.org.id)

    def test_unknown_instance(self, workflow_service, purchasing):
        with pytest.raises(InstanceNotFoundError):
            workflow_service.approve(999999, purchasing.manager.id, None, purchasing.org.id)

    def test_instance_of_other_org_is_not_found(self, workflow_service, purchasing, approved_instance):
        with pytest.raises(InstanceNotFoundError):
            workflow_service.reject(approved_instance.id, purchasing.manager.id, None, purchasing.org.id + 1000)


class TestAtomicity:

    def test_missing_entity_rolls_decision_back(self, workflow_service, db_session, purchasing):
        workflow = create_workflow(db_session, org=purchasing.org, levels=[role_level("gerente")])
        db_session.commit()
        instance = workflow_service.start_workflow(
            workflow.id, "orden_compra", 424242, {}, purchasing.requester.id, purchasing.org.id
        )

        with pytest.raises(EntityNotFoundError):
            workflow_service.approve(instance.id, purchasing.manager.id, None, purchasing.org.id)

        reloaded = _reload(db_session, WorkflowInstance, instance.id)
        assert reloaded.state == "en_progreso"
        assert reloaded.completed_at is None
        assert [r.action for r in _history(db_session, instance.id)] == ["iniciado"]

    def test_notification_failure_keeps_decision(self, settings, session_factory, db_session, purchasing, caplog):
        workflow = create_workflow(db_session, org=purchasing.org, levels=[role_level("gerente")])
        order = create_purchase_order(db_session, org=purchasing.org, created_by=purchasing.requester)
        db_session.commit()
        service = create_workflow_service(
            settings=settings, session_factory=session_factory, notifier=FailingNotifier()
        )

        instance = _start(service, purchasing, workflow, order)
        approved = service.approve(instance.id, purchasing.manager.id, None, purchasing.org.id)

        assert approved.state == "aprobado"
        assert _reload(db_session, PurchaseOrder, order.id).state == "enviada"
        assert "notification failed" in caplog.text


class TestConcurrentDecisions:

    def test_only_one_of_two_racing_approvals_wins(self, workflow_service, db_session, purchasing):
        """The competing decision commits while the first holds a stale row."""
        workflow = create_workflow(db_session, org=purchasing.org, levels=[role_level("gerente")])
        order = create_purchase_order(db_session, org=purchasing.org, created_by=purchasing.requester)
        db_session.commit()
        instance = _start(workflow_service, purchasing, workflow, order)

        calls = []
        competitor = {}

        def racing_check(session, locked, user_id):
            calls.append(user_id)
            if len(calls) == 1:
                competitor["result"] = processor.approve(locked.id, user_id, "segundo", purchasing.org.id)
            return True

        processor = ApprovalProcessor(
            workflow_service.scope,
            workflow_service.resolver,
            workflow_service.bindings,
            workflow_service.processor.dispatcher,
            permission_check=racing_check,
        )

        with pytest.raises(StateConflictError):
            processor.approve(instance.id, purchasing.manager.id, "primero", purchasing.org.id)

        assert competitor["result"].state == "aprobado"
        approvals = [r for r in _history(db_session, instance.id) if r.action == "aprobado"]
        assert len(approvals) == 1
        assert approvals[0].comment == "segundo"
        assert _reload(db_session, WorkflowInstance, instance.id).result["comentario"] == "segundo"
