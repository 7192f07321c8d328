"""Workflow engine database models.

Definitions, steps and transitions are static configuration written by
administrators. Instances and their history are written by the engine;
history rows are append-only.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Date,
    Boolean,
    JSON,
    Text,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from backoffice.common.timeutils import utcnow
from backoffice.db.base import Base


class WorkflowDefinition(Base):
    """
    Organization-configured approval workflow.

    Definitions for the same entity type are evaluated in ascending id
    order; the first one whose activation condition holds is used.
    """
    __tablename__ = "workflow_definitions"
    __table_args__ = (
        UniqueConstraint("org_id", "code", name="uq_workflow_definitions_org_code"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    code = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    entity_type = Column(String(50), nullable=False, index=True)  # orden_compra, ...

    # Condition tree, e.g. {"monto": {">=": 5000}}. Empty means always.
    activation_condition = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    steps = relationship(
        "WorkflowStep",
        back_populates="workflow",
        order_by="WorkflowStep.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<WorkflowDefinition {self.code} [{self.entity_type}]>"


class WorkflowStep(Base):
    __tablename__ = "workflow_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "code", name="uq_workflow_steps_workflow_code"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(Integer, ForeignKey("workflow_definitions.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    step_type = Column(String(20), nullable=False)  # inicio, aprobacion, fin
    # Raw config; read it through core.workflow.definitions.step_config()
    config = Column(JSON, nullable=False, default=dict)
    position = Column(Integer, nullable=False, default=0)

    # Relationships
    workflow = relationship("WorkflowDefinition", back_populates="steps")
    outgoing = relationship(
        "WorkflowTransition",
        foreign_keys="WorkflowTransition.from_step_id",
        back_populates="from_step",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<WorkflowStep {self.code} [{self.step_type}]>"


class WorkflowTransition(Base):
    """Named edge between two steps (siguiente, aprobar, rechazar)."""
    __tablename__ = "workflow_transitions"
    __table_args__ = (
        UniqueConstraint("from_step_id", "label", name="uq_workflow_transitions_from_label"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(Integer, ForeignKey("workflow_definitions.id", ondelete="CASCADE"), nullable=False, index=True)
    from_step_id = Column(Integer, ForeignKey("workflow_steps.id", ondelete="CASCADE"), nullable=False, index=True)
    to_step_id = Column(Integer, ForeignKey("workflow_steps.id", ondelete="CASCADE"), nullable=False)
    label = Column(String(20), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    # Relationships
    from_step = relationship("WorkflowStep", foreign_keys=[from_step_id], back_populates="outgoing")
    to_step = relationship("WorkflowStep", foreign_keys=[to_step_id])

    def __repr__(self) -> str:
        return f"<WorkflowTransition {self.from_step_id} -{self.label}-> {self.to_step_id}>"


class WorkflowInstance(Base):
    """
    One execution of a workflow definition against an entity.

    ``version`` is bumped on every update; a concurrent writer holding a
    stale row fails instead of overwriting a decision.
    """
    __tablename__ = "workflow_instances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    workflow_id = Column(Integer, ForeignKey("workflow_definitions.id"), nullable=False, index=True)

    # Governed entity
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=False)

    # Progress
    current_step_id = Column(Integer, ForeignKey("workflow_steps.id"), nullable=True)
    state = Column(String(20), nullable=False, default="en_progreso", index=True)
    context = Column(JSON, nullable=False, default=dict)
    initiated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    deadline = Column(DateTime, nullable=True)
    result = Column(JSON, nullable=True)

    # Timestamps
    started_at = Column(DateTime, default=utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    version = Column(Integer, nullable=False, default=1)

    # Relationships
    workflow = relationship("WorkflowDefinition")
    current_step = relationship("WorkflowStep")
    initiator = relationship("User", foreign_keys=[initiated_by])
    history = relationship(
        "WorkflowHistory",
        back_populates="instance",
        order_by="WorkflowHistory.id",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<WorkflowInstance {self.entity_type}#{self.entity_id} [{self.state}]>"


class WorkflowHistory(Base):
    """Audit row written in the same transaction as each instance change."""
    __tablename__ = "workflow_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    instance_id = Column(Integer, ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False, index=True)
    step_id = Column(Integer, ForeignKey("workflow_steps.id"), nullable=True)
    action = Column(String(20), nullable=False)  # iniciado, aprobado, rechazado
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    comment = Column(Text, nullable=True)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow, index=True)

    # Relationships
    instance = relationship("WorkflowInstance", back_populates="history")
    step = relationship("WorkflowStep")
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<WorkflowHistory {self.action} instance={self.instance_id}>"


class WorkflowDelegation(Base):
    """
    Temporary hand-over of approval duties.

    While active and within [starts_on, ends_on], the delegate may act on
    every step the original user can act on, optionally limited to one
    workflow.
    """
    __tablename__ = "workflow_delegations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    original_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    delegate_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    workflow_id = Column(Integer, ForeignKey("workflow_definitions.id", ondelete="CASCADE"), nullable=True)
    starts_on = Column(Date, nullable=False)
    ends_on = Column(Date, nullable=False)
    reason = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    original_user = relationship("User", foreign_keys=[original_user_id])
    delegate_user = relationship("User", foreign_keys=[delegate_user_id])
    workflow = relationship("WorkflowDefinition")
