"""Workflow engine schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Tables added:
- organizations, roles, users, user_branches: Tenant roster
- workflow_definitions, workflow_steps, workflow_transitions: Workflow configuration
- workflow_instances, workflow_history: Running workflows and their audit trail
- workflow_delegations: Temporary hand-over of approval duties
- purchase_orders: Entity governed by the purchase workflow
- notifications: In-app notifications
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create roster, workflow, purchase order and notification tables."""

    # --- organizations ---
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_organizations"),
        sa.UniqueConstraint("slug", name="uq_organizations_slug"),
    )

    # --- roles ---
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("approval_limit", sa.Numeric(14, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_roles"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], name="fk_roles_org_id"),
        sa.UniqueConstraint("org_id", "code", name="uq_roles_org_code"),
    )
    op.create_index("ix_roles_org_id", "roles", ["org_id"])

    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=True),
        sa.Column("supervisor_id", sa.Integer(), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("approval_limit", sa.Numeric(14, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], name="fk_users_org_id"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], name="fk_users_role_id"),
        sa.ForeignKeyConstraint(["supervisor_id"], ["users.id"], name="fk_users_supervisor_id", ondelete="SET NULL"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_org_id", "users", ["org_id"])
    op.create_index("ix_users_supervisor_id", "users", ["supervisor_id"])

    # --- user_branches ---
    op.create_table(
        "user_branches",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("is_manager", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_user_branches"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_user_branches_user_id", ondelete="CASCADE"),
    )
    op.create_index("ix_user_branches_user_id", "user_branches", ["user_id"])
    op.create_index("ix_user_branches_branch_id", "user_branches", ["branch_id"])

    # --- workflow_definitions ---
    op.create_table(
        "workflow_definitions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("activation_condition", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_workflow_definitions"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], name="fk_workflow_definitions_org_id"),
        sa.UniqueConstraint("org_id", "code", name="uq_workflow_definitions_org_code"),
    )
    op.create_index("ix_workflow_definitions_org_id", "workflow_definitions", ["org_id"])
    op.create_index("ix_workflow_definitions_entity_type", "workflow_definitions", ["entity_type"])

    # --- workflow_steps ---
    op.create_table(
        "workflow_steps",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("workflow_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("step_type", sa.String(20), nullable=False),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id", name="pk_workflow_steps"),
        sa.ForeignKeyConstraint(["workflow_id"], ["workflow_definitions.id"], name="fk_workflow_steps_workflow_id", ondelete="CASCADE"),
        sa.UniqueConstraint("workflow_id", "code", name="uq_workflow_steps_workflow_code"),
    )
    op.create_index("ix_workflow_steps_workflow_id", "workflow_steps", ["workflow_id"])

    # --- workflow_transitions ---
    op.create_table(
        "workflow_transitions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("workflow_id", sa.Integer(), nullable=False),
        sa.Column("from_step_id", sa.Integer(), nullable=False),
        sa.Column("to_step_id", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(20), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id", name="pk_workflow_transitions"),
        sa.ForeignKeyConstraint(["workflow_id"], ["workflow_definitions.id"], name="fk_workflow_transitions_workflow_id", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["from_step_id"], ["workflow_steps.id"], name="fk_workflow_transitions_from_step_id", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["to_step_id"], ["workflow_steps.id"], name="fk_workflow_transitions_to_step_id", ondelete="CASCADE"),
        sa.UniqueConstraint("from_step_id", "label", name="uq_workflow_transitions_from_label"),
    )
    op.create_index("ix_workflow_transitions_workflow_id", "workflow_transitions", ["workflow_id"])
    op.create_index("ix_workflow_transitions_from_step_id", "workflow_transitions", ["from_step_id"])

    # --- workflow_instances ---
    op.create_table(
        "workflow_instances",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("workflow_id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("current_step_id", sa.Integer(), nullable=True),
        sa.Column("state", sa.String(20), nullable=False, server_default="en_progreso"),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.Column("initiated_by", sa.Integer(), nullable=True),
        sa.Column("deadline", sa.DateTime(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("started_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id", name="pk_workflow_instances"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], name="fk_workflow_instances_org_id"),
        sa.ForeignKeyConstraint(["workflow_id"], ["workflow_definitions.id"], name="fk_workflow_instances_workflow_id"),
        sa.ForeignKeyConstraint(["current_step_id"], ["workflow_steps.id"], name="fk_workflow_instances_current_step_id"),
        sa.ForeignKeyConstraint(["initiated_by"], ["users.id"], name="fk_workflow_instances_initiated_by", ondelete="SET NULL"),
    )
    op.create_index("ix_workflow_instances_org_id", "workflow_instances", ["org_id"])
    op.create_index("ix_workflow_instances_workflow_id", "workflow_instances", ["workflow_id"])
    op.create_index("ix_workflow_instances_state", "workflow_instances", ["state"])
    op.create_index("ix_workflow_instances_started_at", "workflow_instances", ["started_at"])
    op.create_index("ix_workflow_instances_entity", "workflow_instances", ["entity_type", "entity_id"])

    # --- workflow_history ---
    op.create_table(
        "workflow_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("instance_id", sa.Integer(), nullable=False),
        sa.Column("step_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_workflow_history"),
        sa.ForeignKeyConstraint(["instance_id"], ["workflow_instances.id"], name="fk_workflow_history_instance_id", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["step_id"], ["workflow_steps.id"], name="fk_workflow_history_step_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_workflow_history_user_id", ondelete="SET NULL"),
    )
    op.create_index("ix_workflow_history_instance_id", "workflow_history", ["instance_id"])
    op.create_index("ix_workflow_history_created_at", "workflow_history", ["created_at"])

    # --- workflow_delegations ---
    op.create_table(
        "workflow_delegations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("original_user_id", sa.Integer(), nullable=False),
        sa.Column("delegate_user_id", sa.Integer(), nullable=False),
        sa.Column("workflow_id", sa.Integer(), nullable=True),
        sa.Column("starts_on", sa.Date(), nullable=False),
        sa.Column("ends_on", sa.Date(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_workflow_delegations"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], name="fk_workflow_delegations_org_id"),
        sa.ForeignKeyConstraint(["original_user_id"], ["users.id"], name="fk_workflow_delegations_original_user_id", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["delegate_user_id"], ["users.id"], name="fk_workflow_delegations_delegate_user_id", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["workflow_id"], ["workflow_definitions.id"], name="fk_workflow_delegations_workflow_id", ondelete="CASCADE"),
    )
    op.create_index("ix_workflow_delegations_org_id", "workflow_delegations", ["org_id"])
    op.create_index("ix_workflow_delegations_original_user_id", "workflow_delegations", ["original_user_id"])
    op.create_index("ix_workflow_delegations_delegate_user_id", "workflow_delegations", ["delegate_user_id"])

    # --- purchase_orders ---
    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("folio", sa.String(50), nullable=False),
        sa.Column("total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("state", sa.String(30), nullable=False, server_default="borrador"),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_purchase_orders"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], name="fk_purchase_orders_org_id"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], name="fk_purchase_orders_created_by", ondelete="SET NULL"),
    )
    op.create_index("ix_purchase_orders_org_id", "purchase_orders", ["org_id"])
    op.create_index("ix_purchase_orders_state", "purchase_orders", ["state"])

    # --- notifications ---
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="sistema"),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("level", sa.String(20), nullable=False, server_default="info"),
        sa.Column("icon", sa.String(50), nullable=True),
        sa.Column("action_url", sa.String(500), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_notifications"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], name="fk_notifications_org_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_notifications_user_id", ondelete="CASCADE"),
    )
    op.create_index("ix_notifications_org_id", "notifications", ["org_id"])
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])


def downgrade() -> None:
    """Drop every table created by this revision."""
    op.drop_table("notifications")
    op.drop_table("purchase_orders")
    op.drop_table("workflow_delegations")
    op.drop_table("workflow_history")
    op.drop_table("workflow_instances")
    op.drop_table("workflow_transitions")
    op.drop_table("workflow_steps")
    op.drop_table("workflow_definitions")
    op.drop_table("user_branches")
    op.drop_table("users")
    op.drop_table("roles")
    op.drop_table("organizations")
