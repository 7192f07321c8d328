"""Database models for the back office workflow engine."""

from backoffice.db.models.org import Organization
from backoffice.db.models.user import User
from backoffice.db.models.role import Role
from backoffice.db.models.branch import UserBranch
from backoffice.db.models.workflow import (
    WorkflowDefinition,
    WorkflowStep,
    WorkflowTransition,
    WorkflowInstance,
    WorkflowHistory,
    WorkflowDelegation,
)
from backoffice.db.models.purchase_order import PurchaseOrder
from backoffice.db.models.notification import Notification, NotificationKind

__all__ = [
    "Organization",
    "User",
    "Role",
    "UserBranch",
    "WorkflowDefinition",
    "WorkflowStep",
    "WorkflowTransition",
    "WorkflowInstance",
    "WorkflowHistory",
    "WorkflowDelegation",
    "PurchaseOrder",
    "Notification",
    "NotificationKind",
]
