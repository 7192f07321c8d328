"""Workflow engine error taxonomy.

Configuration, permission and state errors abort the enclosing transaction
and reach the caller. NotificationError never leaves the engine: call sites
catch and log it once the decision is committed.
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for workflow engine errors."""


class ConfigurationError(WorkflowError):
    """The stored workflow configuration cannot be executed."""


class PermissionDeniedError(WorkflowError):
    """Raised when a user is not an approver of the instance's current step."""

    def __init__(self, user_id: int, instance_id: int):
        super().__init__(f"User {user_id} cannot act on workflow instance {instance_id}")
        self.user_id = user_id
        self.instance_id = instance_id


class StateConflictError(WorkflowError):
    """Raised when an instance was already processed or changed concurrently."""

    def __init__(
        self,
        message: str,
        *,
        instance_id: Optional[int] = None,
        state: Optional[str] = None,
    ):
        super().__init__(message)
        self.instance_id = instance_id
        self.state = state


class InstanceNotFoundError(StateConflictError):
    """No instance with that id exists in the caller's organization."""

    def __init__(self, instance_id: int):
        super().__init__(
            f"Workflow instance {instance_id} not found or already processed",
            instance_id=instance_id,
        )


class EntityNotFoundError(WorkflowError):
    """The entity governed by an instance no longer exists."""

    def __init__(self, entity_type: str, entity_id: int):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class NotificationError(WorkflowError):
    """A notification could not be prepared or delivered."""
