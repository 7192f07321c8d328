"""Permission checking utilities.

Used by the approver roster to find users whose role grants a permission.
"""

from typing import Iterable, List, Optional


class PermissionChecker:
    """Checks if a user has specific permissions based on their role."""

    def __init__(self, user_permissions: Optional[Iterable[str]] = None):
        """
        Initialize with user's permissions list.

        Args:
            user_permissions: List of permission strings from user's role
        """
        self.permissions = set(user_permissions or [])

    def has_permission(self, permission: str) -> bool:
        """Check if user has a specific permission."""
        if permission in self.permissions:
            return True

        # Wildcard check: resource:* grants all actions on resource
        if ":" in permission:
            resource = permission.split(":")[0]
            if f"{resource}:*" in self.permissions:
                return True
            # Global admin wildcard
            if "*:*" in self.permissions:
                return True

        return False

    def has_any_permission(self, permissions: List[str]) -> bool:
        """Check if user has any of the given permissions."""
        return any(self.has_permission(p) for p in permissions)


def has_any_permission(user, permissions: List[str]) -> bool:
    """
    Check if a user's role grants any of the given permissions.

    Args:
        user: User model instance with role relationship
        permissions: Permission strings, e.g. ["ordenes_compra:approve"]

    Returns:
        True if one of the permissions is granted
    """
    if not user or not user.role:
        return False

    checker = PermissionChecker(user.role.permissions or [])
    return checker.has_any_permission(permissions)
