"""Role-based access control."""

from .checker import PermissionChecker, has_any_permission

__all__ = [
    "PermissionChecker",
    "has_any_permission",
]
