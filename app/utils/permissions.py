"""RBAC permission helpers."""
from typing import Set
from app.models.user import User
from app.core.security import Permission


def user_permissions(user: User) -> Set[str]:
    """Union of the permission strings of every role of the user."""
    permissions: Set[str] = set()
    for role in user.roles:
        if role.permissions:
            permissions.update(role.permissions)
    return permissions


def has_permission(user: User, permission: Permission) -> bool:
    """Check if an active user holds a specific permission."""
    if not user.is_active:
        return False
    return permission.value in user_permissions(user)
