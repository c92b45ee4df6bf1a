"""
auth/rbac.py -- Role and permission gates.

Two dependency factories, both built on get_current_user so an anonymous
request is rejected with 401 before any role check runs:

  require_permission(Permission.manage_users)
      403 with {"required": <permission>, "role": <principal role>}

  require_role(Role.admin, Role.editor)
      403 with {"required": [<roles>], "current": <principal role>}

The role -> permission table itself lives in auth/models.py.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends

from auth.dependencies import get_current_user
from auth.errors import AuthorizationError
from auth.models import ROLE_PERMISSIONS, Account, Permission, Role


def has_permission(role: Role | str, permission: Permission | str) -> bool:
    """Return True if `role` grants `permission`. Unknown roles grant nothing."""
    try:
        return Permission(permission) in ROLE_PERMISSIONS[Role(role)]
    except ValueError:
        return False


def require_permission(permission: Permission) -> Callable[..., Account]:
    def _check(user: Account = Depends(get_current_user)) -> Account:
        if not has_permission(user.role, permission):
            raise AuthorizationError(required=permission.value, role=Role(user.role).value)
        return user

    return _check


def require_role(*roles: Role) -> Callable[..., Account]:
    allowed = frozenset(roles)

    def _check(user: Account = Depends(get_current_user)) -> Account:
        if Role(user.role) not in allowed:
            raise AuthorizationError(
                required=[r.value for r in roles],
                current=Role(user.role).value,
            )
        return user

    return _check
