# certmanager/api/permissions.py
from typing import Callable

from fastapi import Depends, HTTPException, status

from certmanager.api.deps import get_current_user
from certmanager.core.rbac import has_permission
from certmanager.models.user import User

ROLE_NAMES = {
    "creator": "Creator",
    "verifier": "Verifier",
    "issuer": "Issuer",
    "admin": "Administrator",
}


def _role_value(user: User) -> str:
    return getattr(user.role, "value", user.role)


def require_roles(*allowed: str) -> Callable[[User], User]:
    """
    Use: Depends(require_roles("admin", "verifier"))
    Bloqueia quem não tiver uma das roles permitidas.
    """
    allowed_set = set(allowed)

    def _checker(user: User = Depends(get_current_user)) -> User:
        role = _role_value(user)
        if role not in allowed_set:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied for role '{ROLE_NAMES.get(role, role)}'.",
            )
        return user

    return _checker


def require_permissions(*perms: str) -> Callable[[User], User]:
    """
    Use: Depends(require_permissions(PERM_VERIFY))
    Exige todas as permissões listadas (admin tem todas).
    """

    def _checker(user: User = Depends(get_current_user)) -> User:
        missing = [p for p in perms if not has_permission(user.role, p)]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {', '.join(missing)}",
            )
        return user

    return _checker
