# certmanager/core/rbac.py
from typing import Dict, FrozenSet

ROLE_CREATOR = "creator"
ROLE_VERIFIER = "verifier"
ROLE_ISSUER = "issuer"
ROLE_ADMIN = "admin"

ROLES = (ROLE_CREATOR, ROLE_VERIFIER, ROLE_ISSUER, ROLE_ADMIN)

PERM_CREATE = "create_certificates"
PERM_VERIFY = "verify_certificates"
PERM_ISSUE = "issue_certificates"
PERM_VIEW_ALL = "view_all_certificates"
PERM_MANAGE_USERS = "manage_users"
PERM_SYSTEM_ADMIN = "system_admin"

# tabela estática: a permissão sempre deriva do papel atual
ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    ROLE_CREATOR: frozenset({PERM_CREATE}),
    ROLE_VERIFIER: frozenset({PERM_VERIFY, PERM_VIEW_ALL}),
    ROLE_ISSUER: frozenset({PERM_ISSUE, PERM_VIEW_ALL}),
    ROLE_ADMIN: frozenset({
        PERM_CREATE, PERM_VERIFY, PERM_ISSUE, PERM_VIEW_ALL, PERM_MANAGE_USERS, PERM_SYSTEM_ADMIN,
    }),
}


def _role_name(role) -> str:
    return getattr(role, "value", role)


def permissions_for(role) -> FrozenSet[str]:
    return ROLE_PERMISSIONS.get(_role_name(role), frozenset())


def has_permission(role, permission: str) -> bool:
    return permission in permissions_for(role)


def is_admin(role) -> bool:
    return _role_name(role) == ROLE_ADMIN
