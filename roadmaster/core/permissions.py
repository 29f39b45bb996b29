from __future__ import annotations

import os
from collections.abc import Iterable
from typing import Optional

from ..errors import PermissionDeniedError

ROLE_ADMIN = "Admin"
ROLE_PROJECT_MANAGER = "Project Manager"
ROLE_SITE_ENGINEER = "Site Engineer"
ROLE_LAB_TECHNICIAN = "Lab Technician"
ROLE_CONTRACTOR = "Contractor"
ROLE_SUBCONTRACTOR = "Subcontractor"
ROLE_SUPERVISOR = "Supervisor"

USER_ROLES = (
    ROLE_ADMIN,
    ROLE_PROJECT_MANAGER,
    ROLE_SITE_ENGINEER,
    ROLE_LAB_TECHNICIAN,
    ROLE_CONTRACTOR,
    ROLE_SUBCONTRACTOR,
    ROLE_SUPERVISOR,
)

_CRUD_RESOURCES = ("project", "user", "schedule", "boq", "rfi", "document", "report", "finance")
ALL_PERMISSIONS = tuple(
    f"{resource}:{action}"
    for resource in _CRUD_RESOURCES
    for action in ("create", "read", "update", "delete")
) + ("settings:update", "backup:manage")

ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    ROLE_ADMIN: ALL_PERMISSIONS,
    ROLE_PROJECT_MANAGER: (
        "project:create",
        "project:read",
        "project:update",
        "user:read",
        "schedule:create",
        "schedule:read",
        "schedule:update",
        "schedule:delete",
        "boq:create",
        "boq:read",
        "boq:update",
        "boq:delete",
        "rfi:create",
        "rfi:read",
        "rfi:update",
        "rfi:delete",
        "document:create",
        "document:read",
        "document:update",
        "document:delete",
        "report:create",
        "report:read",
        "report:update",
        "report:delete",
        "finance:read",
        "finance:update",
    ),
    ROLE_SITE_ENGINEER: (
        "project:read",
        "schedule:read",
        "schedule:update",
        "boq:read",
        "rfi:create",
        "rfi:read",
        "document:create",
        "document:read",
        "report:create",
        "report:read",
    ),
    ROLE_LAB_TECHNICIAN: (
        "project:read",
        "document:read",
        "report:read",
    ),
    ROLE_CONTRACTOR: (
        "project:read",
        "schedule:read",
        "boq:read",
        "document:read",
        "report:read",
    ),
    ROLE_SUBCONTRACTOR: (
        "project:read",
        "schedule:read",
        "document:read",
        "report:read",
    ),
    ROLE_SUPERVISOR: (
        "project:read",
        "schedule:read",
        "schedule:update",
        "boq:read",
        "rfi:read",
        "document:read",
        "report:read",
    ),
}

_ROLE_KEYS = {role.upper().replace(" ", "_"): role for role in USER_ROLES}
_ROLE_KEYS["PM"] = ROLE_PROJECT_MANAGER


def _parse_admin_identifiers() -> set[str]:
    raw = os.getenv("ROADMASTER_ADMIN_IDENTIFIERS", "admin@example.com")
    return {
        token.strip().lower()
        for token in raw.split(",")
        if token and token.strip()
    }


_ADMIN_IDENTIFIERS = _parse_admin_identifiers()


def normalize_role(value: Optional[str]) -> str:
    raw = (value or "").strip()
    if not raw:
        return ROLE_SITE_ENGINEER
    for role in USER_ROLES:
        if raw.lower() == role.lower():
            return role
    key = raw.upper().replace(" ", "_").replace("-", "_")
    if key in _ROLE_KEYS:
        return _ROLE_KEYS[key]
    raise ValueError(f"Unknown role: {value}")


def permissions_for_role(role: Optional[str]) -> tuple[str, ...]:
    try:
        return ROLE_PERMISSIONS.get(normalize_role(role), ())
    except ValueError:
        return ()


def effective_permissions(user: Optional[object]) -> set[str]:
    if user is None:
        return set()
    explicit = getattr(user, "permissions", None)
    if explicit is not None:
        return set(explicit)
    if is_admin_identifier(user):
        return set(ALL_PERMISSIONS)
    return set(permissions_for_role(getattr(user, "role", None)))


def has_permission(user: Optional[object], permission: str) -> bool:
    return permission in effective_permissions(user)


def has_any_permission(user: Optional[object], permissions: Iterable[str]) -> bool:
    granted = effective_permissions(user)
    return any(permission in granted for permission in permissions)


def has_all_permissions(user: Optional[object], permissions: Iterable[str]) -> bool:
    granted = effective_permissions(user)
    return all(permission in granted for permission in permissions)


def grant_permission(user, permission: str):
    if permission not in ALL_PERMISSIONS:
        raise ValueError(f"Unknown permission: {permission}")
    current = sorted(effective_permissions(user))
    if permission in current:
        return user.model_copy(update={"permissions": current})
    return user.model_copy(update={"permissions": [*current, permission]})


def revoke_permission(user, permission: str):
    current = sorted(effective_permissions(user))
    return user.model_copy(update={"permissions": [item for item in current if item != permission]})


def require_permission(user: Optional[object], permission: str) -> None:
    if not has_permission(user, permission):
        raise PermissionDeniedError(permission, role=str(getattr(user, "role", "") or ""))


def is_admin_identifier(user: Optional[object]) -> bool:
    if user is None:
        return False

    email = (getattr(user, "email", "") or "").strip().lower()
    if not email:
        return False

    return email in _ADMIN_IDENTIFIERS
