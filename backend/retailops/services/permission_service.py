# Overview: Authorization gate; answers allow/deny for actor + action + resource.

"""
Role-based permission checks.

DESIGN PRINCIPLES:
- Fail closed: deny unless a role explicitly grants (resource, action)
- Inactive or missing actors are always denied
- Denials are logged; grants are not
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import User, UserRole, Role, RolePermission, Permission
from ..permissions import (
    PERMISSION_DEFINITIONS,
    DEFAULT_ROLES,
    DEFAULT_ROLE_PERMISSIONS,
    permission_code,
    validate_permission_code,
)

logger = logging.getLogger(__name__)


class PermissionDeniedError(Exception):
    """Raised when an actor lacks the required permission."""

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.code = code


def get_user_permissions(user_id: int) -> set[str]:
    """
    Get all permission codes for a user (union over the user's roles).

    Returns set of codes (e.g., {"sales:create", "sales:read"}).
    """
    rows = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .all()
    )
    return {code for (code,) in rows}


def authorize(actor: User | None, action: str, resource: str) -> bool:
    """Return True if ``actor`` may perform ``action`` on ``resource``."""
    if actor is None or not actor.is_active:
        return False
    return permission_code(resource, action) in get_user_permissions(actor.id)


def require_permission(actor: User | None, action: str, resource: str) -> None:
    """
    Raise PermissionDeniedError unless ``actor`` may perform ``action`` on
    ``resource``.

    Usage:
        require_permission(g.current_user, "refund", "sales")
    """
    code = permission_code(resource, action)
    if authorize(actor, action, resource):
        return

    logger.warning(
        "Permission denied: user=%s permission=%s",
        actor.id if actor is not None else None,
        code,
    )
    raise PermissionDeniedError(f"Permission denied: {code}", code=code)


# =============================================================================
# SEEDING
# =============================================================================

def initialize_permissions() -> int:
    """
    Create Permission rows for every definition. Safe to call repeatedly.

    Returns the number of permissions created.
    """
    existing = {p.code for p in db.session.query(Permission).all()}
    created = 0
    for resource, action, name, description in PERMISSION_DEFINITIONS:
        code = permission_code(resource, action)
        if code in existing:
            continue
        db.session.add(Permission(
            code=code,
            resource=resource,
            action=action,
            name=name,
            description=description,
        ))
        created += 1
    db.session.commit()
    return created


def create_default_roles() -> None:
    """Create admin, manager and staff roles if missing."""
    existing = {r.name for r in db.session.query(Role).all()}
    for name, level, description in DEFAULT_ROLES:
        if name not in existing:
            db.session.add(Role(name=name, level=level, description=description))
    db.session.commit()


def assign_default_role_permissions() -> None:
    """Grant each default role its default permission set (idempotent)."""
    for role_name, codes in DEFAULT_ROLE_PERMISSIONS.items():
        role = db.session.query(Role).filter_by(name=role_name).first()
        if role is None:
            continue
        for code in codes:
            grant_permission(role, code, commit=False)
    db.session.commit()


def grant_permission(role: Role, code: str, *, commit: bool = True) -> RolePermission:
    if not validate_permission_code(code):
        raise ValueError(f"Unknown permission code '{code}'")
    permission = db.session.query(Permission).filter_by(code=code).first()
    if permission is None:
        raise ValueError(f"Permission '{code}' not found")

    link = db.session.query(RolePermission).filter_by(
        role_id=role.id, permission_id=permission.id
    ).first()
    if link is None:
        link = RolePermission(role_id=role.id, permission_id=permission.id)
        db.session.add(link)
    if commit:
        db.session.commit()
    return link


def revoke_permission(role: Role, code: str) -> bool:
    permission = db.session.query(Permission).filter_by(code=code).first()
    if permission is None:
        return False
    deleted = db.session.query(RolePermission).filter_by(
        role_id=role.id, permission_id=permission.id
    ).delete()
    db.session.commit()
    return bool(deleted)


def assign_role(user: User, role_name: str) -> UserRole:
    role = db.session.query(Role).filter_by(name=role_name).first()
    if role is None:
        raise ValueError(f"Role '{role_name}' not found")

    link = db.session.query(UserRole).filter_by(user_id=user.id, role_id=role.id).first()
    if link is None:
        link = UserRole(user_id=user.id, role_id=role.id)
        db.session.add(link)
        db.session.commit()
    return link
