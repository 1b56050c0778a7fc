"""
Role management.

Built-in roles (superadmin/admin/staff) are installed by ``seed_builtin_roles``
and are immutable through this service: no rename, no delete, no permission or
display edits. Custom roles may only hold catalog permissions.
"""
from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.hbm.errors import BusinessRuleViolationError, NotFoundError, ValidationError
from app.hbm.models import Permission, Role
from app.hbm.permissions import (
    ALL_PERMISSIONS,
    DEFAULT_ROLE_PERMISSIONS,
    PROTECTED_ROLES,
    Action,
    Resource,
    get_permission_description,
    is_protected_role,
    validate_permission_set,
)
from app.hbm.rbac import BaseService, ServiceContext
from app.hbm.utils import utcnow


def _normalize_key(key: str | None) -> str:
    return (key or "").strip().lower()


def ensure_permission(s: Session, key: str) -> Permission:
    p = s.query(Permission).filter(Permission.key == key).one_or_none()
    if not p:
        p = Permission(key=key, name=get_permission_description(key))
        s.add(p)
    return p


def _checked_permissions(permissions: Iterable[str]) -> list[str]:
    split = validate_permission_set(permissions)
    if split["invalid"]:
        raise ValidationError(
            f"Invalid permissions: {', '.join(sorted(set(split['invalid'])))}",
            invalid=split["invalid"],
        )
    # de-dupe, keep catalog order
    wanted = set(split["valid"])
    return [p for p in ALL_PERMISSIONS if p in wanted]


def seed_builtin_roles(s: Session) -> list[Role]:
    """
    Install catalog permissions and the protected roles. Idempotent; re-running
    resets built-in roles to their default permission sets.
    """
    perms = {key: ensure_permission(s, key) for key in ALL_PERMISSIONS}
    s.flush()
    roles: list[Role] = []
    for key in sorted(PROTECTED_ROLES):
        role = s.query(Role).filter(Role.key == key).one_or_none()
        if not role:
            role = Role(key=key, name=key.capitalize(), is_built_in=True)
            s.add(role)
        role.is_built_in = True
        role.permissions = [perms[p] for p in DEFAULT_ROLE_PERMISSIONS[key]]
        roles.append(role)
    s.flush()
    return roles


def role_permission_keys(s: Session, role_key: str | None) -> list[str] | None:
    """Persisted permission keys for ``role_key``, or None if the role is not in the DB."""
    if not role_key:
        return None
    role = s.query(Role).filter(Role.key == _normalize_key(role_key)).one_or_none()
    return role.permission_keys if role else None


class RoleService(BaseService):
    resource = Resource.USERS

    def __init__(self, s: Session) -> None:
        self.s = s

    def _get(self, role_id: int) -> Role:
        role = self.s.get(Role, role_id)
        if role is None:
            raise NotFoundError("Role", role_id)
        return role

    @staticmethod
    def _refuse_built_in(role: Role, verb: str) -> None:
        if role.is_built_in or is_protected_role(role.key):
            raise BusinessRuleViolationError(f"Built-in role '{role.key}' cannot be {verb}", role=role.key)

    def _ensure_key_available(self, key: str, *, exclude_id: int | None = None) -> None:
        if not key:
            raise ValidationError("Role name is required")
        if is_protected_role(key):
            raise BusinessRuleViolationError(f"'{key}' is reserved for a built-in role", role=key)
        q = select(Role.id).where(Role.key == key)
        if exclude_id is not None:
            q = q.where(Role.id != exclude_id)
        if self.s.execute(q).first() is not None:
            raise ValidationError(f"Role '{key}' already exists", role=key)

    def list_roles(self, context: ServiceContext) -> list[Role]:
        self.require_permission(context, Action.READ)
        return list(self.s.execute(select(Role).order_by(Role.is_built_in.desc(), Role.key.asc())).scalars().all())

    def get_role(self, context: ServiceContext, role_id: int) -> Role:
        self.require_permission(context, Action.READ)
        return self._get(role_id)

    def create_role(
        self,
        context: ServiceContext,
        *,
        key: str,
        name: str | None = None,
        description: str | None = None,
        permissions: Iterable[str] = (),
    ) -> Role:
        self.require_permission(context, Action.CREATE)
        key = _normalize_key(key)
        self._ensure_key_available(key)
        perm_keys = _checked_permissions(permissions)

        role = Role(
            key=key,
            name=(name or key).strip(),
            description=(description or "").strip() or None,
            is_built_in=False,
            permissions=[ensure_permission(self.s, p) for p in perm_keys],
        )
        self.s.add(role)
        self.s.flush()
        self.log_operation("create_role", context, role=key, permissions=len(perm_keys))
        return role

    def update_role(
        self,
        context: ServiceContext,
        role_id: int,
        *,
        name: str | None = None,
        description: str | None = None,
    ) -> Role:
        self.require_permission(context, Action.UPDATE)
        role = self._get(role_id)
        self._refuse_built_in(role, "modified")
        if name is not None:
            if not name.strip():
                raise ValidationError("Role display name cannot be empty")
            role.name = name.strip()
        if description is not None:
            role.description = description.strip() or None
        role.updated_at = utcnow()
        self.log_operation("update_role", context, role=role.key)
        return role

    def rename_role(self, context: ServiceContext, role_id: int, new_key: str) -> Role:
        self.require_permission(context, Action.UPDATE)
        role = self._get(role_id)
        self._refuse_built_in(role, "renamed")
        new_key = _normalize_key(new_key)
        self._ensure_key_available(new_key, exclude_id=role.id)
        old_key = role.key
        role.key = new_key
        role.updated_at = utcnow()
        self.log_operation("rename_role", context, old=old_key, new=new_key)
        return role

    def set_role_permissions(self, context: ServiceContext, role_id: int, permissions: Iterable[str]) -> Role:
        self.require_permission(context, Action.UPDATE)
        role = self._get(role_id)
        self._refuse_built_in(role, "modified")
        perm_keys = _checked_permissions(permissions)
        role.permissions = [ensure_permission(self.s, p) for p in perm_keys]
        role.updated_at = utcnow()
        self.s.flush()
        self.log_operation("set_role_permissions", context, role=role.key, permissions=len(perm_keys))
        return role

    def delete_role(self, context: ServiceContext, role_id: int) -> None:
        self.require_permission(context, Action.DELETE)
        role = self._get(role_id)
        self._refuse_built_in(role, "deleted")
        self.s.delete(role)
        self.s.flush()
        self.log_operation("delete_role", context, role=role.key)
