"""
Role management JSON routes.
"""
from __future__ import annotations

from flask import Blueprint, request

from app.hbm.auth import current_context
from app.hbm.db import db_session
from app.hbm.models import Role
from app.hbm.permissions import ALL_PERMISSIONS, generate_permission_matrix, get_permission_description
from app.hbm.rbac import require_permission

from .service import RoleService

bp = Blueprint("roles", __name__)


def _role_dict(role: Role) -> dict:
    return {
        "id": role.id,
        "key": role.key,
        "name": role.name,
        "description": role.description,
        "is_built_in": role.is_built_in,
        "permissions": role.permission_keys,
    }


@bp.get("")
def roles_list():
    roles = RoleService(db_session()).list_roles(current_context())
    return {"roles": [_role_dict(r) for r in roles]}


@bp.get("/permissions")
@require_permission("users:read")
def permissions_catalog():
    return {"permissions": [{"key": p, "description": get_permission_description(p)} for p in ALL_PERMISSIONS]}


@bp.get("/<int:role_id>")
def role_detail(role_id: int):
    role = RoleService(db_session()).get_role(current_context(), role_id)
    return {"role": _role_dict(role), "matrix": generate_permission_matrix(role.permission_keys)}


@bp.post("")
def role_create():
    payload = request.get_json(silent=True) or {}
    svc = RoleService(db_session())
    role = svc.create_role(
        current_context(),
        key=payload.get("key") or "",
        name=payload.get("name"),
        description=payload.get("description"),
        permissions=payload.get("permissions") or [],
    )
    svc.s.commit()
    return {"role": _role_dict(role)}, 201


@bp.put("/<int:role_id>/permissions")
def role_set_permissions(role_id: int):
    payload = request.get_json(silent=True) or {}
    svc = RoleService(db_session())
    role = svc.set_role_permissions(current_context(), role_id, payload.get("permissions") or [])
    svc.s.commit()
    return {"role": _role_dict(role)}


@bp.delete("/<int:role_id>")
def role_delete(role_id: int):
    svc = RoleService(db_session())
    svc.delete_role(current_context(), role_id)
    svc.s.commit()
    return {"ok": True}
