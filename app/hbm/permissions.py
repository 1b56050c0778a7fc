"""
Permission catalog.

Permissions are canonical lowercase ``resource:action`` strings built from two
closed enumerations. Everything in this module is immutable configuration.
"""
from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Iterable, NamedTuple


class Resource(str, Enum):
    USERS = "users"
    CUSTOMERS = "customers"
    PRODUCTS = "products"
    ORDERS = "orders"
    INQUIRIES = "inquiries"
    MEDIA = "media"


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class ParsedPermission(NamedTuple):
    resource: Resource
    action: Action


_RESOURCE_VALUES = {r.value: r for r in Resource}
_ACTION_VALUES = {a.value: a for a in Action}


def create_permission(resource: Resource | str, action: Action | str) -> str:
    r = Resource(resource)
    a = Action(action)
    return f"{r.value}:{a.value}"


def parse_permission(permission: object) -> ParsedPermission | None:
    """Parse ``resource:action``; returns None for anything malformed (never raises)."""
    if not isinstance(permission, str):
        return None
    parts = permission.split(":")
    if len(parts) != 2:
        return None
    resource, action = parts
    if not resource or not action:
        return None
    r = _RESOURCE_VALUES.get(resource)
    a = _ACTION_VALUES.get(action)
    if r is None or a is None:
        return None
    return ParsedPermission(r, a)


def is_valid_permission(permission: object) -> bool:
    return parse_permission(permission) is not None


ALL_PERMISSIONS: tuple[str, ...] = tuple(create_permission(r, a) for r in Resource for a in Action)


def get_resource_permissions(resource: Resource | str) -> list[str]:
    prefix = f"{Resource(resource).value}:"
    return [p for p in ALL_PERMISSIONS if p.startswith(prefix)]


def get_action_permissions(action: Action | str) -> list[str]:
    suffix = f":{Action(action).value}"
    return [p for p in ALL_PERMISSIONS if p.endswith(suffix)]


SUPERADMIN = "superadmin"
ADMIN = "admin"
STAFF = "staff"

DEFAULT_ROLE_PERMISSIONS: MappingProxyType[str, tuple[str, ...]] = MappingProxyType(
    {
        SUPERADMIN: ALL_PERMISSIONS,
        # Everything except user management.
        ADMIN: tuple(p for p in ALL_PERMISSIONS if not p.startswith(f"{Resource.USERS.value}:")),
        STAFF: (
            create_permission(Resource.CUSTOMERS, Action.READ),
            create_permission(Resource.CUSTOMERS, Action.UPDATE),
            create_permission(Resource.PRODUCTS, Action.READ),
            create_permission(Resource.ORDERS, Action.READ),
            create_permission(Resource.ORDERS, Action.UPDATE),
            create_permission(Resource.INQUIRIES, Action.READ),
            create_permission(Resource.INQUIRIES, Action.UPDATE),
            create_permission(Resource.MEDIA, Action.READ),
            create_permission(Resource.MEDIA, Action.CREATE),
        ),
    }
)

PROTECTED_ROLES = frozenset({SUPERADMIN, ADMIN, STAFF})


def is_protected_role(role: object) -> bool:
    return isinstance(role, str) and role in PROTECTED_ROLES


# --- permission-set helpers -------------------------------------------------

_RESOURCE_NAMES = {
    Resource.USERS: "Users",
    Resource.CUSTOMERS: "Customers",
    Resource.PRODUCTS: "Products",
    Resource.ORDERS: "Orders",
    Resource.INQUIRIES: "Inquiries",
    Resource.MEDIA: "Media",
}


def generate_permission_matrix(user_permissions: Iterable[str]) -> list[dict]:
    """Resource × action grid for role editors."""
    granted = set(user_permissions)
    return [
        {
            "resource": r.value,
            "permissions": [
                {"action": a.value, "allowed": create_permission(r, a) in granted}
                for a in Action
            ],
        }
        for r in Resource
    ]


def get_missing_permissions(user_permissions: Iterable[str], required: Iterable[str]) -> list[str]:
    granted = set(user_permissions)
    return [p for p in required if p not in granted]


def has_all_permissions(user_permissions: Iterable[str], required: Iterable[str]) -> bool:
    return not get_missing_permissions(user_permissions, required)


def has_any_permissions(user_permissions: Iterable[str], required: Iterable[str]) -> bool:
    granted = set(user_permissions)
    return any(p in granted for p in required)


def compare_permissions(old: Iterable[str], new: Iterable[str]) -> dict[str, list[str]]:
    old_list = list(old)
    new_list = list(new)
    old_set, new_set = set(old_list), set(new_list)
    return {
        "added": [p for p in new_list if p not in old_set],
        "removed": [p for p in old_list if p not in new_set],
        "unchanged": [p for p in old_list if p in new_set],
    }


def validate_permission_set(permissions: Iterable[str]) -> dict[str, list[str]]:
    valid: list[str] = []
    invalid: list[str] = []
    for p in permissions:
        (valid if is_valid_permission(p) else invalid).append(p)
    return {"valid": valid, "invalid": invalid}


def group_permissions_by_resource(permissions: Iterable[str]) -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = {}
    for p in permissions:
        parsed = parse_permission(p)
        key = parsed.resource.value if parsed else "invalid"
        grouped.setdefault(key, []).append(p)
    return grouped


def get_permission_description(permission: str) -> str:
    parsed = parse_permission(permission)
    if parsed is None:
        return "Invalid permission format"
    return f"{parsed.action.value.capitalize()} {_RESOURCE_NAMES[parsed.resource]}"


def get_role_info(role: str, custom_permissions: Iterable[str] | None = None) -> dict:
    if custom_permissions is not None:
        perms = list(custom_permissions)
    else:
        perms = list(DEFAULT_ROLE_PERMISSIONS.get(role, ()))
    return {"name": role, "permissions": perms, "is_protected": is_protected_role(role)}
