"""
Unit tests for the permission catalog.

Tests cover:
- Building and parsing resource:action strings
- Catalog enumeration and filtering
- Default role permission sets and protected roles
- Permission-set helpers
"""

import pytest

from app.hbm.permissions import (
    ADMIN,
    ALL_PERMISSIONS,
    DEFAULT_ROLE_PERMISSIONS,
    PROTECTED_ROLES,
    STAFF,
    SUPERADMIN,
    Action,
    ParsedPermission,
    Resource,
    compare_permissions,
    create_permission,
    generate_permission_matrix,
    get_action_permissions,
    get_missing_permissions,
    get_permission_description,
    get_resource_permissions,
    get_role_info,
    group_permissions_by_resource,
    has_all_permissions,
    has_any_permissions,
    is_protected_role,
    is_valid_permission,
    parse_permission,
    validate_permission_set,
)


class TestCreateAndParse:
    def test_create_permission(self):
        assert create_permission(Resource.ORDERS, Action.READ) == "orders:read"
        assert create_permission("inquiries", "update") == "inquiries:update"

    def test_every_pair_round_trips(self):
        for r in Resource:
            for a in Action:
                assert parse_permission(create_permission(r, a)) == ParsedPermission(r, a)

    @pytest.mark.parametrize(
        "value",
        [
            None,
            42,
            "",
            "orders",
            "orders:",
            ":read",
            "orders:read:extra",
            "Orders:read",
            "orders:READ",
            "widgets:read",
            "orders:manage",
            " orders:read",
        ],
    )
    def test_parse_rejects_malformed(self, value):
        assert parse_permission(value) is None
        assert is_valid_permission(value) is False

    def test_create_rejects_unknown_members(self):
        with pytest.raises(ValueError):
            create_permission("widgets", "read")


class TestCatalog:
    def test_all_permissions_is_full_cross_product(self):
        assert len(ALL_PERMISSIONS) == len(Resource) * len(Action)
        assert len(set(ALL_PERMISSIONS)) == len(ALL_PERMISSIONS)

    def test_all_permissions_is_resource_major(self):
        assert ALL_PERMISSIONS[: len(Action)] == tuple(f"users:{a.value}" for a in Action)

    def test_resource_and_action_filters(self):
        assert get_resource_permissions(Resource.MEDIA) == [
            "media:create",
            "media:read",
            "media:update",
            "media:delete",
        ]
        reads = get_action_permissions(Action.READ)
        assert len(reads) == len(Resource)
        assert all(p.endswith(":read") for p in reads)


class TestDefaultRoles:
    def test_superadmin_has_everything(self):
        assert set(DEFAULT_ROLE_PERMISSIONS[SUPERADMIN]) == set(ALL_PERMISSIONS)

    def test_role_sizes_are_strictly_ordered(self):
        staff = set(DEFAULT_ROLE_PERMISSIONS[STAFF])
        admin = set(DEFAULT_ROLE_PERMISSIONS[ADMIN])
        superadmin = set(DEFAULT_ROLE_PERMISSIONS[SUPERADMIN])
        assert len(staff) < len(admin) < len(superadmin)
        assert staff < admin < superadmin

    def test_admin_cannot_manage_users(self):
        assert not any(p.startswith("users:") for p in DEFAULT_ROLE_PERMISSIONS[ADMIN])

    def test_defaults_are_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_ROLE_PERMISSIONS["intern"] = ()  # type: ignore[index]

    def test_protected_roles(self):
        assert PROTECTED_ROLES == {"superadmin", "admin", "staff"}
        for role in ("superadmin", "admin", "staff"):
            assert is_protected_role(role)
        for role in ("Admin", "staff ", "sales", "", None, 1):
            assert not is_protected_role(role)


class TestPermissionHelpers:
    def test_missing_and_has(self):
        granted = ["orders:read", "orders:update"]
        assert get_missing_permissions(granted, ["orders:read", "orders:delete"]) == ["orders:delete"]
        assert has_all_permissions(granted, ["orders:read"])
        assert not has_all_permissions(granted, ["orders:read", "orders:delete"])
        assert has_any_permissions(granted, ["orders:delete", "orders:update"])
        assert not has_any_permissions([], ["orders:read"])

    def test_compare_permissions(self):
        diff = compare_permissions(["orders:read", "media:read"], ["orders:read", "inquiries:read"])
        assert diff == {
            "added": ["inquiries:read"],
            "removed": ["media:read"],
            "unchanged": ["orders:read"],
        }

    def test_validate_and_group(self):
        split = validate_permission_set(["orders:read", "bogus", "media:create"])
        assert split == {"valid": ["orders:read", "media:create"], "invalid": ["bogus"]}
        grouped = group_permissions_by_resource(["orders:read", "bogus", "orders:update"])
        assert grouped == {"orders": ["orders:read", "orders:update"], "invalid": ["bogus"]}

    def test_matrix_marks_granted_cells(self):
        matrix = generate_permission_matrix(["orders:read"])
        orders = next(row for row in matrix if row["resource"] == "orders")
        allowed = {cell["action"]: cell["allowed"] for cell in orders["permissions"]}
        assert allowed == {"create": False, "read": True, "update": False, "delete": False}

    def test_descriptions_and_role_info(self):
        assert get_permission_description("orders:read") == "Read Orders"
        assert get_permission_description("nope") == "Invalid permission format"
        info = get_role_info("staff")
        assert info["is_protected"] is True
        assert info["permissions"] == list(DEFAULT_ROLE_PERMISSIONS[STAFF])
        assert get_role_info("sales", ["orders:read"])["is_protected"] is False
