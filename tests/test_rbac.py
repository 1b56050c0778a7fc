"""Tests for the authorization guard (BaseService and the standalone validators)."""
import logging

import pytest

from app.hbm.errors import PermissionDeniedError
from app.hbm.modules.inquiries.service import InquiryService
from app.hbm.permissions import DEFAULT_ROLE_PERMISSIONS, Action, Resource
from app.hbm.rbac import (
    BaseService,
    ServiceContext,
    UserType,
    create_service_context,
    validate_customer_access,
    validate_permissions,
    validate_role,
    validate_staff_access,
)


class OrdersService(BaseService):
    resource = Resource.ORDERS


def _staff(*permissions: str, role: str | None = None) -> ServiceContext:
    return ServiceContext(user_id="u-1", user_type=UserType.STAFF, permissions=frozenset(permissions), role=role)


def _customer() -> ServiceContext:
    return ServiceContext(user_id="c-1", user_type=UserType.CUSTOMER)


def test_staff_with_permission_is_allowed():
    svc = OrdersService()
    svc.require_permission(_staff("orders:read"), Action.READ)
    assert svc.check_permission(_staff("orders:read"), "read").allowed is True


def test_staff_without_permission_is_denied():
    svc = OrdersService()
    with pytest.raises(PermissionDeniedError) as exc:
        svc.require_permission(_staff("orders:read"), Action.UPDATE)
    assert "orders:update" in str(exc.value)


def test_empty_permissions_are_denied():
    with pytest.raises(PermissionDeniedError):
        OrdersService().require_permission(_staff(), Action.READ)


def test_permission_for_other_resource_does_not_leak():
    with pytest.raises(PermissionDeniedError):
        OrdersService().require_permission(_staff("inquiries:read"), Action.READ)


@pytest.mark.parametrize(
    "context",
    [
        None,
        {"user_id": "u-1", "user_type": "staff", "permissions": {"orders:read"}},
        ServiceContext(user_id="", user_type=UserType.STAFF, permissions=frozenset({"orders:read"})),
        ServiceContext(user_id="u-1", user_type="staff", permissions=frozenset({"orders:read"})),  # type: ignore[arg-type]
    ],
)
def test_malformed_context_is_denied(context):
    result = OrdersService().check_permission(context, Action.READ)  # type: ignore[arg-type]
    assert result.allowed is False
    with pytest.raises(PermissionDeniedError):
        OrdersService().require_permission(context, Action.READ)  # type: ignore[arg-type]


def test_skip_permission_check_is_explicit_and_logged(caplog):
    svc = OrdersService()
    with caplog.at_level(logging.INFO, logger="app.hbm.rbac"):
        svc.require_permission(_staff(), Action.DELETE, skip_permission_check=True)
    assert "Permission check skipped" in caplog.text


def test_denial_is_logged(caplog):
    with caplog.at_level(logging.WARNING, logger="app.hbm.rbac"):
        with pytest.raises(PermissionDeniedError):
            OrdersService().require_permission(_staff(), Action.READ)
    assert "Permission denied" in caplog.text


def test_customers_denied_by_default():
    result = OrdersService().check_permission(_customer(), Action.READ)
    assert result.allowed is False


def test_inquiry_service_customer_override():
    svc = InquiryService(s=None, ledger=None)  # type: ignore[arg-type]
    assert svc.check_permission(_customer(), Action.CREATE).allowed is True
    assert svc.check_permission(_customer(), Action.READ).allowed is True
    assert svc.check_permission(_customer(), Action.UPDATE).allowed is False
    assert svc.check_permission(_customer(), Action.DELETE).allowed is False


def test_customer_holding_staff_permission_strings_gets_nothing_extra():
    ctx = ServiceContext(user_id="c-1", user_type=UserType.CUSTOMER, permissions=frozenset({"orders:read"}))
    assert OrdersService().check_permission(ctx, Action.READ).allowed is False


def test_create_service_context_falls_back_to_role_defaults():
    ctx = create_service_context(user_id=7, user_type="staff", role="staff")
    assert ctx.user_id == "7"
    assert ctx.user_type is UserType.STAFF
    assert ctx.permissions == frozenset(DEFAULT_ROLE_PERMISSIONS["staff"])

    explicit = create_service_context(user_id="u", user_type=UserType.STAFF, role="staff", permissions=["media:read"])
    assert explicit.permissions == frozenset({"media:read"})

    unknown = create_service_context(user_id="u", user_type=UserType.STAFF, role="sales")
    assert unknown.permissions == frozenset()


def test_validate_permissions_all_and_any():
    ctx = _staff("orders:read", "orders:update")
    validate_permissions(ctx, ["orders:read", "orders:update"])
    validate_permissions(ctx, "orders:read")
    validate_permissions(ctx, ["orders:delete", "orders:read"], require_all=False)
    with pytest.raises(PermissionDeniedError):
        validate_permissions(ctx, ["orders:read", "orders:delete"])
    with pytest.raises(PermissionDeniedError):
        validate_permissions(None, "orders:read")  # type: ignore[arg-type]


def test_validate_role_and_user_type():
    staff = _staff(role="admin")
    validate_role(staff, ["admin", "superadmin"])
    with pytest.raises(PermissionDeniedError):
        validate_role(staff, "superadmin")

    validate_staff_access(staff)
    validate_customer_access(_customer())
    with pytest.raises(PermissionDeniedError):
        validate_staff_access(_customer())
    with pytest.raises(PermissionDeniedError):
        validate_customer_access(staff)
