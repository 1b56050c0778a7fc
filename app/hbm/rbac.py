from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Any

from flask import g

from app.hbm.errors import PermissionDeniedError
from app.hbm.permissions import DEFAULT_ROLE_PERMISSIONS, Action, Resource, create_permission

logger = logging.getLogger(__name__)


class UserType(str, Enum):
    STAFF = "staff"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class ServiceContext:
    """
    Who is calling. Built per request by the session loader and trusted as-is;
    nothing in this module authenticates.
    """

    user_id: str
    user_type: UserType
    permissions: frozenset[str] = field(default_factory=frozenset)
    role: str | None = None


@dataclass(frozen=True)
class PermissionResult:
    allowed: bool
    reason: str | None = None


def create_service_context(
    *,
    user_id: str,
    user_type: UserType | str,
    role: str | None = None,
    permissions: Iterable[str] | None = None,
) -> ServiceContext:
    if permissions is None:
        permissions = DEFAULT_ROLE_PERMISSIONS.get(role or "", ())
    return ServiceContext(
        user_id=str(user_id),
        user_type=UserType(user_type),
        permissions=frozenset(permissions),
        role=role,
    )


def _context_problem(context: object) -> str | None:
    if not isinstance(context, ServiceContext):
        return "Service context is required"
    if not context.user_id:
        return "Service context has no user id"
    if not isinstance(context.user_type, UserType):
        return "Service context has an invalid user type"
    return None


class BaseService:
    """
    Base for services bound to one resource. Every public operation calls
    ``require_permission`` with the action it performs.
    """

    resource: Resource

    def check_permission(self, context: ServiceContext, action: Action | str) -> PermissionResult:
        problem = _context_problem(context)
        if problem:
            return PermissionResult(False, problem)

        action = Action(action)
        if context.user_type is UserType.STAFF:
            required = create_permission(self.resource, action)
            if required in context.permissions:
                return PermissionResult(True)
            return PermissionResult(False, f"Missing permission: {required}")
        if context.user_type is UserType.CUSTOMER:
            return self.check_customer_permission(context, action)
        raise AssertionError(f"unhandled user type {context.user_type!r}")

    def check_customer_permission(self, context: ServiceContext, action: Action) -> PermissionResult:
        # Customers get nothing unless a service opts in.
        return PermissionResult(False, f"Customers do not have access to {self.resource.value}")

    def require_permission(
        self,
        context: ServiceContext,
        action: Action | str,
        *,
        skip_permission_check: bool = False,
    ) -> None:
        if skip_permission_check is True:
            logger.info(
                "Permission check skipped: resource=%s action=%s user_id=%s",
                self.resource.value,
                Action(action).value,
                getattr(context, "user_id", None),
            )
            return
        result = self.check_permission(context, action)
        if not result.allowed:
            logger.warning(
                "Permission denied: resource=%s action=%s user_id=%s reason=%s",
                self.resource.value,
                Action(action).value,
                getattr(context, "user_id", None),
                result.reason,
            )
            raise PermissionDeniedError(result.reason or "Insufficient permissions")

    def log_operation(self, operation: str, context: ServiceContext | None, **data: Any) -> None:
        logger.info(
            "Service.%s resource=%s user_id=%s user_type=%s %s",
            operation,
            self.resource.value,
            getattr(context, "user_id", None),
            getattr(getattr(context, "user_type", None), "value", None),
            " ".join(f"{k}={v}" for k, v in sorted(data.items())),
        )


# --- standalone validators --------------------------------------------------


def _require_context(context: object) -> ServiceContext:
    problem = _context_problem(context)
    if problem:
        raise PermissionDeniedError(problem)
    return context  # type: ignore[return-value]


def validate_permissions(
    context: ServiceContext,
    required: str | Iterable[str],
    *,
    require_all: bool = True,
    operation: str | None = None,
) -> None:
    ctx = _require_context(context)
    perms = [required] if isinstance(required, str) else list(required)
    if require_all:
        ok = all(p in ctx.permissions for p in perms)
    else:
        ok = any(p in ctx.permissions for p in perms)
    if not ok:
        suffix = f" for {operation}" if operation else ""
        raise PermissionDeniedError(f"Insufficient permissions{suffix}", required=perms)


def validate_role(context: ServiceContext, roles: str | Iterable[str]) -> None:
    ctx = _require_context(context)
    allowed = [roles] if isinstance(roles, str) else list(roles)
    if ctx.role not in allowed:
        raise PermissionDeniedError(f"Role '{ctx.role}' is not authorized", required_roles=allowed)


def validate_staff_access(context: ServiceContext) -> None:
    if _require_context(context).user_type is not UserType.STAFF:
        raise PermissionDeniedError("Staff access required")


def validate_customer_access(context: ServiceContext) -> None:
    if _require_context(context).user_type is not UserType.CUSTOMER:
        raise PermissionDeniedError("Customer access required")


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Blueprint decorator: checks ``g.service_context`` before the view runs."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            ctx: ServiceContext | None = getattr(g, "service_context", None)
            validate_permissions(ctx, permission_key, operation=fn.__name__)  # type: ignore[arg-type]
            return fn(*args, **kwargs)

        return wrapped

    return decorator
