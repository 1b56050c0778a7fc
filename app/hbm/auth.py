from __future__ import annotations

import uuid

from flask import current_app, g, request, session

from app.hbm.db import db_session
from app.hbm.modules.roles.service import role_permission_keys
from app.hbm.rbac import ServiceContext, UserType, create_service_context


def load_service_context() -> None:
    """
    Builds g.service_context from the signed session cookie
    (``user_id``, ``user_type``, ``role``). Identity is trusted as-is; this
    only resolves the role's permissions (DB first, catalog defaults otherwise).
    Also assigns a per-request request_id for log correlation.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.service_context = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    user_id = session.get("user_id")
    if not user_id:
        return
    try:
        user_type = UserType(session.get("user_type") or UserType.STAFF.value)
    except ValueError:
        current_app.logger.warning("Session has unknown user_type=%r; clearing", session.get("user_type"))
        session.clear()
        return

    role = session.get("role") or None
    permissions: list[str] | None = None
    if user_type is UserType.STAFF and role:
        permissions = role_permission_keys(db_session(), role)
    g.service_context = create_service_context(
        user_id=str(user_id),
        user_type=user_type,
        role=role,
        permissions=permissions if user_type is UserType.STAFF else (),
    )


def current_context() -> ServiceContext | None:
    return getattr(g, "service_context", None)
