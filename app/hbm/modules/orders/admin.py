"""
Order JSON routes.
"""
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, request

from app.hbm.auth import current_context
from app.hbm.db import db_session, status_ledger
from app.hbm.errors import ValidationError
from app.hbm.status.analytics import calculate_status_distribution
from app.hbm.status.types import EntityType

from .service import OrderService

bp = Blueprint("orders", __name__)


def _service() -> OrderService:
    s = db_session()
    return OrderService(s, status_ledger(s))


def _parse_datetime(value: str | None, field: str) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime") from None


@bp.post("")
def order_create():
    payload = request.get_json(silent=True) or {}
    svc = _service()
    order = svc.create_order(
        current_context(),
        order_number=payload.get("order_number") or "",
        customer_id=payload.get("customer_id"),
        notes=payload.get("notes"),
    )
    svc.s.commit()
    return {"order": order.to_dict()}, 201


@bp.get("")
def order_list():
    statuses = request.args.getlist("status")
    orders = _service().list_orders(current_context(), statuses=statuses or None)
    return {"orders": [o.to_dict() for o in orders]}


@bp.get("/<int:order_id>")
def order_detail(order_id: int):
    order = _service().get_order(current_context(), order_id)
    return {"order": order.to_dict()}


@bp.get("/<int:order_id>/history")
def order_history(order_id: int):
    svc = _service()
    svc.get_order(current_context(), order_id)
    history = svc.ledger.get_entity_status_history(EntityType.ORDER, order_id)
    return {"history": [c.to_dict() for c in history]}


@bp.post("/<int:order_id>/status")
def order_status_change(order_id: int):
    payload = request.get_json(silent=True) or {}
    svc = _service()
    order = svc.transition_order_status(
        current_context(),
        order_id,
        payload.get("from_status") or "",
        payload.get("to_status") or "",
        reason=(payload.get("reason") or "").strip() or None,
        quote_valid_until=_parse_datetime(payload.get("quote_valid_until"), "quote_valid_until"),
        production_stage_id=payload.get("production_stage_id"),
    )
    svc.s.commit()
    return {"order": order.to_dict()}


@bp.get("/actionable")
def order_actionable():
    buckets = _service().get_actionable_orders(
        current_context(),
        quote_validity_days=current_app.config["QUOTE_VALIDITY_DAYS"],
    )
    return {name: [o.id for o in items] for name, items in buckets.items()}


@bp.get("/statistics")
def order_statistics():
    stats = _service().get_order_statistics(current_context())
    return {
        "entity_type": stats.entity_type.value,
        "status_counts": stats.status_counts,
        "total_count": stats.total_count,
        "computed_at": stats.computed_at.isoformat(),
        "distribution": calculate_status_distribution(stats),
    }


@bp.get("/consistency")
def order_consistency():
    return _service().check_status_consistency(current_context()).to_dict()


@bp.post("/validate-transitions")
def order_validate_transitions():
    payload = request.get_json(silent=True) or {}
    proposals = payload.get("transitions")
    if not isinstance(proposals, list):
        raise ValidationError("transitions must be a list")
    results = _service().validate_transitions(current_context(), proposals)
    return {"results": [{"order_id": order_id, **result.to_dict()} for order_id, result in results]}
