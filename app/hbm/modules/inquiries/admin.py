"""
Inquiry JSON routes.
Thin glue: every rule lives in InquiryService and the status engine.
"""
from __future__ import annotations

from flask import Blueprint, current_app, request

from app.hbm.auth import current_context
from app.hbm.db import db_session, status_ledger
from app.hbm.status.analytics import get_actionable_inquiries
from app.hbm.status.types import EntityType
from app.hbm.utils import format_duration

from .service import InquiryService

bp = Blueprint("inquiries", __name__)


def _service() -> InquiryService:
    s = db_session()
    return InquiryService(s, status_ledger(s))


@bp.post("")
def inquiry_create():
    payload = request.get_json(silent=True) or {}
    svc = _service()
    inquiry = svc.create_inquiry(
        current_context(),
        customer_name=payload.get("customer_name") or "",
        customer_email=payload.get("customer_email") or "",
        message=payload.get("message") or "",
        company_name=payload.get("company_name"),
    )
    svc.s.commit()
    return {"inquiry": inquiry.to_dict()}, 201


@bp.get("/<int:inquiry_id>")
def inquiry_detail(inquiry_id: int):
    inquiry = _service().get_inquiry(current_context(), inquiry_id)
    return {"inquiry": inquiry.to_dict()}


@bp.get("/<int:inquiry_id>/history")
def inquiry_history(inquiry_id: int):
    svc = _service()
    svc.get_inquiry(current_context(), inquiry_id)
    history = svc.ledger.get_entity_status_history(EntityType.INQUIRY, inquiry_id)
    return {"history": [c.to_dict() for c in history]}


@bp.get("/<int:inquiry_id>/timeline")
def inquiry_timeline(inquiry_id: int):
    svc = _service()
    svc.get_inquiry(current_context(), inquiry_id)
    timeline = []
    for entry in svc.ledger.get_status_timeline(EntityType.INQUIRY, inquiry_id):
        row = entry.to_dict()
        row["duration_display"] = format_duration(entry.duration)
        timeline.append(row)
    return {"timeline": timeline}


@bp.post("/<int:inquiry_id>/status")
def inquiry_status_change(inquiry_id: int):
    payload = request.get_json(silent=True) or {}
    svc = _service()
    inquiry = svc.transition_inquiry_status(
        current_context(),
        inquiry_id,
        payload.get("from_status"),
        payload.get("to_status"),
        reason=(payload.get("reason") or "").strip() or None,
    )
    svc.s.commit()
    return {"inquiry": inquiry.to_dict()}


@bp.get("/actionable")
def inquiry_actionable():
    inquiries = _service().snapshots(current_context())
    buckets = get_actionable_inquiries(
        inquiries,
        new_sla_days=current_app.config["INQUIRY_NEW_SLA_DAYS"],
        in_progress_sla_days=current_app.config["INQUIRY_IN_PROGRESS_SLA_DAYS"],
    )
    return {name: [i.id for i in items] for name, items in buckets.items()}


@bp.get("/consistency")
def inquiry_consistency():
    result = _service().check_status_consistency(
        current_context(),
        new_sla_days=current_app.config["INQUIRY_NEW_SLA_DAYS"],
        in_progress_sla_days=current_app.config["INQUIRY_IN_PROGRESS_SLA_DAYS"],
    )
    return result.to_dict()
