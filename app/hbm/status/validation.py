"""
Advisory validation over status data.

These checks never raise and never write. They report ``errors`` (the change
or data is wrong) and ``warnings`` (allowed, but worth a second look) so
callers can show both before committing to a transition or while auditing
stored rows.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from app.hbm.errors import ValidationError
from app.hbm.status.analytics import INQUIRY_IN_PROGRESS_SLA_DAYS, INQUIRY_NEW_SLA_DAYS
from app.hbm.status.inquiry_status import (
    coerce_inquiry_status,
    is_valid_inquiry_status_transition,
    validate_inquiry_status_data,
)
from app.hbm.status.order_status import (
    compute_order_status,
    derive_order_status,
    is_valid_order_status_transition,
    validate_order_date_logic,
)
from app.hbm.status.transitions import coerce_entity_type, status_label
from app.hbm.status.types import EntityType, InquirySnapshot, InquiryStatus, OrderSnapshot, OrderStatus
from app.hbm.utils import utcnow

_PAST_CONFIRMATION = (OrderStatus.PRODUCTION, OrderStatus.COMPLETED, OrderStatus.SHIPPED, OrderStatus.DELIVERED)


@dataclass(frozen=True)
class StatusValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def from_lists(cls, errors: list[str], warnings: list[str]) -> "StatusValidationResult":
        return cls(is_valid=not errors, errors=errors, warnings=warnings)

    def to_dict(self) -> dict[str, Any]:
        return {"is_valid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


def validate_order_status_data(order: OrderSnapshot) -> list[str]:
    errors: list[str] = []
    if not order.id:
        errors.append("Order ID is required")
    if not order.order_number:
        errors.append("Order number is required")
    if order.created_at is None:
        errors.append("Order creation date is required")
    elif order.quoted_at is not None and order.quoted_at < order.created_at:
        errors.append("Quotation date cannot be before creation date")
    errors.extend(validate_order_date_logic(order).errors)
    return errors


def validate_order_status_transition(
    order: OrderSnapshot,
    to_status: OrderStatus | str,
    *,
    changed_by: str | None = None,
    reason: str | None = None,
    allow_force: bool = False,
) -> StatusValidationResult:
    """
    Judge a proposed move of ``order`` to ``to_status``.

    With ``allow_force`` an edge outside the transition graph is downgraded
    to a warning; data errors always fail.
    """
    errors = validate_order_status_data(order)
    warnings: list[str] = []
    if errors:
        return StatusValidationResult.from_lists(errors, warnings)

    target = OrderStatus(status_label(EntityType.ORDER, to_status))
    current = compute_order_status(order)
    if not is_valid_order_status_transition(current.status, target):
        if allow_force:
            warnings.append(f"Forced transition from {current.status} to {target.value} bypasses the workflow")
        else:
            allowed = ", ".join(current.can_transition_to) or "none"
            errors.append(f"Invalid transition from {current.status} to {target.value}. Valid transitions: {allowed}")

    if target is OrderStatus.CANCELED:
        if not reason:
            warnings.append("Cancellation reason should be provided")
        if not changed_by:
            warnings.append("Cancellations should include who canceled the order")
    elif current.is_terminal:
        warnings.append(f"Transitioning from terminal status {current.status} is unusual")
    return StatusValidationResult.from_lists(errors, warnings)


def validate_inquiry_status_transition(
    inquiry: InquirySnapshot,
    to_status: InquiryStatus | int | str,
    *,
    changed_by: str | None = None,
    reason: str | None = None,
    allow_force: bool = False,
) -> StatusValidationResult:
    errors = validate_inquiry_status_data(inquiry)
    warnings: list[str] = []
    if errors:
        return StatusValidationResult.from_lists(errors, warnings)

    current = InquiryStatus(inquiry.status)
    target = coerce_inquiry_status(to_status)
    if not is_valid_inquiry_status_transition(current, target):
        if allow_force:
            warnings.append(f"Forced transition from {current.label} to {target.label} bypasses the workflow")
        else:
            errors.append(f"Transition from {current.label} to {target.label} is not allowed")

    if target is InquiryStatus.ACCEPTED and inquiry.rejected_at is not None:
        errors.append("Cannot accept an inquiry that has been rejected")
    elif target is InquiryStatus.REJECTED:
        if not reason:
            warnings.append("Rejection reason should be provided")
        if not changed_by:
            warnings.append("Rejections should include who rejected the inquiry")
    elif target is InquiryStatus.IN_PROGRESS and current is not InquiryStatus.ACCEPTED:
        warnings.append("Inquiries are typically moved to in_progress after acceptance")
    elif target is InquiryStatus.CLOSED:
        if current is InquiryStatus.NEW:
            warnings.append("Closing an inquiry without processing it first is unusual")
        if not reason:
            warnings.append("Closure reason should be provided")
    return StatusValidationResult.from_lists(errors, warnings)


def validate_status_consistency(
    orders: Iterable[OrderSnapshot] = (),
    inquiries: Iterable[InquirySnapshot] = (),
    *,
    now: datetime | None = None,
    new_sla_days: int = INQUIRY_NEW_SLA_DAYS,
    in_progress_sla_days: int = INQUIRY_IN_PROGRESS_SLA_DAYS,
) -> StatusValidationResult:
    """
    Audit stored rows: orders past confirmation with a gap in their timestamps
    and inquiries sitting in an open status beyond their SLA.
    """
    now = now or utcnow()
    errors: list[str] = []
    warnings: list[str] = []

    for order in orders:
        status = derive_order_status(order)
        name = order.order_number or order.id
        if status in _PAST_CONFIRMATION and order.confirmed_at is None:
            warnings.append(f"Order {name} is {status.value} but was never confirmed")
        if status is OrderStatus.DELIVERED:
            if order.completed_at is None:
                errors.append(f"Order {name} is delivered but missing completion date")
            if order.shipped_at is None:
                errors.append(f"Order {name} is delivered but missing shipped date")

    sla = {InquiryStatus.NEW: new_sla_days, InquiryStatus.IN_PROGRESS: in_progress_sla_days}
    for inquiry in inquiries:
        days = sla.get(inquiry.status)
        if days is None:
            continue
        age = now - inquiry.created_at
        if age > timedelta(days=days):
            label = InquiryStatus(inquiry.status).label
            warnings.append(f"Inquiry {inquiry.id} has been {label} for {age.days} days")

    return StatusValidationResult.from_lists(errors, warnings)


@dataclass(frozen=True)
class StatusTransitionRequest:
    entity_type: EntityType | str
    entity_id: str
    data: OrderSnapshot | InquirySnapshot
    to_status: object
    changed_by: str | None = None
    reason: str | None = None
    allow_force: bool = False


def validate_bulk_status_transitions(
    requests: Iterable[StatusTransitionRequest],
) -> list[tuple[str, StatusValidationResult]]:
    """One result per request, in input order. An unknown target status is reported, not raised."""
    results: list[tuple[str, StatusValidationResult]] = []
    for req in requests:
        options = {"changed_by": req.changed_by, "reason": req.reason, "allow_force": req.allow_force}
        try:
            if coerce_entity_type(req.entity_type) is EntityType.ORDER:
                result = validate_order_status_transition(req.data, req.to_status, **options)
            else:
                result = validate_inquiry_status_transition(req.data, req.to_status, **options)
        except ValidationError as e:
            result = StatusValidationResult.from_lists([e.message], [])
        results.append((str(req.entity_id), result))
    return results
