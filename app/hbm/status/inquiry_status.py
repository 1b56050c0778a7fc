"""
Inquiry status: explicit ordinal 0-4 with a fixed transition graph.
"""
from __future__ import annotations

import logging
from datetime import datetime

from app.hbm.errors import ValidationError
from app.hbm.status.types import (
    INQUIRY_STATUS_TRANSITIONS,
    InquirySnapshot,
    InquiryStatus,
    StatusComputation,
)
from app.hbm.utils import utcnow

logger = logging.getLogger(__name__)


def coerce_inquiry_status(value: InquiryStatus | int | str) -> InquiryStatus:
    """Accept an ordinal, an enum member, a label ("in_progress") or a name ("IN_PROGRESS")."""
    if isinstance(value, InquiryStatus):
        return value
    if isinstance(value, str):
        key = value.strip().upper()
        if key in InquiryStatus.__members__:
            return InquiryStatus[key]
        raise ValidationError(f"Unknown inquiry status: {value!r}")
    try:
        return InquiryStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown inquiry status: {value!r}") from None


def get_inquiry_status_label(status: int) -> str:
    try:
        return InquiryStatus(status).label
    except ValueError:
        return "unknown"


def get_inquiry_status_value(label: str) -> InquiryStatus:
    key = (label or "").strip().upper()
    return InquiryStatus[key] if key in InquiryStatus.__members__ else InquiryStatus.NEW


def is_valid_inquiry_status_transition(current: InquiryStatus | int, target: InquiryStatus | int) -> bool:
    return InquiryStatus(target) in INQUIRY_STATUS_TRANSITIONS[InquiryStatus(current)]


def get_next_inquiry_statuses(current: InquiryStatus | int) -> list[InquiryStatus]:
    return sorted(INQUIRY_STATUS_TRANSITIONS[InquiryStatus(current)])


def is_terminal_inquiry_status(status: InquiryStatus | int) -> bool:
    return not INQUIRY_STATUS_TRANSITIONS[InquiryStatus(status)]


def compute_inquiry_status(inquiry: InquirySnapshot, *, now: datetime | None = None) -> StatusComputation:
    computed_at = now or utcnow()
    try:
        status = InquiryStatus(inquiry.status)
    except ValueError:
        logger.warning("Inquiry %s has out-of-range status %r; treating as new", inquiry.id, inquiry.status)
        status = InquiryStatus.NEW
        factors = [f"Invalid status value: {inquiry.status}", "Defaulted to NEW status due to invalid value"]
    else:
        factors = [f"status field is {int(status)} ({status.label})"]
        stamp = {
            InquiryStatus.ACCEPTED: inquiry.accepted_at,
            InquiryStatus.REJECTED: inquiry.rejected_at,
            InquiryStatus.CLOSED: inquiry.closed_at,
        }.get(status)
        if stamp is not None:
            factors.append(f"{status.label} on {stamp.isoformat()}")
    return StatusComputation(
        status=status.label,
        computed_at=computed_at,
        factors=tuple(factors),
        is_terminal=is_terminal_inquiry_status(status),
        can_transition_to=tuple(s.label for s in get_next_inquiry_statuses(status)),
    )


def check_inquiry_transition(
    current: InquiryStatus | int,
    from_status: InquiryStatus | int,
    to_status: InquiryStatus | int,
) -> None:
    """
    Raise ValidationError unless the stored status still equals ``from_status``
    and ``from_status -> to_status`` is an edge of the transition graph.
    """
    current_s = coerce_inquiry_status(current)
    from_s = coerce_inquiry_status(from_status)
    to_s = coerce_inquiry_status(to_status)
    if current_s is not from_s:
        raise ValidationError(
            f"Inquiry is currently {current_s.label}, not {from_s.label}; cannot move to {to_s.label}",
            current_status=current_s.label,
            to_status=to_s.label,
        )
    if to_s not in INQUIRY_STATUS_TRANSITIONS[from_s]:
        raise ValidationError(
            f"Invalid inquiry status transition from {from_s.label} to {to_s.label}",
            current_status=from_s.label,
            to_status=to_s.label,
        )


def inquiry_transition_timestamps(to_status: InquiryStatus | int, now: datetime) -> dict[str, datetime]:
    """Timestamp columns to stamp when entering ``to_status``."""
    return {
        InquiryStatus.ACCEPTED: {"accepted_at": now},
        InquiryStatus.REJECTED: {"rejected_at": now},
        InquiryStatus.CLOSED: {"closed_at": now},
    }.get(InquiryStatus(to_status), {})


def validate_inquiry_status_data(inquiry: InquirySnapshot) -> list[str]:
    errors: list[str] = []
    if not inquiry.id:
        errors.append("Inquiry ID is required")
    if inquiry.status not in set(InquiryStatus):
        errors.append("Inquiry status must be between 0 and 4")
    for name in ("accepted_at", "rejected_at", "closed_at"):
        stamp = getattr(inquiry, name)
        if stamp is not None and inquiry.created_at is not None and stamp < inquiry.created_at:
            errors.append(f"{name.replace('_at', '').capitalize()} date cannot be before creation date")
    if inquiry.status == InquiryStatus.REJECTED and inquiry.rejected_at is None:
        errors.append("Rejected status requires rejected_at date")
    if inquiry.status == InquiryStatus.CLOSED and inquiry.closed_at is None:
        errors.append("Closed status requires closed_at date")
    return errors
