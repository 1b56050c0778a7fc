"""
Read models over the status engine: badges, statistics, actionable items.

Nothing here mutates entities or the ledger. Order statuses are always derived
per entity; inquiry statuses come from the stored ordinal.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Iterable, Sequence

from app.hbm.status.inquiry_status import compute_inquiry_status
from app.hbm.status.order_status import derive_order_status
from app.hbm.status.transitions import coerce_entity_type
from app.hbm.status.types import (
    EntityType,
    InquirySnapshot,
    InquiryStatus,
    OrderSnapshot,
    OrderStatus,
    StatusStatistics,
)
from app.hbm.utils import utcnow

QUOTE_VALIDITY_DAYS = 30
INQUIRY_NEW_SLA_DAYS = 7
INQUIRY_IN_PROGRESS_SLA_DAYS = 30


@dataclass(frozen=True)
class StatusBadge:
    label: str
    color: str
    bg_color: str
    icon: str
    priority: int

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "color": self.color,
            "bg_color": self.bg_color,
            "icon": self.icon,
            "priority": self.priority,
        }


ORDER_STATUS_BADGES: MappingProxyType[OrderStatus, StatusBadge] = MappingProxyType(
    {
        OrderStatus.REQUESTED: StatusBadge("Requested", "#6B7280", "#F3F4F6", "clock", 1),
        OrderStatus.QUOTED: StatusBadge("Quoted", "#3B82F6", "#EBF5FF", "document-text", 2),
        OrderStatus.CONFIRMED: StatusBadge("Confirmed", "#10B981", "#ECFDF5", "check-circle", 3),
        OrderStatus.PRODUCTION: StatusBadge("In Production", "#8B5CF6", "#F3E8FF", "cog", 4),
        OrderStatus.COMPLETED: StatusBadge("Completed", "#059669", "#D1FAE5", "check", 5),
        OrderStatus.SHIPPED: StatusBadge("Shipped", "#0D9488", "#CCFBF1", "truck", 6),
        OrderStatus.DELIVERED: StatusBadge("Delivered", "#047857", "#A7F3D0", "home", 7),
        OrderStatus.CANCELED: StatusBadge("Canceled", "#DC2626", "#FEE2E2", "x-circle", 8),
    }
)

INQUIRY_STATUS_BADGES: MappingProxyType[InquiryStatus, StatusBadge] = MappingProxyType(
    {
        InquiryStatus.NEW: StatusBadge("New", "#3B82F6", "#EBF5FF", "mail", 1),
        InquiryStatus.ACCEPTED: StatusBadge("Accepted", "#10B981", "#ECFDF5", "check-circle", 2),
        InquiryStatus.IN_PROGRESS: StatusBadge("In Progress", "#8B5CF6", "#F3E8FF", "clock", 3),
        InquiryStatus.CLOSED: StatusBadge("Closed", "#6B7280", "#F3F4F6", "archive", 4),
        InquiryStatus.REJECTED: StatusBadge("Rejected", "#DC2626", "#FEE2E2", "x-circle", 5),
    }
)


def get_order_status_badge(status: OrderStatus | str) -> StatusBadge:
    return ORDER_STATUS_BADGES[OrderStatus(status)]


def get_inquiry_status_badge(status: InquiryStatus | int) -> StatusBadge:
    return INQUIRY_STATUS_BADGES[InquiryStatus(status)]


def _inquiry_status(inquiry: InquirySnapshot) -> InquiryStatus:
    # Out-of-range ordinals count as NEW, same as compute_inquiry_status.
    return InquiryStatus(inquiry.status) if inquiry.status in set(InquiryStatus) else InquiryStatus.NEW


# --- statistics -------------------------------------------------------------


def generate_order_status_statistics(orders: Iterable[OrderSnapshot], *, now: datetime | None = None) -> StatusStatistics:
    counts = {s.value: 0 for s in OrderStatus}
    total = 0
    for order in orders:
        counts[derive_order_status(order).value] += 1
        total += 1
    return StatusStatistics(
        entity_type=EntityType.ORDER,
        status_counts=counts,
        total_count=total,
        computed_at=now or utcnow(),
    )


def generate_inquiry_status_statistics(
    inquiries: Iterable[InquirySnapshot],
    *,
    now: datetime | None = None,
) -> StatusStatistics:
    counts = {s.label: 0 for s in InquiryStatus}
    total = 0
    for inquiry in inquiries:
        counts[compute_inquiry_status(inquiry, now=now).status] += 1
        total += 1
    return StatusStatistics(
        entity_type=EntityType.INQUIRY,
        status_counts=counts,
        total_count=total,
        computed_at=now or utcnow(),
    )


def calculate_status_distribution(stats: StatusStatistics) -> dict[str, dict[str, float]]:
    """``{status: {"count": n, "percentage": pct}}``; all percentages are 0.0 when total is 0."""
    total = stats.total_count
    return {
        status: {
            "count": count,
            "percentage": round(count / total * 100, 2) if total > 0 else 0.0,
        }
        for status, count in stats.status_counts.items()
    }


# --- filtering & sorting ----------------------------------------------------


def filter_orders_by_multiple_statuses(
    orders: Iterable[OrderSnapshot],
    statuses: Iterable[OrderStatus | str],
) -> list[OrderSnapshot]:
    wanted = {OrderStatus(s) for s in statuses}
    return [o for o in orders if derive_order_status(o) in wanted]


def filter_inquiries_by_multiple_statuses(
    inquiries: Iterable[InquirySnapshot],
    statuses: Iterable[InquiryStatus | int],
) -> list[InquirySnapshot]:
    wanted = {InquiryStatus(s) for s in statuses}
    return [i for i in inquiries if _inquiry_status(i) in wanted]


def sort_orders_by_status_priority(orders: Sequence[OrderSnapshot]) -> list[OrderSnapshot]:
    """Highest badge priority first; returns a new list, ties keep input order."""
    return sorted(orders, key=lambda o: -ORDER_STATUS_BADGES[derive_order_status(o)].priority)


def sort_inquiries_by_status_priority(inquiries: Sequence[InquirySnapshot]) -> list[InquirySnapshot]:
    """Lowest badge priority first (new before closed); returns a new list."""
    return sorted(inquiries, key=lambda i: INQUIRY_STATUS_BADGES[_inquiry_status(i)].priority)


# --- actionable items -------------------------------------------------------


def quote_expires_at(order: OrderSnapshot, *, validity_days: int = QUOTE_VALIDITY_DAYS) -> datetime | None:
    if order.quote_valid_until is not None:
        return order.quote_valid_until
    if order.quoted_at is not None:
        return order.quoted_at + timedelta(days=validity_days)
    return None


def is_quotation_expired(
    order: OrderSnapshot,
    *,
    now: datetime | None = None,
    validity_days: int = QUOTE_VALIDITY_DAYS,
) -> bool:
    """True for a quoted, never-confirmed order past its validity window."""
    if derive_order_status(order) is not OrderStatus.QUOTED:
        return False
    expires = quote_expires_at(order, validity_days=validity_days)
    return expires is not None and (now or utcnow()) > expires


def get_actionable_orders(
    orders: Iterable[OrderSnapshot],
    *,
    now: datetime | None = None,
    quote_validity_days: int = QUOTE_VALIDITY_DAYS,
) -> dict[str, list[OrderSnapshot]]:
    now = now or utcnow()
    buckets: dict[str, list[OrderSnapshot]] = {
        "needs_quotation": [],
        "needs_confirmation": [],
        "expired_quotations": [],
        "ready_for_production": [],
        "in_production": [],
        "ready_to_ship": [],
    }
    for order in orders:
        status = derive_order_status(order)
        if status is OrderStatus.REQUESTED:
            buckets["needs_quotation"].append(order)
        elif status is OrderStatus.QUOTED:
            if is_quotation_expired(order, now=now, validity_days=quote_validity_days):
                buckets["expired_quotations"].append(order)
            else:
                buckets["needs_confirmation"].append(order)
        elif status is OrderStatus.CONFIRMED:
            buckets["ready_for_production"].append(order)
        elif status is OrderStatus.PRODUCTION:
            buckets["in_production"].append(order)
        elif status is OrderStatus.COMPLETED:
            buckets["ready_to_ship"].append(order)
    return buckets


def get_actionable_inquiries(
    inquiries: Iterable[InquirySnapshot],
    *,
    now: datetime | None = None,
    new_sla_days: int = INQUIRY_NEW_SLA_DAYS,
    in_progress_sla_days: int = INQUIRY_IN_PROGRESS_SLA_DAYS,
) -> dict[str, list[InquirySnapshot]]:
    """
    Open inquiries bucketed for the work queue. An inquiry older than its SLA
    (measured from creation) goes to ``stale`` instead of its regular bucket;
    terminal inquiries are never actionable.
    """
    now = now or utcnow()
    buckets: dict[str, list[InquirySnapshot]] = {"needs_review": [], "in_progress": [], "stale": []}
    for inquiry in inquiries:
        status = _inquiry_status(inquiry)
        if status is InquiryStatus.NEW:
            bucket, sla_days = "needs_review", new_sla_days
        elif status in (InquiryStatus.ACCEPTED, InquiryStatus.IN_PROGRESS):
            bucket, sla_days = "in_progress", in_progress_sla_days
        else:
            continue
        if now - inquiry.created_at > timedelta(days=sla_days):
            bucket = "stale"
        buckets[bucket].append(inquiry)
    return buckets


# --- display ----------------------------------------------------------------


def format_status_for_display(status: str) -> str:
    """``"in_progress"`` -> ``"In Progress"``."""
    return " ".join(word[:1].upper() + word[1:].lower() for word in status.split("_") if word)


def get_status_trend_data(
    entities: Iterable[OrderSnapshot | InquirySnapshot],
    entity_type: EntityType | str,
    start: datetime,
    end: datetime,
) -> list[dict]:
    """Per-day current-status counts for entities created in ``[start, end]``, sorted by date then status."""
    et = coerce_entity_type(entity_type)
    counts: dict[tuple[str, str], int] = {}
    for entity in entities:
        if entity.created_at < start or entity.created_at > end:
            continue
        if et is EntityType.ORDER:
            status = derive_order_status(entity).value  # type: ignore[arg-type]
        else:
            status = compute_inquiry_status(entity).status  # type: ignore[arg-type]
        key = (entity.created_at.date().isoformat(), status)
        counts[key] = counts.get(key, 0) + 1
    return [{"date": d, "status": s, "count": n} for (d, s), n in sorted(counts.items())]
