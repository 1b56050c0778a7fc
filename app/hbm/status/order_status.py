"""
Order status derivation and date-logic validation.

Orders never store a status. It is derived from lifecycle timestamps, with
cancellation dominating any progress so the timestamps stay the only source
of truth.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from app.hbm.status.types import ORDER_STATUS_TRANSITIONS, OrderSnapshot, OrderStatus, StatusComputation
from app.hbm.utils import utcnow


def _derive(order: OrderSnapshot) -> tuple[OrderStatus, list[str]]:
    if order.canceled_at:
        return OrderStatus.CANCELED, ["canceled_at is set"]
    if order.delivered_at:
        return OrderStatus.DELIVERED, ["delivered_at is set"]
    if order.shipped_at:
        return OrderStatus.SHIPPED, ["shipped_at is set"]
    if order.completed_at:
        return OrderStatus.COMPLETED, ["completed_at is set"]
    if order.production_started_at or order.production_stage_id:
        factors = []
        if order.production_started_at:
            factors.append("production_started_at is set")
        if order.production_stage_id:
            factors.append("production_stage_id is set")
        return OrderStatus.PRODUCTION, factors
    if order.confirmed_at:
        return OrderStatus.CONFIRMED, ["confirmed_at is set"]
    if order.quoted_at:
        return OrderStatus.QUOTED, ["quoted_at is set"]
    return OrderStatus.REQUESTED, ["no lifecycle timestamp set"]


def derive_order_status(order: OrderSnapshot) -> OrderStatus:
    return _derive(order)[0]


def compute_order_status(order: OrderSnapshot, *, now: datetime | None = None) -> StatusComputation:
    status, factors = _derive(order)
    return StatusComputation(
        status=status.value,
        computed_at=now or utcnow(),
        factors=tuple(factors),
        is_terminal=is_terminal_order_status(status),
        can_transition_to=tuple(s.value for s in get_next_order_statuses(status)),
    )


def is_valid_order_status_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in ORDER_STATUS_TRANSITIONS[OrderStatus(current)]


def get_next_order_statuses(current: OrderStatus | str) -> list[OrderStatus]:
    return sorted(ORDER_STATUS_TRANSITIONS[OrderStatus(current)], key=list(OrderStatus).index)


def is_terminal_order_status(status: OrderStatus | str) -> bool:
    return not ORDER_STATUS_TRANSITIONS[OrderStatus(status)]


_DESCRIPTIONS = {
    OrderStatus.REQUESTED: "Order has been submitted and is awaiting quotation",
    OrderStatus.QUOTED: "Order has been quoted and is awaiting customer confirmation",
    OrderStatus.CONFIRMED: "Order has been confirmed and is ready for production",
    OrderStatus.PRODUCTION: "Order is currently in production",
    OrderStatus.COMPLETED: "Order production has been completed",
    OrderStatus.SHIPPED: "Order has been shipped to the customer",
    OrderStatus.DELIVERED: "Order has been delivered to the customer",
    OrderStatus.CANCELED: "Order has been canceled",
}


def get_order_status_description(status: OrderStatus | str) -> str:
    try:
        return _DESCRIPTIONS[OrderStatus(status)]
    except ValueError:
        return "Unknown status"


# --- date logic -------------------------------------------------------------

# (constraint name, earlier field, later field, message)
_DATE_CONSTRAINTS = (
    ("confirmed_after_quoted", "quoted_at", "confirmed_at",
     "Order confirmation date must be after quotation date"),
    ("production_after_confirmed", "confirmed_at", "production_started_at",
     "Order production start date must be after confirmation date"),
    ("completed_after_production", "production_started_at", "completed_at",
     "Order completion date must be after production start date"),
    ("shipped_after_completed", "completed_at", "shipped_at",
     "Order shipment date must be after completion date"),
    ("delivered_after_shipped", "shipped_at", "delivered_at",
     "Order delivery date must be after shipment date"),
)

ORDER_DATE_FIELDS = ("quoted_at", "confirmed_at", "production_started_at", "completed_at", "shipped_at", "delivered_at")


@dataclass(frozen=True)
class DateLogicResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    constraints: dict[str, bool] = field(default_factory=dict)


def validate_order_date_logic(order: object) -> DateLogicResult:
    """
    Check quoted ≤ confirmed ≤ production ≤ completed ≤ shipped ≤ delivered.

    Accepts a snapshot, an ORM row or a plain mapping. Each adjacent pair is
    judged on its own; a pair with a missing timestamp holds vacuously.
    """
    if isinstance(order, dict):
        get = order.get
    else:
        def get(name: str) -> object:
            return getattr(order, name, None)

    errors: list[str] = []
    constraints: dict[str, bool] = {}
    for name, earlier_field, later_field, message in _DATE_CONSTRAINTS:
        earlier, later = get(earlier_field), get(later_field)
        ok = earlier is None or later is None or earlier <= later
        constraints[name] = ok
        if not ok:
            errors.append(message)
    return DateLogicResult(is_valid=not errors, errors=errors, constraints=constraints)
