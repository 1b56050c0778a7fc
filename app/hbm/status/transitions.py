"""
Entity-type dispatch over the two status graphs.

Ledger rows store statuses as strings: order status values ("production") and
inquiry labels ("in_progress"). These helpers normalize and check either kind.
"""
from __future__ import annotations

from app.hbm.errors import ValidationError
from app.hbm.status.inquiry_status import coerce_inquiry_status
from app.hbm.status.types import (
    INQUIRY_STATUS_TRANSITIONS,
    ORDER_STATUS_TRANSITIONS,
    EntityType,
    InquiryStatus,
    OrderStatus,
)


def coerce_entity_type(value: EntityType | str) -> EntityType:
    try:
        return EntityType(value)
    except ValueError:
        raise ValidationError(f"Unknown entity type: {value!r}") from None


def _coerce_order_status(value: OrderStatus | str) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown order status: {value!r}") from None


def status_label(entity_type: EntityType | str, status: object) -> str:
    """Canonical string form of ``status`` for ``entity_type``; raises ValidationError if unknown."""
    et = coerce_entity_type(entity_type)
    if et is EntityType.ORDER:
        return _coerce_order_status(status).value  # type: ignore[arg-type]
    return coerce_inquiry_status(status).label  # type: ignore[arg-type]


def _graph(entity_type: EntityType) -> dict[str, frozenset[str]]:
    if entity_type is EntityType.ORDER:
        return {k.value: frozenset(v.value for v in vs) for k, vs in ORDER_STATUS_TRANSITIONS.items()}
    return {k.label: frozenset(v.label for v in vs) for k, vs in INQUIRY_STATUS_TRANSITIONS.items()}


_GRAPHS = {et: _graph(et) for et in EntityType}


def is_valid_status_transition(entity_type: EntityType | str, current: object, target: object) -> bool:
    et = coerce_entity_type(entity_type)
    return status_label(et, target) in _GRAPHS[et][status_label(et, current)]


def get_next_statuses(entity_type: EntityType | str, current: object) -> list[str]:
    et = coerce_entity_type(entity_type)
    order = [s.value for s in OrderStatus] if et is EntityType.ORDER else [s.label for s in InquiryStatus]
    return sorted(_GRAPHS[et][status_label(et, current)], key=order.index)


def is_terminal_status(entity_type: EntityType | str, status: object) -> bool:
    et = coerce_entity_type(entity_type)
    return not _GRAPHS[et][status_label(et, status)]
