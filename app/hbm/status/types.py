"""
Status enumerations, entity snapshots and transition graphs.
"""
from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any


class EntityType(str, Enum):
    ORDER = "order"
    INQUIRY = "inquiry"


class OrderStatus(str, Enum):
    REQUESTED = "requested"
    QUOTED = "quoted"
    CONFIRMED = "confirmed"
    PRODUCTION = "production"
    COMPLETED = "completed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELED = "canceled"


class InquiryStatus(IntEnum):
    REJECTED = 0
    NEW = 1
    ACCEPTED = 2
    IN_PROGRESS = 3
    CLOSED = 4

    @property
    def label(self) -> str:
        return self.name.lower()


INQUIRY_STATUS_LABELS = MappingProxyType({s: s.label for s in InquiryStatus})

# Graph form: status -> statuses it may move to. Empty set means terminal.
ORDER_STATUS_TRANSITIONS: MappingProxyType[OrderStatus, frozenset[OrderStatus]] = MappingProxyType(
    {
        OrderStatus.REQUESTED: frozenset({OrderStatus.QUOTED, OrderStatus.CANCELED}),
        OrderStatus.QUOTED: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELED}),
        OrderStatus.CONFIRMED: frozenset({OrderStatus.PRODUCTION, OrderStatus.CANCELED}),
        OrderStatus.PRODUCTION: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELED}),
        OrderStatus.COMPLETED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELED}),
        OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELED}),
        OrderStatus.DELIVERED: frozenset({OrderStatus.CANCELED}),
        OrderStatus.CANCELED: frozenset(),
    }
)

INQUIRY_STATUS_TRANSITIONS: MappingProxyType[InquiryStatus, frozenset[InquiryStatus]] = MappingProxyType(
    {
        InquiryStatus.NEW: frozenset({InquiryStatus.ACCEPTED, InquiryStatus.REJECTED}),
        InquiryStatus.ACCEPTED: frozenset({InquiryStatus.IN_PROGRESS, InquiryStatus.REJECTED}),
        # IN_PROGRESS -> ACCEPTED is the re-open path.
        InquiryStatus.IN_PROGRESS: frozenset({InquiryStatus.CLOSED, InquiryStatus.ACCEPTED}),
        InquiryStatus.REJECTED: frozenset(),
        InquiryStatus.CLOSED: frozenset(),
    }
)


@dataclass(frozen=True)
class OrderSnapshot:
    id: str
    created_at: datetime
    order_number: str | None = None
    quoted_at: datetime | None = None
    quote_valid_until: datetime | None = None
    confirmed_at: datetime | None = None
    production_started_at: datetime | None = None
    production_stage_id: str | None = None
    completed_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    canceled_at: datetime | None = None

    @classmethod
    def from_entity(cls, obj: Any) -> "OrderSnapshot":
        """Snapshot any object exposing the order timestamp attributes (e.g. an ORM row)."""
        return cls(
            id=str(obj.id),
            created_at=obj.created_at,
            order_number=getattr(obj, "order_number", None),
            quoted_at=getattr(obj, "quoted_at", None),
            quote_valid_until=getattr(obj, "quote_valid_until", None),
            confirmed_at=getattr(obj, "confirmed_at", None),
            production_started_at=getattr(obj, "production_started_at", None),
            production_stage_id=getattr(obj, "production_stage_id", None),
            completed_at=getattr(obj, "completed_at", None),
            shipped_at=getattr(obj, "shipped_at", None),
            delivered_at=getattr(obj, "delivered_at", None),
            canceled_at=getattr(obj, "canceled_at", None),
        )


@dataclass(frozen=True)
class InquirySnapshot:
    id: str
    status: int
    created_at: datetime
    accepted_at: datetime | None = None
    rejected_at: datetime | None = None
    closed_at: datetime | None = None

    @classmethod
    def from_entity(cls, obj: Any) -> "InquirySnapshot":
        return cls(
            id=str(obj.id),
            status=int(obj.status),
            created_at=obj.created_at,
            accepted_at=getattr(obj, "accepted_at", None),
            rejected_at=getattr(obj, "rejected_at", None),
            closed_at=getattr(obj, "closed_at", None),
        )


@dataclass(frozen=True)
class StatusComputation:
    status: str
    computed_at: datetime
    factors: tuple[str, ...]
    is_terminal: bool
    can_transition_to: tuple[str, ...]


@dataclass(frozen=True)
class StatusChange:
    """One ledger entry. Never mutated after creation."""

    id: str
    entity_type: EntityType
    entity_id: str
    from_status: str | None
    to_status: str
    changed_at: datetime
    sequence: int
    changed_by: str | None = None
    reason: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Read-only view over a private copy; callers cannot rewrite stored history.
        object.__setattr__(self, "metadata", MappingProxyType(copy.deepcopy(dict(self.metadata))))

    def metadata_dict(self) -> dict[str, Any]:
        return copy.deepcopy(dict(self.metadata))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_at": self.changed_at.isoformat(),
            "changed_by": self.changed_by,
            "reason": self.reason,
            "metadata": self.metadata_dict(),
        }


@dataclass(frozen=True)
class StatusStatistics:
    entity_type: EntityType
    status_counts: dict[str, int]
    total_count: int
    computed_at: datetime
