"""
Order service layer.
Orders carry no status column; a transition stamps the lifecycle timestamp for
the target status and is recorded to the ledger.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.hbm.errors import NotFoundError, ValidationError
from app.hbm.permissions import Action, Resource
from app.hbm.rbac import BaseService, ServiceContext
from app.hbm.status.analytics import QUOTE_VALIDITY_DAYS, generate_order_status_statistics, get_actionable_orders
from app.hbm.status.history import StatusHistoryLedger
from app.hbm.status.order_status import ORDER_DATE_FIELDS, derive_order_status, validate_order_date_logic
from app.hbm.status.transitions import status_label
from app.hbm.status.types import (
    ORDER_STATUS_TRANSITIONS,
    EntityType,
    OrderSnapshot,
    OrderStatus,
    StatusStatistics,
)
from app.hbm.status.validation import (
    StatusTransitionRequest,
    StatusValidationResult,
    validate_bulk_status_transitions,
    validate_status_consistency,
)
from app.hbm.utils import utcnow

from .models import Order

# Timestamp column stamped when an order enters each status.
TIMESTAMP_FOR_STATUS = {
    OrderStatus.QUOTED: "quoted_at",
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PRODUCTION: "production_started_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELED: "canceled_at",
}


class OrderService(BaseService):
    resource = Resource.ORDERS

    def __init__(self, s: Session, ledger: StatusHistoryLedger) -> None:
        self.s = s
        self.ledger = ledger

    def _get(self, order_id: int) -> Order:
        order = self.s.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def create_order(
        self,
        context: ServiceContext,
        *,
        order_number: str,
        customer_id: str | None = None,
        notes: str | None = None,
    ) -> Order:
        self.require_permission(context, Action.CREATE)
        order_number = (order_number or "").strip()
        if not order_number:
            raise ValidationError("Order number is required")
        if self.s.execute(select(Order.id).where(Order.order_number == order_number)).first() is not None:
            raise ValidationError(f"Order number '{order_number}' already exists", order_number=order_number)

        now = utcnow()
        order = Order(
            order_number=order_number,
            customer_id=customer_id,
            notes=notes.strip() if notes else None,
            created_at=now,
            updated_at=now,
        )
        self.s.add(order)
        self.s.flush()

        self.ledger.record_status_change(
            EntityType.ORDER,
            order.id,
            None,
            OrderStatus.REQUESTED,
            changed_by=context.user_id,
            reason="Order requested",
        )
        self.log_operation("create_order", context, order_id=order.id, order_number=order_number)
        return order

    def get_order(self, context: ServiceContext, order_id: int) -> Order:
        self.require_permission(context, Action.READ)
        return self._get(order_id)

    def list_orders(
        self,
        context: ServiceContext,
        *,
        statuses: list[OrderStatus | str] | None = None,
    ) -> list[Order]:
        self.require_permission(context, Action.READ)
        rows = self.s.execute(select(Order).order_by(Order.created_at.desc(), Order.id.desc())).scalars().all()
        if not statuses:
            return list(rows)
        wanted = {OrderStatus(status_label(EntityType.ORDER, x)) for x in statuses}
        return [o for o in rows if derive_order_status(OrderSnapshot.from_entity(o)) in wanted]

    def snapshots(self, context: ServiceContext) -> list[OrderSnapshot]:
        self.require_permission(context, Action.READ)
        rows = self.s.execute(select(Order).order_by(Order.id.asc())).scalars().all()
        return [OrderSnapshot.from_entity(o) for o in rows]

    def get_order_statistics(self, context: ServiceContext) -> StatusStatistics:
        return generate_order_status_statistics(self.snapshots(context))

    def get_actionable_orders(
        self,
        context: ServiceContext,
        *,
        now: datetime | None = None,
        quote_validity_days: int = QUOTE_VALIDITY_DAYS,
    ) -> dict[str, list[OrderSnapshot]]:
        return get_actionable_orders(self.snapshots(context), now=now, quote_validity_days=quote_validity_days)

    def check_status_consistency(self, context: ServiceContext) -> StatusValidationResult:
        return validate_status_consistency(self.snapshots(context))

    def validate_transitions(
        self,
        context: ServiceContext,
        proposals: list[dict],
    ) -> list[tuple[str, StatusValidationResult]]:
        """
        Dry-run ``[{"order_id", "to_status", "reason"?}]`` against current rows.
        Nothing is stamped or recorded.
        """
        self.require_permission(context, Action.READ)
        requests = []
        for item in proposals:
            try:
                order_id = int(item["order_id"])
            except (KeyError, TypeError, ValueError):
                raise ValidationError("Each proposal needs an integer order_id") from None
            order = self._get(order_id)
            requests.append(
                StatusTransitionRequest(
                    entity_type=EntityType.ORDER,
                    entity_id=str(order.id),
                    data=OrderSnapshot.from_entity(order),
                    to_status=item.get("to_status") or "",
                    changed_by=context.user_id,
                    reason=item.get("reason"),
                )
            )
        return validate_bulk_status_transitions(requests)

    def transition_order_status(
        self,
        context: ServiceContext,
        order_id: int,
        from_status: OrderStatus | str,
        to_status: OrderStatus | str,
        *,
        reason: str | None = None,
        at: datetime | None = None,
        quote_valid_until: datetime | None = None,
        production_stage_id: str | None = None,
    ) -> Order:
        """
        Stamp the timestamp for ``to_status``. The derived status must equal
        ``from_status``, the edge must exist, and the resulting timestamps must
        pass the date-logic checks. Concurrent edits of the same order fail on
        the row version.
        """
        self.require_permission(context, Action.UPDATE)
        order = self._get(order_id)

        from_s = OrderStatus(status_label(EntityType.ORDER, from_status))
        to_s = OrderStatus(status_label(EntityType.ORDER, to_status))
        current = derive_order_status(OrderSnapshot.from_entity(order))
        if current is not from_s:
            raise ValidationError(
                f"Order is currently {current.value}, not {from_s.value}; cannot move to {to_s.value}",
                current_status=current.value,
                to_status=to_s.value,
            )
        if to_s not in ORDER_STATUS_TRANSITIONS[from_s]:
            raise ValidationError(
                f"Invalid order status transition from {from_s.value} to {to_s.value}",
                current_status=from_s.value,
                to_status=to_s.value,
            )

        stamp = at or utcnow()
        column = TIMESTAMP_FOR_STATUS[to_s]
        candidate = {name: getattr(order, name) for name in ORDER_DATE_FIELDS}
        if column in candidate:
            candidate[column] = stamp
        date_logic = validate_order_date_logic(candidate)
        if not date_logic.is_valid:
            raise ValidationError("; ".join(date_logic.errors), errors=date_logic.errors)

        setattr(order, column, stamp)
        if to_s is OrderStatus.QUOTED and quote_valid_until is not None:
            order.quote_valid_until = quote_valid_until
        if to_s is OrderStatus.PRODUCTION and production_stage_id:
            order.production_stage_id = production_stage_id
        order.updated_at = utcnow()
        try:
            self.s.flush()
        except StaleDataError as e:
            raise ValidationError(
                f"Order {order.id} was changed concurrently; reload and retry",
                current_status=from_s.value,
                to_status=to_s.value,
            ) from e

        if self.ledger.get_latest_status_change(EntityType.ORDER, order.id) is None:
            # Rows created before the ledger existed start their chain here.
            self.ledger.record_status_change(
                EntityType.ORDER, order.id, None, from_s, changed_by="system", reason="Initial status"
            )
        self.ledger.record_status_change(
            EntityType.ORDER,
            order.id,
            from_s,
            to_s,
            changed_by=context.user_id,
            reason=reason,
            metadata={column: stamp.isoformat()},
        )
        self.log_operation(
            "transition_order_status", context, order_id=order.id, change=f"{from_s.value}->{to_s.value}"
        )
        return order
