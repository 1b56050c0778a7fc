"""Tests for order status derivation, the order transition graph and date logic."""
from datetime import datetime, timedelta

import pytest

from app.hbm.status.order_status import (
    compute_order_status,
    derive_order_status,
    get_next_order_statuses,
    get_order_status_description,
    is_terminal_order_status,
    is_valid_order_status_transition,
    validate_order_date_logic,
)
from app.hbm.status.types import OrderSnapshot, OrderStatus

T0 = datetime(2024, 1, 1, 9, 0, 0)


def _order(**kwargs) -> OrderSnapshot:
    return OrderSnapshot(id="o-1", created_at=T0, **kwargs)


def test_order_with_only_created_at_is_requested():
    assert derive_order_status(_order()) is OrderStatus.REQUESTED


def test_quoted_then_canceled_is_canceled():
    order = _order(quoted_at=T0 + timedelta(days=1), canceled_at=T0 + timedelta(days=2))
    assert derive_order_status(order) is OrderStatus.CANCELED


def test_cancellation_dominates_full_progress():
    d = [T0 + timedelta(days=i) for i in range(1, 8)]
    order = _order(
        quoted_at=d[0],
        confirmed_at=d[1],
        production_started_at=d[2],
        completed_at=d[3],
        shipped_at=d[4],
        delivered_at=d[5],
        canceled_at=d[6],
    )
    assert derive_order_status(order) is OrderStatus.CANCELED


@pytest.mark.parametrize(
    "fields, expected",
    [
        ({"quoted_at": T0}, OrderStatus.QUOTED),
        ({"quoted_at": T0, "confirmed_at": T0}, OrderStatus.CONFIRMED),
        ({"confirmed_at": T0, "production_started_at": T0}, OrderStatus.PRODUCTION),
        ({"confirmed_at": T0, "production_stage_id": "stage-1"}, OrderStatus.PRODUCTION),
        ({"production_started_at": T0, "completed_at": T0}, OrderStatus.COMPLETED),
        ({"completed_at": T0, "shipped_at": T0}, OrderStatus.SHIPPED),
        ({"shipped_at": T0, "delivered_at": T0}, OrderStatus.DELIVERED),
        # later milestones win even when earlier ones are missing
        ({"delivered_at": T0}, OrderStatus.DELIVERED),
    ],
)
def test_derivation_priority(fields, expected):
    assert derive_order_status(_order(**fields)) is expected


def test_compute_order_status_explains_itself():
    result = compute_order_status(_order(quoted_at=T0), now=T0)
    assert result.status == "quoted"
    assert result.computed_at == T0
    assert result.factors == ("quoted_at is set",)
    assert result.is_terminal is False
    assert result.can_transition_to == ("confirmed", "canceled")


def test_transition_graph():
    assert is_valid_order_status_transition(OrderStatus.REQUESTED, OrderStatus.QUOTED)
    assert is_valid_order_status_transition("delivered", "canceled")
    assert not is_valid_order_status_transition(OrderStatus.QUOTED, OrderStatus.REQUESTED)
    assert not is_valid_order_status_transition(OrderStatus.REQUESTED, OrderStatus.SHIPPED)
    assert get_next_order_statuses(OrderStatus.SHIPPED) == [OrderStatus.DELIVERED, OrderStatus.CANCELED]


def test_only_canceled_is_terminal():
    terminal = [s for s in OrderStatus if is_terminal_order_status(s)]
    assert terminal == [OrderStatus.CANCELED]
    for status in OrderStatus:
        if status is not OrderStatus.CANCELED:
            assert OrderStatus.CANCELED in get_next_order_statuses(status)


def test_descriptions():
    assert get_order_status_description("production") == "Order is currently in production"
    assert get_order_status_description("bogus") == "Unknown status"


class TestDateLogic:
    def test_confirmation_before_quotation_is_invalid(self):
        d1 = T0 + timedelta(days=2)
        d0 = T0 + timedelta(days=1)
        result = validate_order_date_logic({"quoted_at": d1, "confirmed_at": d0})
        assert result.is_valid is False
        assert result.errors == ["Order confirmation date must be after quotation date"]
        assert result.constraints["confirmed_after_quoted"] is False

    def test_all_null_is_valid(self):
        result = validate_order_date_logic({})
        assert result.is_valid is True
        assert result.errors == []
        assert set(result.constraints) == {
            "confirmed_after_quoted",
            "production_after_confirmed",
            "completed_after_production",
            "shipped_after_completed",
            "delivered_after_shipped",
        }
        assert all(result.constraints.values())

    def test_monotonic_dates_are_valid(self):
        d = [T0 + timedelta(hours=i) for i in range(6)]
        order = _order(
            quoted_at=d[0],
            confirmed_at=d[1],
            production_started_at=d[2],
            completed_at=d[3],
            shipped_at=d[4],
            delivered_at=d[5],
        )
        result = validate_order_date_logic(order)
        assert result.is_valid is True
        assert result.errors == []

    def test_every_violation_is_reported(self):
        late, early = T0 + timedelta(days=5), T0
        result = validate_order_date_logic(
            {
                "quoted_at": late,
                "confirmed_at": early,
                "completed_at": late,
                "shipped_at": early,
            }
        )
        assert result.is_valid is False
        assert len(result.errors) == 2
        assert result.constraints["confirmed_after_quoted"] is False
        assert result.constraints["shipped_after_completed"] is False
        # pairs with a missing side hold vacuously
        assert result.constraints["production_after_confirmed"] is True
        assert result.constraints["completed_after_production"] is True
