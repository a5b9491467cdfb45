"""
Unit tests for the order state machine, independent of the database.
"""

import pytest

from models import Order, OrderStatus
from utils.exception_handler import InvalidTransitionError, OrderPermissionError, ValidationError
from utils.order_state_validator import BUYER, SELLER, OrderStateValidator


def _order(status="pending", tracking_number=None):
    return Order(
        order_id="ORD-20240101-ABCDEF12",
        buyer_id="buyer",
        seller_id="seller",
        status=status,
        tracking_number=tracking_number,
    )


class TestTransitionGraph:
    """Adjacency graph in strict mode"""

    @pytest.mark.parametrize("from_status,to_status", [
        (OrderStatus.PENDING, OrderStatus.CONFIRMED),
        (OrderStatus.PENDING, OrderStatus.PROCESSING),
        (OrderStatus.CONFIRMED, OrderStatus.SHIPPED),
        (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        (OrderStatus.SHIPPED, OrderStatus.DISPUTED),
        (OrderStatus.DISPUTED, OrderStatus.CANCELLED),
    ])
    def test_valid_transitions(self, from_status, to_status):
        is_valid, _ = OrderStateValidator.validate_transition(from_status, to_status, strict=True)
        assert is_valid

    @pytest.mark.parametrize("from_status,to_status", [
        (OrderStatus.PENDING, OrderStatus.SHIPPED),
        (OrderStatus.PENDING, OrderStatus.DELIVERED),
        (OrderStatus.PROCESSING, OrderStatus.CONFIRMED),
        (OrderStatus.SHIPPED, OrderStatus.PROCESSING),
        (OrderStatus.DELIVERED, OrderStatus.SHIPPED),
        (OrderStatus.CANCELLED, OrderStatus.PROCESSING),
    ])
    def test_invalid_transitions(self, from_status, to_status):
        is_valid, reason = OrderStateValidator.validate_transition(from_status, to_status, strict=True)
        assert not is_valid
        assert reason

    def test_terminal_states_have_no_successors(self):
        for status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
            assert OrderStateValidator.is_terminal_state(status)
            assert OrderStateValidator.get_valid_next_states(status, strict=True) == set()
            assert OrderStateValidator.get_valid_next_states(status, strict=False) == set()

    def test_relaxed_mode_opens_every_fulfillment_step(self):
        next_states = OrderStateValidator.get_valid_next_states(OrderStatus.PENDING, strict=False)
        assert next_states == {
            OrderStatus.CONFIRMED,
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
            OrderStatus.DISPUTED,
        }

    def test_every_status_has_a_row(self):
        assert set(OrderStateValidator.VALID_TRANSITIONS) == set(OrderStatus)


class TestParseStatus:

    def test_accepts_enum_and_text(self):
        assert OrderStateValidator.parse_status(OrderStatus.SHIPPED) is OrderStatus.SHIPPED
        assert OrderStateValidator.parse_status(" Shipped ") is OrderStatus.SHIPPED

    def test_legacy_alias(self):
        assert OrderStateValidator.parse_status("paid") is OrderStatus.CONFIRMED

    @pytest.mark.parametrize("value", ["", "   ", None, "refunded"])
    def test_rejects_unknown(self, value):
        with pytest.raises(ValidationError):
            OrderStateValidator.parse_status(value)


class TestValidateUpdate:

    def test_roles(self):
        order = _order()
        assert OrderStateValidator.resolve_role(order, "seller") == SELLER
        assert OrderStateValidator.resolve_role(order, "buyer") == BUYER
        assert OrderStateValidator.resolve_role(order, "someone") is None
        assert OrderStateValidator.resolve_role(order, "") is None

    def test_returns_parsed_target(self):
        target = OrderStateValidator.validate_update(_order(), "seller", "processing", strict=True)
        assert target is OrderStatus.PROCESSING

    def test_non_party_rejected_first(self):
        with pytest.raises(OrderPermissionError):
            OrderStateValidator.validate_update(_order("delivered"), "someone", "not-a-status")

    def test_terminal_wins_over_role_rules(self):
        with pytest.raises(InvalidTransitionError):
            OrderStateValidator.validate_update(_order("cancelled"), "buyer", "shipped")

    def test_existing_tracking_number_satisfies_shipped(self, monkeypatch):
        from config import Config

        monkeypatch.setattr(Config, "REQUIRE_TRACKING_FOR_SHIPPED", True)
        order = _order("processing", tracking_number="TRK-OLD")
        assert OrderStateValidator.validate_update(order, "seller", "shipped", strict=True) is OrderStatus.SHIPPED

    def test_either_party_disputes(self):
        for actor in ("buyer", "seller"):
            assert OrderStateValidator.validate_update(_order("confirmed"), actor, "disputed") is OrderStatus.DISPUTED


class TestAvailableActions:

    def test_relaxed_seller_actions(self):
        actions = OrderStateValidator.get_available_actions(_order("confirmed"), "seller", strict=False)
        assert actions == ["processing", "shipped", "delivered", "cancelled", "disputed"]

    def test_disputed_order(self):
        order = _order("disputed")
        assert OrderStateValidator.get_available_actions(order, "seller", strict=True) == [
            "processing", "shipped", "delivered", "cancelled",
        ]
        assert OrderStateValidator.get_available_actions(order, "buyer", strict=True) == []
