"""
Order State Transition Validator
================================

Guards the order lifecycle. Every status change is checked twice:

- against the adjacency graph (``pending -> confirmed -> processing -> shipped -> delivered``
  plus the ``cancelled`` and ``disputed`` branches)
- against the actor's role on the order (buyer or seller)

Terminal states (``delivered``, ``cancelled``) accept no further changes.
"""

import logging
from typing import Dict, List, Optional, Set, Tuple, Union

from config import Config
from models import Order, OrderStatus
from utils.constants import STATUS_ALIASES
from utils.exception_handler import (
    InvalidTransitionError,
    OrderPermissionError,
    ValidationError,
)

logger = logging.getLogger(__name__)

BUYER = "buyer"
SELLER = "seller"


class OrderStateValidator:
    """
    Validates order state transitions and the actor allowed to make them.

    Prevents invalid transitions like:
    - DELIVERED -> SHIPPED (terminal state reopened)
    - PENDING -> DELIVERED (skipping fulfillment)
    - CANCELLED -> PROCESSING (resurrection)
    """

    VALID_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
        OrderStatus.PENDING: {
            OrderStatus.CONFIRMED,
            OrderStatus.PROCESSING,
            OrderStatus.CANCELLED,
            OrderStatus.DISPUTED,
        },
        OrderStatus.CONFIRMED: {
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.CANCELLED,
            OrderStatus.DISPUTED,
        },
        OrderStatus.PROCESSING: {
            OrderStatus.SHIPPED,
            OrderStatus.CANCELLED,
            OrderStatus.DISPUTED,
        },
        OrderStatus.SHIPPED: {
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
            OrderStatus.DISPUTED,
        },
        # Seller resolves a dispute by resuming fulfillment or cancelling
        OrderStatus.DISPUTED: {
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
        },
        OrderStatus.DELIVERED: set(),
        OrderStatus.CANCELLED: set(),
    }

    TERMINAL_STATES: Set[OrderStatus] = {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    }

    # Statuses only the seller may set
    FULFILLMENT_STATES: Set[OrderStatus] = {
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
    }

    @staticmethod
    def parse_status(value: Union[str, OrderStatus]) -> OrderStatus:
        """Accept enum members, raw values and legacy aliases like 'paid'"""
        if isinstance(value, OrderStatus):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("Status is required", field="status")

        normalized = value.strip().lower()
        normalized = STATUS_ALIASES.get(normalized, normalized)
        try:
            return OrderStatus(normalized)
        except ValueError:
            raise ValidationError(f"Unknown order status: {value}", field="status")

    @staticmethod
    def resolve_role(order: Order, actor_id: str) -> Optional[str]:
        if actor_id and actor_id == order.seller_id:
            return SELLER
        if actor_id and actor_id == order.buyer_id:
            return BUYER
        return None

    @classmethod
    def is_terminal_state(cls, status: OrderStatus) -> bool:
        """Check if the status is a terminal state"""
        return status in cls.TERMINAL_STATES

    @classmethod
    def get_valid_next_states(cls, current_status: OrderStatus, strict: Optional[bool] = None) -> Set[OrderStatus]:
        """Get all valid next states from the current status"""
        if strict is None:
            strict = Config.STRICT_STATUS_TRANSITIONS

        if cls.is_terminal_state(current_status):
            return set()
        if strict:
            return set(cls.VALID_TRANSITIONS.get(current_status, set()))

        # Relaxed: any fulfillment step except the current one, plus the branches
        relaxed = (cls.FULFILLMENT_STATES | {OrderStatus.CANCELLED, OrderStatus.DISPUTED}) - {current_status}
        return relaxed

    @classmethod
    def validate_transition(
        cls,
        from_status: OrderStatus,
        to_status: OrderStatus,
        order_id: Optional[str] = None,
        strict: Optional[bool] = None,
    ) -> Tuple[bool, str]:
        """
        Validate if a state transition is allowed by the graph.

        Returns:
            Tuple[bool, str]: (is_valid, reason)
        """
        order_ref = f"Order {order_id}" if order_id else "Order"

        if cls.is_terminal_state(from_status):
            reason = f"Order is already {from_status.value} and can no longer change"
            logger.warning(f"❌ INVALID_TRANSITION: {order_ref} {from_status.value} -> {to_status.value} (terminal)")
            return False, reason

        # Same status (annotation-only update)
        if from_status == to_status:
            return True, "No status change required"

        valid_next_states = cls.get_valid_next_states(from_status, strict)
        if to_status in valid_next_states:
            logger.info(f"✅ VALID_TRANSITION: {order_ref} {from_status.value} -> {to_status.value}")
            return True, "Valid state transition"

        valid_values = sorted(s.value for s in valid_next_states)
        logger.warning(
            f"❌ INVALID_TRANSITION: {order_ref} {from_status.value} -> {to_status.value} "
            f"Valid options: {valid_values}"
        )
        return False, (
            f"Invalid transition: {from_status.value} -> {to_status.value}. "
            f"Valid transitions from {from_status.value}: {valid_values}"
        )

    @classmethod
    def validate_update(
        cls,
        order: Order,
        actor_id: str,
        new_status: Union[str, OrderStatus],
        tracking_number: Optional[str] = None,
        strict: Optional[bool] = None,
    ) -> OrderStatus:
        """
        Check a requested status update against role and graph rules.

        Role rules:
        - Only the seller advances fulfillment or attaches a tracking number
        - The buyer cancels only while the order is pending
        - The seller cancels once the order has left pending
        - Either party opens a dispute

        Returns:
            OrderStatus: the parsed target status

        Raises:
            OrderPermissionError: actor is not allowed to make this change
            InvalidTransitionError: the change does not follow from the current status
            ValidationError: unknown status or missing tracking number for shipment
        """
        role = cls.resolve_role(order, actor_id)
        if role is None:
            logger.warning(f"🚫 ACCESS_DENIED: {actor_id} is not a party to order {order.order_id}")
            raise OrderPermissionError("You are not a party to this order")

        target = cls.parse_status(new_status)
        current = cls.parse_status(order.status)

        if cls.is_terminal_state(current):
            logger.warning(f"❌ TRANSITION_BLOCKED: order {order.order_id} is {current.value}")
            raise InvalidTransitionError(
                f"Order is already {current.value} and can no longer change",
                from_status=current.value,
                to_status=target.value,
            )

        if tracking_number and role != SELLER:
            raise OrderPermissionError("Only the seller can attach a tracking number")

        if target == OrderStatus.CANCELLED and current == OrderStatus.PENDING and role != BUYER:
            raise OrderPermissionError("Only the buyer can cancel a pending order")
        if target == OrderStatus.CANCELLED and current != OrderStatus.PENDING and role == BUYER:
            # Later-stage buyer problems go through the dispute flow
            raise InvalidTransitionError(
                "Orders can only be cancelled by the buyer while pending. Open a dispute instead.",
                from_status=current.value,
                to_status=target.value,
            )
        if target in cls.FULFILLMENT_STATES and role != SELLER:
            raise OrderPermissionError("Only the seller can update fulfillment status")
        if target == current and role != SELLER:
            raise OrderPermissionError("Only the seller can annotate the order status")

        is_valid, reason = cls.validate_transition(current, target, order.order_id, strict)
        if not is_valid:
            logger.error(f"❌ TRANSITION_BLOCKED: {reason}")
            raise InvalidTransitionError(reason, from_status=current.value, to_status=target.value)

        if (
            target == OrderStatus.SHIPPED
            and Config.REQUIRE_TRACKING_FOR_SHIPPED
            and not (tracking_number or order.tracking_number)
        ):
            raise ValidationError("A tracking number is required to mark the order as shipped", field="tracking_number")

        return target

    @classmethod
    def get_available_actions(cls, order: Order, actor_id: str, strict: Optional[bool] = None) -> List[str]:
        """Statuses the actor could move the order to right now"""
        role = cls.resolve_role(order, actor_id)
        if role is None:
            return []

        current = cls.parse_status(order.status)
        actions = []
        for candidate in cls.get_valid_next_states(current, strict):
            if candidate == OrderStatus.DISPUTED:
                actions.append(candidate.value)
            elif candidate == OrderStatus.CANCELLED:
                if (role == BUYER) == (current == OrderStatus.PENDING):
                    actions.append(candidate.value)
            elif role == SELLER:
                actions.append(candidate.value)

        order_index = {status: index for index, status in enumerate(OrderStatus)}
        return sorted(actions, key=lambda value: order_index[OrderStatus(value)])
