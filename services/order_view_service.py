"""
Derived order views: timeline, totals and the requester's role.
Pure functions over an order; nothing here writes.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from models import MysteryBox, Order
from utils.constants import BRANCH_STATUSES, HAPPY_PATH, STATUS_LABELS
from utils.exception_handler import OrderPermissionError
from utils.helpers import format_datetime, quantize_money, to_decimal
from utils.order_state_validator import OrderStateValidator

logger = logging.getLogger(__name__)

COMPLETED = "completed"
CURRENT = "current"
UPCOMING = "upcoming"


def resolve_access_role(order: Order, requester_id: str) -> str:
    """'buyer' or 'seller'; anyone else is refused"""
    role = OrderStateValidator.resolve_role(order, requester_id)
    if role is None:
        logger.warning(f"🚫 ACCESS_DENIED: {requester_id} tried to view order {order.order_id}")
        raise OrderPermissionError("Access Denied: you are not the buyer or seller of this order")
    return role


def _last_happy_path_status(order: Order) -> str:
    """Furthest fulfillment step the order reached before leaving the happy path"""
    reached = HAPPY_PATH[0]
    for entry in order.history or []:
        for status in (entry.from_status, entry.to_status):
            if status in HAPPY_PATH and HAPPY_PATH.index(status) > HAPPY_PATH.index(reached):
                reached = status
    return reached


def build_timeline(order: Order) -> Dict[str, Any]:
    """
    Map the order onto the fixed happy path.

    Cancelled and disputed orders keep their progress up to the last
    fulfillment step reached and report the branch separately.
    """
    status = order.status
    branch = None

    if status in BRANCH_STATUSES:
        anchor = _last_happy_path_status(order)
        anchor_index = HAPPY_PATH.index(anchor)
        branch = {
            "status": status,
            "label": STATUS_LABELS[status],
            "reached_status": anchor,
            "note": order.status_note,
            "updated_at": format_datetime(order.status_updated_at),
        }
        steps = [
            {
                "status": step,
                "label": STATUS_LABELS[step],
                "state": COMPLETED if index <= anchor_index else UPCOMING,
            }
            for index, step in enumerate(HAPPY_PATH)
        ]
        return {"steps": steps, "branch": branch}

    current_index = HAPPY_PATH.index(status)
    terminal = OrderStateValidator.is_terminal_state(OrderStateValidator.parse_status(status))
    steps: List[Dict[str, Any]] = []
    for index, step in enumerate(HAPPY_PATH):
        if index < current_index or (index == current_index and terminal):
            state = COMPLETED
        elif index == current_index:
            state = CURRENT
        else:
            state = UPCOMING
        entry = {"status": step, "label": STATUS_LABELS[step], "state": state}
        if index == current_index:
            entry["note"] = order.status_note
            entry["updated_at"] = format_datetime(order.status_updated_at)
        steps.append(entry)

    return {"steps": steps, "branch": branch}


def compute_totals(order: Order, box: Optional[MysteryBox] = None) -> Dict[str, Decimal]:
    """subtotal from the payment snapshot, shipping from the order snapshot or the box"""
    subtotal = quantize_money((order.payment_details or {}).get("amount", order.amount))

    if order.shipping_cost is not None:
        shipping = quantize_money(order.shipping_cost)
    elif box is not None:
        shipping = quantize_money(0) if box.free_shipping else quantize_money(
            to_decimal(box.shipping_cost) * order.quantity
        )
    else:
        shipping = quantize_money(0)

    return {"subtotal": subtotal, "shipping": shipping, "total": quantize_money(subtotal + shipping)}


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        "order_id": order.order_id,
        "box_id": order.box_id,
        "box_title": order.box_title,
        "buyer_id": order.buyer_id,
        "seller_id": order.seller_id,
        "quantity": order.quantity,
        "unit_price": str(quantize_money(order.unit_price)),
        "amount": str(quantize_money(order.amount)),
        "currency": order.currency,
        "status": order.status,
        "payment_method": order.payment_method,
        "payment_details": order.payment_details,
        "shipping_address": order.shipping_address,
        "tracking_number": order.tracking_number,
        "status_note": order.status_note,
        "status_updated_by": order.status_updated_by,
        "status_updated_at": format_datetime(order.status_updated_at),
        "delivered_at": format_datetime(order.delivered_at),
        "created_at": format_datetime(order.created_at),
        "updated_at": format_datetime(order.updated_at),
        "version": order.version,
    }


def build_order_view(order: Order, requester_id: str, box: Optional[MysteryBox] = None) -> Dict[str, Any]:
    """Everything the order detail page needs, scoped to the requester"""
    role = resolve_access_role(order, requester_id)
    totals = compute_totals(order, box)

    view = serialize_order(order)
    view.update({
        "role": role,
        "timeline": build_timeline(order),
        "totals": {key: str(value) for key, value in totals.items()},
        "available_actions": OrderStateValidator.get_available_actions(order, requester_id),
    })
    return view
