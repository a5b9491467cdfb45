"""
Buyer/seller messaging.

Every buyer and seller pair shares one conversation. Order messages are normal
messages tagged with the order id so the inbox can link back to the order.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Conversation, MessageType, Order, OrderMessage, User
from utils.constants import CURRENCY_NAMES
from utils.helpers import format_money, format_shipping_address, utc_now
from utils.payment_details import CryptoPaymentDetails, payment_details_from_dict

logger = logging.getLogger(__name__)


def format_order_summary(order: Order) -> str:
    """Order-details message the seller receives when an order is placed"""
    payment = payment_details_from_dict(order.payment_details or {})
    lines = [
        "🛒 New Order Received!",
        "",
        f"Order ID: {order.order_id}",
        f"Product: {order.box_title}",
        f"Quantity: {order.quantity}",
        f"Total Amount: {format_money(payment.amount)}",
        f"Payment Method: {payment.method.upper()}",
        "",
    ]

    if isinstance(payment, CryptoPaymentDetails):
        coin = payment.cryptocurrency
        lines.append(f"Cryptocurrency: {CURRENCY_NAMES.get(coin, coin)} ({coin})")
        lines.append(f"Buyer's Wallet: {payment.buyer_wallet_address}")
        lines.append(f"Your Wallet: {payment.seller_wallet_address}")
    else:
        lines.append("Cash on Delivery")
        lines.append(f"Buyer Phone: {payment.buyer_phone}")
        lines.append(f"Estimated Delivery: {payment.estimated_delivery}")

    lines += [
        "",
        "Shipping Address:",
        format_shipping_address(order.shipping_address or {}),
        "",
        "Please process this order and update the status accordingly.",
    ]
    return "\n".join(lines)


class MessagingService:
    """Stores conversations and messages between marketplace users"""

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _participants(user_a: str, user_b: str) -> Tuple[str, str]:
        return tuple(sorted((user_a, user_b)))

    def get_or_create_conversation(self, user_a: str, user_b: str) -> Conversation:
        first, second = self._participants(user_a, user_b)
        conversation = self.session.execute(
            select(Conversation).where(
                Conversation.participant_a == first,
                Conversation.participant_b == second,
            )
        ).scalar_one_or_none()

        if conversation is None:
            conversation = Conversation(participant_a=first, participant_b=second)
            self.session.add(conversation)
            self.session.flush()
            logger.info(f"💬 CONVERSATION_CREATED: {first} <-> {second} (id={conversation.id})")

        return conversation

    def send_order_message(
        self,
        from_user_id: str,
        to_user_id: str,
        content: str,
        order_id: Optional[str] = None,
    ) -> OrderMessage:
        """Append a message to the pair's conversation; caller owns the transaction"""
        if self.session.get(User, to_user_id) is None:
            raise LookupError(f"Recipient {to_user_id} does not exist")

        conversation = self.get_or_create_conversation(from_user_id, to_user_id)
        message = OrderMessage(
            conversation_id=conversation.id,
            sender_id=from_user_id,
            recipient_id=to_user_id,
            order_id=order_id,
            message_type=MessageType.ORDER.value if order_id else MessageType.TEXT.value,
            content=content,
        )
        self.session.add(message)

        conversation.last_message = content[:200]
        conversation.last_message_at = utc_now()
        self.session.flush()

        logger.info(f"📨 MESSAGE_SENT: {from_user_id} -> {to_user_id} order={order_id}")
        return message

    def get_order_messages(self, order_id: str) -> List[OrderMessage]:
        return list(
            self.session.execute(
                select(OrderMessage).where(OrderMessage.order_id == order_id).order_by(OrderMessage.id)
            ).scalars()
        )
