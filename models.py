"""
Mystery Mart Order Core - Database Schema
=========================================

Schema for the marketplace order lifecycle:
- Mystery box catalog entries published by sellers
- Orders with snapshotted pricing, shipping address and payment details
- Status history audit trail for every applied transition
- Buyer/seller conversations carrying order messages
- In-app notifications and the outbox that feeds them
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, Text,
    ForeignKey, UniqueConstraint, Index, CheckConstraint, func, JSON
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class OrderStatus(Enum):
    """Order lifecycle states"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class PaymentMethod(Enum):
    """Supported checkout payment methods"""
    COD = "cod"
    CRYPTO = "crypto"


class MysteryBoxStatus(Enum):
    """Catalog listing states - only ACTIVE boxes can be purchased"""
    ACTIVE = "active"
    SOLD = "sold"
    PENDING = "pending"
    REMOVED = "removed"
    REJECTED = "rejected"


class NotificationType(Enum):
    ORDER = "order"
    MESSAGE = "message"
    SYSTEM = "system"


class MessageType(Enum):
    ORDER = "order"
    TEXT = "text"


class OutboxEventType(Enum):
    """Side-effect events recorded alongside order writes"""
    ORDER_CREATED = "order_created"
    ORDER_STATUS_CHANGED = "order_status_changed"


def _enum_values(enum_cls) -> str:
    return ", ".join(f"'{member.value}'" for member in enum_cls)


# ============================================================================
# CORE ENTITIES
# ============================================================================

class User(Base):
    """Marketplace account - buyers and sellers share the same table"""
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Published receiving addresses keyed by coin symbol, e.g. {"BTC": "1A1z..."}
    crypto_addresses: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    boxes = relationship("MysteryBox", back_populates="seller")

    def published_address(self, cryptocurrency: str) -> Optional[str]:
        """Return the seller's published wallet for a coin, if any"""
        addresses = self.crypto_addresses or {}
        address = addresses.get(cryptocurrency) or addresses.get(cryptocurrency.upper())
        return address or None

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username})>"


class MysteryBox(Base):
    """Catalog entry - the core only reads it, except for stock release on shipment"""
    __tablename__ = 'mystery_boxes'

    id = Column(String(64), primary_key=True)
    seller_id = Column(String(64), ForeignKey('users.id'), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=True)

    price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=MysteryBoxStatus.ACTIVE.value)

    free_shipping = Column(Boolean, nullable=False, default=False)
    shipping_cost = Column(Numeric(12, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)

    seller = relationship("User", back_populates="boxes")

    __table_args__ = (
        CheckConstraint('price >= 0', name='ck_mystery_box_price_non_negative'),
        CheckConstraint('quantity >= 0', name='ck_mystery_box_quantity_non_negative'),
        CheckConstraint(f"status IN ({_enum_values(MysteryBoxStatus)})", name='ck_mystery_box_status'),
    )

    def __repr__(self):
        return f"<MysteryBox(id={self.id}, title={self.title}, status={self.status})>"


class Order(Base):
    """A buyer's purchase of a mystery box, with snapshotted terms"""
    __tablename__ = 'orders'

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(32), unique=True, nullable=False, index=True)  # Public facing ID

    # Participants
    box_id = Column(String(64), ForeignKey('mystery_boxes.id'), nullable=False, index=True)
    buyer_id = Column(String(64), ForeignKey('users.id'), nullable=False, index=True)
    seller_id = Column(String(64), ForeignKey('users.id'), nullable=False, index=True)

    # Snapshot of the listing at checkout
    box_title = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)  # unit_price * quantity
    shipping_cost = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(10), nullable=False, default="USD")

    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    payment_method = Column(String(10), nullable=False)
    payment_details = Column(JSON, nullable=False)  # tagged union, see utils.payment_details
    shipping_address = Column(JSON, nullable=False)

    # Fulfillment annotations
    tracking_number = Column(String(100), nullable=True)
    status_note = Column(Text, nullable=True)
    status_updated_by = Column(String(64), nullable=True)
    status_updated_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    idempotency_key = Column(String(128), nullable=True)

    # Optimistic locking token
    version = Column(Integer, nullable=False, default=1, server_default="1")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    box = relationship("MysteryBox")
    buyer = relationship("User", foreign_keys=[buyer_id])
    seller = relationship("User", foreign_keys=[seller_id])
    history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_order_quantity_positive'),
        CheckConstraint('amount >= 0', name='ck_order_amount_non_negative'),
        CheckConstraint('buyer_id != seller_id', name='ck_order_not_self_purchase'),
        CheckConstraint(f"status IN ({_enum_values(OrderStatus)})", name='ck_order_status'),
        CheckConstraint(f"payment_method IN ({_enum_values(PaymentMethod)})", name='ck_order_payment_method'),
        UniqueConstraint('buyer_id', 'idempotency_key', name='uq_order_buyer_idempotency_key'),
        Index('ix_orders_seller_status', 'seller_id', 'status'),
    )

    def __repr__(self):
        return f"<Order(order_id={self.order_id}, status={self.status}, version={self.version})>"


class OrderStatusHistory(Base):
    """Append-only audit trail of applied status transitions"""
    __tablename__ = 'order_status_history'

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_pk = Column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    changed_by = Column(String(64), nullable=False)
    note = Column(Text, nullable=True)
    tracking_number = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="history")

    def __repr__(self):
        return f"<OrderStatusHistory(order_pk={self.order_pk}, {self.from_status} -> {self.to_status})>"


# ============================================================================
# MESSAGING & NOTIFICATIONS
# ============================================================================

class Conversation(Base):
    """Two-party thread between a buyer and a seller"""
    __tablename__ = 'conversations'

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Participants stored in sorted order so a pair maps to one conversation
    participant_a = Column(String(64), ForeignKey('users.id'), nullable=False)
    participant_b = Column(String(64), ForeignKey('users.id'), nullable=False)
    last_message = Column(Text, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    messages = relationship("OrderMessage", back_populates="conversation", order_by="OrderMessage.id")

    __table_args__ = (
        UniqueConstraint('participant_a', 'participant_b', name='uq_conversation_participants'),
    )

    def __repr__(self):
        return f"<Conversation(id={self.id}, {self.participant_a} <-> {self.participant_b})>"


class OrderMessage(Base):
    """Message inside a conversation, optionally tagged with an order"""
    __tablename__ = 'order_messages'

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey('conversations.id'), nullable=False, index=True)
    sender_id = Column(String(64), ForeignKey('users.id'), nullable=False)
    recipient_id = Column(String(64), ForeignKey('users.id'), nullable=False)
    order_id = Column(String(32), nullable=True, index=True)
    message_type = Column(String(10), nullable=False, default=MessageType.TEXT.value)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    conversation = relationship("Conversation", back_populates="messages")

    def __repr__(self):
        return f"<OrderMessage(conversation_id={self.conversation_id}, sender_id={self.sender_id})>"


class Notification(Base):
    """In-app notification shown in the user's bell menu"""
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey('users.id'), nullable=False, index=True)
    type = Column(String(20), nullable=False, default=NotificationType.SYSTEM.value)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    action_url = Column(String(255), nullable=True)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_notifications_user_unread', 'user_id', 'is_read'),
    )

    def __repr__(self):
        return f"<Notification(user_id={self.user_id}, type={self.type}, title={self.title})>"


class OutboxEvent(Base):
    """Outbox pattern for reliable event processing"""
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True)
    event_type = Column(String(50), nullable=False)
    aggregate_id = Column(String(100), nullable=False)
    event_data = Column(JSON, nullable=False)
    processed = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    # Error handling
    retry_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        Index('ix_outbox_events_processed', 'processed'),
        Index('ix_outbox_events_event_type', 'event_type'),
        Index('ix_outbox_events_aggregate_id', 'aggregate_id'),
    )

    def __repr__(self):
        return f"<OutboxEvent(event_type={self.event_type}, aggregate_id={self.aggregate_id}, processed={self.processed})>"
