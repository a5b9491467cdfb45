"""
Order persistence.

Each call is a standalone read or write against the session; the calling
service owns commit and rollback. Storage failures surface as
PersistenceError, and status writes are compare-and-swap on ``Order.version``.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Order, OrderStatusHistory
from utils.exception_handler import PersistenceError, ValidationError
from utils.optimistic_locking import OptimisticLockManager

logger = logging.getLogger(__name__)

BUYER_ROLE = "buyer"
SELLER_ROLE = "seller"


class OrderRepository:
    """SQLAlchemy-backed store for orders and their status history"""

    def __init__(self, session: Session):
        self.session = session
        self.lock_manager = OptimisticLockManager(session)

    def create_order(self, order: Order) -> str:
        try:
            self.session.add(order)
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"❌ ORDER_INSERT_FAILED: {order.order_id}: {e}")
            raise PersistenceError(f"Could not save order {order.order_id}") from e

        logger.info(f"💾 ORDER_STORED: {order.order_id} (pk={order.id})")
        return order.order_id

    def get_order(self, order_id: str) -> Optional[Order]:
        try:
            return self.session.execute(
                select(Order).where(Order.order_id == order_id)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load order {order_id}") from e

    def find_by_idempotency_key(self, buyer_id: str, idempotency_key: str) -> Optional[Order]:
        try:
            return self.session.execute(
                select(Order).where(
                    Order.buyer_id == buyer_id,
                    Order.idempotency_key == idempotency_key,
                )
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError("Could not look up idempotency key") from e

    def update_order_status(
        self,
        order_id: str,
        status: str,
        extra_fields: Optional[Dict[str, Any]] = None,
        expected_version: Optional[int] = None,
    ) -> Order:
        """
        Write the new status and annotations if the stored version still matches.

        Raises:
            ConflictError: another writer got there first
            PersistenceError: storage failure
        """
        order = self.get_order(order_id)
        if order is None:
            raise PersistenceError(f"Order {order_id} disappeared during update")

        updates = dict(extra_fields or {})
        updates["status"] = status

        try:
            self.lock_manager.versioned_update(Order, order.id, updates, expected_version)
            self.session.refresh(order)
        except SQLAlchemyError as e:
            logger.error(f"❌ ORDER_UPDATE_FAILED: {order_id}: {e}")
            raise PersistenceError(f"Could not update order {order_id}") from e

        return order

    def add_history(
        self,
        order: Order,
        from_status: Optional[str],
        to_status: str,
        changed_by: str,
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
    ) -> OrderStatusHistory:
        entry = OrderStatusHistory(
            order_pk=order.id,
            from_status=from_status,
            to_status=to_status,
            changed_by=changed_by,
            note=note,
            tracking_number=tracking_number,
        )
        try:
            self.session.add(entry)
            self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not record history for order {order.order_id}") from e
        return entry

    def get_history(self, order: Order) -> List[OrderStatusHistory]:
        try:
            return list(
                self.session.execute(
                    select(OrderStatusHistory)
                    .where(OrderStatusHistory.order_pk == order.id)
                    .order_by(OrderStatusHistory.id)
                ).scalars()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load history for order {order.order_id}") from e

    def get_user_orders(self, user_id: str, role: Optional[str] = None) -> List[Order]:
        """Orders where the user is buyer, seller, or either (role=None), newest first"""
        stmt = select(Order)
        if role == BUYER_ROLE:
            stmt = stmt.where(Order.buyer_id == user_id)
        elif role == SELLER_ROLE:
            stmt = stmt.where(Order.seller_id == user_id)
        elif role is None:
            stmt = stmt.where((Order.buyer_id == user_id) | (Order.seller_id == user_id))
        else:
            raise ValidationError(f"Unknown role filter: {role}", field="role")

        try:
            return list(self.session.execute(stmt.order_by(Order.created_at.desc(), Order.id.desc())).scalars())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not list orders for {user_id}") from e
