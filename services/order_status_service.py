"""
Order Status Service
Role-gated status transitions with optimistic locking, audit history and
outbox notifications.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import Config
from models import Order, OrderStatus, OutboxEventType
from services.catalog_service import CatalogService
from services.order_repository import OrderRepository
from services.outbox_relay import OutboxRelay, record_event
from utils.exception_handler import ConflictError, MarketplaceError, NotFoundError, PersistenceError
from utils.helpers import utc_now
from utils.input_validation import InputValidator
from utils.order_state_validator import OrderStateValidator

logger = logging.getLogger(__name__)


class OrderStatusService:
    """Applies status transitions requested by buyers and sellers"""

    def __init__(self, session: Session, relay: Optional[OutboxRelay] = None):
        self.session = session
        self.repository = OrderRepository(session)
        self.catalog = CatalogService(session)
        self.relay = relay or OutboxRelay()

    def _get_order(self, order_id: str) -> Order:
        order = self.repository.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def _has_shipped_before(self, order: Order) -> bool:
        # Stock leaves the box once, even if the order is shipped again after a dispute
        return any(
            entry.to_status == OrderStatus.SHIPPED.value
            for entry in self.repository.get_history(order)
        )

    def update_status(
        self,
        order_id: str,
        actor_id: str,
        new_status,
        tracking_number: Optional[str] = None,
        note: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Order:
        """
        Move an order to ``new_status`` on behalf of ``actor_id``.

        ``expected_version`` is the version the caller last saw; when given,
        the write only succeeds if nobody changed the order since. Without it
        the version read here is used, which still protects the
        read-modify-write window.

        Raises:
            NotFoundError, OrderPermissionError, InvalidTransitionError,
            ValidationError, ConflictError, PersistenceError
        """
        order = self._get_order(order_id)
        tracking_number = InputValidator.sanitize_text(tracking_number) or None
        note = InputValidator.sanitize_text(note) or None

        target = OrderStateValidator.validate_update(order, actor_id, new_status, tracking_number)
        current_status = order.status

        if expected_version is not None and expected_version != order.version:
            logger.warning(
                f"🔒 STALE_UPDATE: {order_id} expected v{expected_version}, stored v{order.version}"
            )
            raise ConflictError(
                f"Order {order_id} was modified (version {order.version}, expected {expected_version})"
            )

        now = utc_now()
        fields = {
            "status_updated_by": actor_id,
            "status_updated_at": now,
        }
        if note is not None:
            fields["status_note"] = note
        if tracking_number is not None:
            fields["tracking_number"] = tracking_number
        if target == OrderStatus.DELIVERED:
            fields["delivered_at"] = now

        status_changed = target.value != current_status
        first_shipment = (
            target == OrderStatus.SHIPPED
            and status_changed
            and not self._has_shipped_before(order)
        )

        try:
            order = self.repository.update_order_status(
                order_id, target.value, fields, expected_version or order.version
            )
            self.repository.add_history(order, current_status, target.value, actor_id, note, tracking_number)

            if first_shipment:
                self.catalog.release_stock(order.box_id, order.quantity)

            event_id = None
            if status_changed:
                event = record_event(
                    self.session,
                    OutboxEventType.ORDER_STATUS_CHANGED,
                    order,
                    {
                        "order_id": order.order_id,
                        "from_status": current_status,
                        "to_status": target.value,
                        "actor_id": actor_id,
                        "tracking_number": tracking_number,
                        "note": note,
                    },
                )
                event_id = event.id

            self.session.commit()
        except MarketplaceError:
            self.session.rollback()
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"❌ STATUS_UPDATE_FAILED: {order_id}: {e}")
            raise PersistenceError(f"Could not update order {order_id}") from e

        logger.info(
            f"🔄 STATUS_UPDATED: {order_id} {current_status} -> {target.value} by {actor_id} (v{order.version})"
        )

        if event_id is not None and Config.DISPATCH_ORDER_MESSAGES_INLINE:
            self.relay.dispatch(self.session, event_id)
            self.session.refresh(order)

        return order

    def cancel_order(self, order_id: str, actor_id: str, reason: Optional[str] = None,
                     expected_version: Optional[int] = None) -> Order:
        return self.update_status(
            order_id, actor_id, OrderStatus.CANCELLED, note=reason, expected_version=expected_version
        )

    def get_available_actions(self, order_id: str, actor_id: str) -> List[str]:
        return OrderStateValidator.get_available_actions(self._get_order(order_id), actor_id)
