"""
Outbox relay
============

Order writes record an ``OutboxEvent`` in the same transaction as the order
change. The relay turns those events into messages and notifications:

- ``order_created``: order-details message buyer -> seller, plus a
  "New Order Received" notification for the seller
- ``order_status_changed``: notification for the other party

Each event is published in its own transaction. A failure rolls back only
that event's side effects and bumps ``retry_count``. Events stop being picked
up after ``OUTBOX_MAX_RETRIES`` attempts.
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import Config
from models import NotificationType, Order, OutboxEvent, OutboxEventType
from services.messaging_service import MessagingService, format_order_summary
from services.notification_service import NotificationService
from utils.error_handler import RetryConfig, RetryHandler
from utils.helpers import get_order_status_text, utc_now

logger = logging.getLogger(__name__)

MESSAGE_RETRY = RetryConfig(max_attempts=3, delay=0.5, backoff_factor=2.0, max_delay=5.0)


def record_event(session: Session, event_type: OutboxEventType, order: Order, data: Dict[str, Any]) -> OutboxEvent:
    """Add an outbox event to the caller's transaction"""
    event = OutboxEvent(
        event_type=event_type.value,
        aggregate_id=order.order_id,
        event_data=data,
    )
    session.add(event)
    session.flush()
    logger.debug(f"📤 OUTBOX: Created {event.event_type} event {event.id} for {order.order_id}")
    return event


class OutboxRelay:
    """Publishes pending outbox events"""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    @contextmanager
    def session_scope(self):
        if self._session_factory is None:
            from database import managed_session
            with managed_session() as session:
                yield session
            return

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish_event(self, session: Session, event: OutboxEvent) -> None:
        """Apply an event's side effects inside the given session"""
        order = session.execute(
            select(Order).where(Order.order_id == event.aggregate_id)
        ).scalar_one_or_none()
        if order is None:
            raise LookupError(f"Order {event.aggregate_id} not found for event {event.id}")

        if event.event_type == OutboxEventType.ORDER_CREATED.value:
            self._publish_order_created(session, order)
        elif event.event_type == OutboxEventType.ORDER_STATUS_CHANGED.value:
            self._publish_status_changed(session, order, event.event_data or {})
        else:
            raise ValueError(f"Unknown outbox event type: {event.event_type}")

    def _publish_order_created(self, session: Session, order: Order) -> None:
        messaging = MessagingService(session)
        RetryHandler.retry_sync(
            messaging.send_order_message,
            MESSAGE_RETRY,
            order.buyer_id,
            order.seller_id,
            format_order_summary(order),
            order.order_id,
        )
        NotificationService(session).create_notification(
            user_id=order.seller_id,
            title="New Order Received",
            message=f'You have a new order for "{order.box_title}"',
            notification_type=NotificationType.ORDER.value,
            action_url="/dashboard",
            data={"order_id": order.order_id},
        )

    def _publish_status_changed(self, session: Session, order: Order, data: Dict[str, Any]) -> None:
        actor_id = data.get("actor_id")
        recipient = order.buyer_id if actor_id == order.seller_id else order.seller_id
        to_status = data.get("to_status", order.status)

        message = f'Order "{order.box_title}" is now {get_order_status_text(to_status).lower()}.'
        if data.get("tracking_number"):
            message += f" Tracking number: {data['tracking_number']}"
        if data.get("note"):
            message += f" Note: {data['note']}"

        NotificationService(session).create_notification(
            user_id=recipient,
            title=f"Order {get_order_status_text(to_status)}",
            message=message,
            notification_type=NotificationType.ORDER.value,
            action_url=f"/orders/{order.order_id}",
            data={"order_id": order.order_id, "from_status": data.get("from_status"), "to_status": to_status},
        )

    def dispatch(self, session: Session, event_id: int) -> bool:
        """
        Publish one event in its own transaction on the given session.

        Returns False if publishing failed; the event then stays pending
        with its retry accounting updated.
        """
        event = session.get(OutboxEvent, event_id)
        if event is None or event.processed:
            return True

        try:
            self.publish_event(session, event)
            event.processed = True
            event.processed_at = utc_now()
            event.last_error = None
            session.commit()
            logger.info(f"📡 OUTBOX_PUBLISHED: {event.event_type} for {event.aggregate_id}")
            return True
        except Exception as e:
            session.rollback()
            failed = session.get(OutboxEvent, event_id)
            failed.retry_count = (failed.retry_count or 0) + 1
            failed.last_error = f"{type(e).__name__}: {e}"
            session.commit()
            logger.warning(
                f"⚠️ OUTBOX_ERROR: {failed.event_type} for {failed.aggregate_id} "
                f"attempt {failed.retry_count}: {e}"
            )
            return False

    def _dispatch_isolated(self, event_id: int) -> bool:
        with self.session_scope() as db:
            return self.dispatch(db, event_id)

    async def process_outbox_events(self, batch_size: Optional[int] = None) -> Dict[str, int]:
        """
        Process pending outbox events

        Each event is published on a worker thread with its own session, so
        message retries never block the event loop.

        Args:
            batch_size: Maximum number of events to process

        Returns:
            Processing statistics
        """
        batch_size = batch_size or Config.OUTBOX_BATCH_SIZE
        processed = failed = 0

        with self.session_scope() as db:
            event_ids = list(
                db.execute(
                    select(OutboxEvent.id)
                    .where(
                        OutboxEvent.processed.is_(False),
                        OutboxEvent.retry_count < Config.OUTBOX_MAX_RETRIES,
                    )
                    .order_by(OutboxEvent.id)
                    .limit(batch_size)
                ).scalars()
            )

        for event_id in event_ids:
            if await asyncio.to_thread(self._dispatch_isolated, event_id):
                processed += 1
            else:
                failed += 1

        if event_ids:
            logger.info(f"📤 OUTBOX_PROCESSED: {processed} events published, {failed} failed")

        return {"processed": processed, "failed": failed}
