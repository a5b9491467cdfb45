"""
Outbox relay and scheduler tests.

Orders are placed with inline dispatch switched off so the relay does the
publishing.
"""

import threading

import pytest
from sqlalchemy import select

from config import Config
from conftest import BUYER_ID, SELLER_ID
from jobs.scheduler import OrderScheduler
from models import Notification, OrderMessage, OutboxEvent
from services.messaging_service import MessagingService
from services.outbox_relay import OutboxRelay


@pytest.fixture(autouse=True)
def _deferred_dispatch(monkeypatch):
    monkeypatch.setattr(Config, "DISPATCH_ORDER_MESSAGES_INLINE", False)


def _events(session):
    session.expire_all()
    return session.execute(select(OutboxEvent).order_by(OutboxEvent.id)).scalars().all()


class TestProcessOutboxEvents:

    @pytest.mark.asyncio
    async def test_publishes_pending_order_created(self, relay, place_cod_order, db_session):
        order_id = place_cod_order()

        stats = await relay.process_outbox_events()

        assert stats == {"processed": 1, "failed": 0}
        [event] = _events(db_session)
        assert event.processed is True
        assert event.processed_at is not None
        messages = MessagingService(db_session).get_order_messages(order_id)
        assert len(messages) == 1
        assert messages[0].recipient_id == SELLER_ID

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, relay, db_session):
        assert await relay.process_outbox_events() == {"processed": 0, "failed": 0}

    @pytest.mark.asyncio
    async def test_events_are_published_once(self, relay, place_cod_order, db_session):
        place_cod_order()
        await relay.process_outbox_events()
        assert await relay.process_outbox_events() == {"processed": 0, "failed": 0}

        db_session.expire_all()
        assert len(db_session.execute(select(OrderMessage)).scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_failure_is_counted_and_retried(self, relay, place_cod_order, db_session, monkeypatch):
        place_cod_order()

        def broken_send(self, *args, **kwargs):
            raise RuntimeError("chat backend down")

        monkeypatch.setattr(MessagingService, "send_order_message", broken_send)
        assert await relay.process_outbox_events() == {"processed": 0, "failed": 1}

        [event] = _events(db_session)
        assert event.processed is False
        assert event.retry_count == 1
        assert event.last_error == "RuntimeError: chat backend down"
        db_session.expire_all()
        assert db_session.execute(select(Notification)).scalars().all() == []

        monkeypatch.undo()
        monkeypatch.setattr(Config, "DISPATCH_ORDER_MESSAGES_INLINE", False)
        assert await relay.process_outbox_events() == {"processed": 1, "failed": 0}

    @pytest.mark.asyncio
    async def test_exhausted_events_are_skipped(self, relay, place_cod_order, db_session):
        place_cod_order()
        [event] = _events(db_session)
        event.retry_count = Config.OUTBOX_MAX_RETRIES
        db_session.commit()

        assert await relay.process_outbox_events() == {"processed": 0, "failed": 0}

    @pytest.mark.asyncio
    async def test_batch_size_limits_work(self, relay, place_cod_order):
        for _ in range(3):
            place_cod_order(quantity=1)

        assert await relay.process_outbox_events(batch_size=2) == {"processed": 2, "failed": 0}
        assert await relay.process_outbox_events(batch_size=2) == {"processed": 1, "failed": 0}

    @pytest.mark.asyncio
    async def test_publishing_runs_off_the_event_loop(self, relay, place_cod_order, monkeypatch):
        place_cod_order()
        loop_thread = threading.get_ident()
        send_threads = []
        original_send = MessagingService.send_order_message

        def recording_send(self, *args, **kwargs):
            send_threads.append(threading.get_ident())
            return original_send(self, *args, **kwargs)

        monkeypatch.setattr(MessagingService, "send_order_message", recording_send)
        assert await relay.process_outbox_events() == {"processed": 1, "failed": 0}
        assert len(send_threads) == 1
        assert send_threads[0] != loop_thread


class TestDispatch:

    def test_unknown_event_type_fails(self, relay, place_cod_order, db_session):
        order_id = place_cod_order()
        event = OutboxEvent(event_type="order_exploded", aggregate_id=order_id, event_data={})
        db_session.add(event)
        db_session.commit()

        assert relay.dispatch(db_session, event.id) is False
        db_session.refresh(event)
        assert event.retry_count == 1
        assert "Unknown outbox event type" in event.last_error

    def test_missing_order_fails(self, relay, db_session):
        event = OutboxEvent(event_type="order_created", aggregate_id="ORD-GONE", event_data={})
        db_session.add(event)
        db_session.commit()

        assert relay.dispatch(db_session, event.id) is False

    def test_processed_event_is_a_no_op(self, relay, place_cod_order, db_session):
        place_cod_order()
        [event] = _events(db_session)
        assert relay.dispatch(db_session, event.id) is True
        assert relay.dispatch(db_session, event.id) is True

        db_session.expire_all()
        assert len(db_session.execute(select(OrderMessage)).scalars().all()) == 1

    def test_status_change_notifies_counterparty(self, relay, place_cod_order, status_service, db_session):
        order_id = place_cod_order()
        status_service.update_status(order_id, SELLER_ID, "confirmed")
        status_event = _events(db_session)[-1]
        assert status_event.event_type == "order_status_changed"
        assert status_event.event_data["to_status"] == "confirmed"

        assert relay.dispatch(db_session, status_event.id) is True
        notification = db_session.execute(
            select(Notification).where(Notification.user_id == BUYER_ID)
        ).scalar_one()
        assert notification.title == "Order Payment Confirmed"
        assert notification.data["from_status"] == "pending"


class TestSessionScope:

    def test_rolls_back_on_error(self, session_factory, db_session):
        relay = OutboxRelay(session_factory)
        with pytest.raises(RuntimeError):
            with relay.session_scope() as session:
                session.add(OutboxEvent(event_type="order_created", aggregate_id="ORD-X", event_data={}))
                session.flush()
                raise RuntimeError("boom")

        assert _events(db_session) == []


class TestOrderScheduler:

    def test_registers_jobs(self, session_factory):
        scheduler = OrderScheduler(session_factory)
        scheduler.setup_jobs()
        assert scheduler.scheduler.get_job("outbox_relay") is not None
        assert scheduler.scheduler.get_job("outbox_dead_letter_report") is not None

        # Re-registering replaces instead of duplicating
        scheduler.setup_jobs()
        assert len(scheduler.scheduler.get_jobs()) == 2

    @pytest.mark.asyncio
    async def test_run_outbox_relay(self, session_factory, place_cod_order, db_session):
        order_id = place_cod_order()
        await OrderScheduler(session_factory).run_outbox_relay()
        assert len(MessagingService(db_session).get_order_messages(order_id)) == 1

    @pytest.mark.asyncio
    async def test_dead_letter_report(self, session_factory, place_cod_order, db_session):
        place_cod_order()
        scheduler = OrderScheduler(session_factory)
        assert await scheduler.report_dead_letters() == 0

        [event] = _events(db_session)
        event.retry_count = Config.OUTBOX_MAX_RETRIES
        db_session.commit()
        assert await scheduler.report_dead_letters() == 1
