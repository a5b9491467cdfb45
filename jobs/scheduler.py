"""Background job scheduler for the order core"""

import logging
from datetime import datetime
from typing import Callable, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config import Config
from models import OutboxEvent
from services.outbox_relay import OutboxRelay
from utils.error_handler import RetryConfig, RetryHandler

logger = logging.getLogger(__name__)

RELAY_RETRY = RetryConfig(max_attempts=3, delay=2.0, backoff_factor=2.0, max_delay=10.0)


class OrderScheduler:
    """Runs the outbox relay and reports events that ran out of retries"""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self.relay = OutboxRelay(session_factory)
        self.session_factory = session_factory

        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,  # Global coalescing to prevent job pileup
            'max_instances': 1,  # Global single instance enforcement
            'misfire_grace_time': 120
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

    def setup_jobs(self):
        """Register recurring jobs"""
        # Hot-reload safety
        for job_id in ("outbox_relay", "outbox_dead_letter_report"):
            if self.scheduler.get_job(job_id):
                self.scheduler.remove_job(job_id)

        self.scheduler.add_job(
            self.run_outbox_relay,
            trigger=IntervalTrigger(
                seconds=Config.OUTBOX_RELAY_INTERVAL_SECONDS,
                start_date=datetime.now().replace(microsecond=0),
            ),
            id="outbox_relay",
            name="Publish Order Outbox Events",
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.add_job(
            self.report_dead_letters,
            trigger=IntervalTrigger(minutes=10),
            id="outbox_dead_letter_report",
            name="Report Exhausted Outbox Events",
            max_instances=1,
        )
        logger.info(
            f"⏰ SCHEDULER: outbox relay every {Config.OUTBOX_RELAY_INTERVAL_SECONDS}s, dead-letter report every 10m"
        )

    async def run_outbox_relay(self):
        try:
            stats = await RetryHandler.retry_async(
                self.relay.process_outbox_events, RELAY_RETRY, Config.OUTBOX_BATCH_SIZE
            )
            if stats["failed"]:
                logger.warning(f"⚠️ OUTBOX_RELAY: {stats['failed']} events failed this run")
        except Exception as e:
            logger.error(f"❌ OUTBOX_RELAY_ERROR: {e}")

    async def report_dead_letters(self) -> int:
        with self.relay.session_scope() as db:
            exhausted = db.execute(
                select(func.count(OutboxEvent.id)).where(
                    OutboxEvent.processed.is_(False),
                    OutboxEvent.retry_count >= Config.OUTBOX_MAX_RETRIES,
                )
            ).scalar_one()

        if exhausted:
            logger.error(f"🚨 OUTBOX_DEAD_LETTERS: {exhausted} events exhausted {Config.OUTBOX_MAX_RETRIES} retries")
        return exhausted

    def start(self):
        self.setup_jobs()
        self.scheduler.start()
        logger.info("✅ Order scheduler started")

    def shutdown(self, wait: bool = False):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("🛑 Order scheduler stopped")


def start_scheduler(session_factory: Optional[Callable[[], Session]] = None) -> OrderScheduler:
    order_scheduler = OrderScheduler(session_factory)
    order_scheduler.start()
    return order_scheduler
