"""
Celery task for the QuickBooks auto-send scheduler
"""
from datetime import datetime
import asyncio
import logging

import redis

from ledgersync.celery_app import celery_app
from ledgersync.config import settings
from ledgersync.services.auto_send_scheduler import AutoSendScheduler
from ledgersync.utils.logging_config import configure_logging

logger = logging.getLogger(__name__)

LOCK_NAME = "ledgersync:auto-send:lock"


def get_redis() -> redis.Redis:
    """Redis client for the tick lock"""
    return redis.Redis.from_url(settings.REDIS_URL)


@celery_app.task
def process_auto_send_reports():
    """
    Periodic task: one auto-send tick
    Scheduled every AUTO_SEND_INTERVAL_SECONDS via Celery Beat. A Redis lock
    keeps ticks from overlapping across workers.
    """
    lock = get_redis().lock(LOCK_NAME, timeout=settings.AUTO_SEND_LOCK_TIMEOUT_SECONDS)
    if not lock.acquire(blocking=False):
        logger.warning("Previous auto-send run still in progress, skipping this tick")
        return {
            "status": "skipped",
            "message": "Previous run still in progress",
            "timestamp": datetime.utcnow().isoformat(),
        }

    try:
        # A fresh scheduler per run: asyncio.run creates a new event loop each time
        sent = asyncio.run(AutoSendScheduler().tick())
        return {
            "status": "success",
            "message": f"Sent {sent} report(s)",
            "timestamp": datetime.utcnow().isoformat(),
        }
    finally:
        try:
            lock.release()
        except redis.exceptions.LockError:
            logger.warning("Auto-send lock expired before the run finished")


def main() -> None:
    """Run the scheduler in-process (no Celery worker/beat)"""
    configure_logging()
    try:
        asyncio.run(AutoSendScheduler().run_forever())
    except KeyboardInterrupt:
        logger.info("Auto-send scheduler interrupted")


if __name__ == "__main__":
    main()
