"""APScheduler — drains the newsletter queue on an interval."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from imadlab_ops.config import QUEUE_INTERVAL_MINUTES
from imadlab_ops.services.queue_processor import process_queue

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


@scheduler.scheduled_job("interval", minutes=QUEUE_INTERVAL_MINUTES, id="process_email_queue")
async def process_email_queue():
    """Send queued newsletters."""
    try:
        result = await process_queue()
        if result["processedItems"] > 0:
            failed = sum(1 for r in result["results"] if r.get("error"))
            logger.info(
                "Email queue: %d items processed, %d failed, %d subscribers",
                result["processedItems"],
                failed,
                result["totalSubscribers"],
            )
    except Exception as e:
        logger.error("Email queue processing failed: %s", e)
