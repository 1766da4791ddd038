"""Email queue processor — fan new-content emails out to active subscribers."""

import asyncio
import logging
from datetime import datetime, timezone

from imadlab_ops import supabase_client as db
from imadlab_ops.config import (
    PUBLIC_URL, QUEUE_BATCH_SIZE, QUEUE_MAX_RETRIES, RESEND_API_KEY, SITE_URL,
)
from imadlab_ops.services.email_templates import (
    blog_post_email_from_row,
    build_unsubscribe_url,
    email_subject,
    project_email_from_row,
    render_blog_post_email,
    render_project_email,
)

logger = logging.getLogger(__name__)

ALL_SENDS_FAILED = "All email sends failed"

# Prevents overlapping process_queue() calls in this process from double-sending
_processing_lock = asyncio.Lock()


async def process_queue(queue_ids: list[str] | None = None) -> dict:
    """Drain eligible queue items and email every active subscriber.

    With `queue_ids`, exactly those items are processed whatever their status
    or retry count (manual "send now" / "retry"). Otherwise pending items with
    retries left are taken oldest-first, up to the batch size.

    Per-item and per-recipient failures are recorded on the queue row and in
    the results; only store-level failures raise.
    """
    if _processing_lock.locked():
        logger.info("process_queue already running, skipping")
        return {"message": "Queue processing already running", "results": [],
                "processedItems": 0, "totalSubscribers": 0, "skipped": True}

    async with _processing_lock:
        if not RESEND_API_KEY:
            raise RuntimeError("RESEND_API_KEY environment variable is required")

        if queue_ids:
            queue_items = db.get_queue_items_by_ids(queue_ids, QUEUE_BATCH_SIZE)
        else:
            queue_items = db.get_pending_queue_items(QUEUE_BATCH_SIZE, QUEUE_MAX_RETRIES)

        if not queue_items:
            return {"message": "No pending emails to process", "results": [],
                    "processedItems": 0, "totalSubscribers": 0}

        subscribers = db.get_active_subscribers()
        if not subscribers:
            return {"message": "No active subscribers found", "results": [],
                    "processedItems": 0, "totalSubscribers": 0}

        results = []
        for item in queue_items:
            try:
                results.append(await _process_item(item, subscribers))
            except Exception as e:
                logger.exception("Failed to process queue item %s", item["id"])
                db.update_queue_item(item["id"], {
                    "status": db.QUEUE_FAILED,
                    "retry_count": (item.get("retry_count") or 0) + 1,
                    "error_message": str(e),
                })
                results.append({"queueItemId": item["id"], "error": str(e)})

        logger.info("Email queue processed: %d items, %d subscribers",
                    len(queue_items), len(subscribers))

        return {
            "message": "Email processing completed",
            "results": results,
            "processedItems": len(queue_items),
            "totalSubscribers": len(subscribers),
        }


async def _process_item(item: dict, subscribers: list[dict]) -> dict:
    """Send one queue item to every subscriber and settle its status."""
    if not db.claim_queue_item(item["id"]):
        logger.warning("Queue item %s is already being processed, skipping", item["id"])
        return {"queueItemId": item["id"], "error": "Queue item already being processed"}

    content_type = item["content_type"]
    content = db.get_content(content_type, item["content_id"])
    if not content:
        raise LookupError(f"Content not found for {content_type} with id {item['content_id']}")

    sends = [
        asyncio.to_thread(_send_to_subscriber, item, content, subscriber)
        for subscriber in subscribers
    ]
    outcomes = await asyncio.gather(*sends, return_exceptions=True)

    success_count = 0
    for subscriber, outcome in zip(subscribers, outcomes):
        if isinstance(outcome, BaseException):
            logger.error("Failed to send %s to %s: %s", item["id"], subscriber["email"], outcome)
        else:
            success_count += 1

    if success_count > 0:
        db.update_queue_item(item["id"], {
            "status": db.QUEUE_SENT,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        })
    else:
        db.update_queue_item(item["id"], {
            "status": db.QUEUE_FAILED,
            "retry_count": (item.get("retry_count") or 0) + 1,
            "error_message": ALL_SENDS_FAILED,
        })

    return {
        "queueItemId": item["id"],
        "contentType": content_type,
        "contentTitle": content.get("title"),
        "successCount": success_count,
        "totalSubscribers": len(subscribers),
    }


def render_for_subscriber(content_type: str, content: dict, subscriber: dict) -> str:
    """Render the email for one subscriber."""
    if content_type == "blog_post":
        return render_blog_post_email(blog_post_email_from_row(
            content, subscriber["email"], subscriber["unsubscribe_token"], SITE_URL, PUBLIC_URL,
        ))
    return render_project_email(project_email_from_row(
        content, subscriber["email"], subscriber["unsubscribe_token"], SITE_URL, PUBLIC_URL,
    ))


def _send_to_subscriber(item: dict, content: dict, subscriber: dict) -> str:
    """Render, send and record one email. Runs in a thread (called via asyncio.to_thread)."""
    html = render_for_subscriber(item["content_type"], content, subscriber)
    subject = email_subject(item["content_type"], content.get("title", ""))
    unsubscribe_url = build_unsubscribe_url(subscriber["unsubscribe_token"], PUBLIC_URL)

    resend_id = _send_email_sync(subscriber["email"], subject, html, unsubscribe_url)
    db.record_send(item["id"], subscriber["email"])
    return resend_id


def _send_email_sync(to_email: str, subject: str, html: str, unsubscribe_url: str) -> str:
    """Send an email via Resend and return its id."""
    import resend
    from imadlab_ops.config import RESEND_FROM_EMAIL, RESEND_FROM_NAME

    if not resend.api_key:
        resend.api_key = RESEND_API_KEY

    result = resend.Emails.send({
        "from": f"{RESEND_FROM_NAME} <{RESEND_FROM_EMAIL}>",
        "to": [to_email],
        "subject": subject,
        "html": html,
        "headers": {"List-Unsubscribe": f"<{unsubscribe_url}>"},
    })
    return result.get("id", "")


def enqueue_content(content_type: str, content_id: str) -> dict:
    """Queue a newsletter for a post or project.

    Raises LookupError if the content does not exist and ValueError for an
    unknown content type.
    """
    if content_type not in db.CONTENT_TABLES:
        raise ValueError(f"Invalid content type: {content_type}")
    if not db.get_content(content_type, content_id):
        raise LookupError(f"Content not found for {content_type} with id {content_id}")
    return db.enqueue(content_type, content_id)


def get_email_stats() -> dict:
    """Subscriber totals and delivery/open/click rates for the dashboard."""
    subscribers = db.select("newsletter_subscribers", columns="status, email")
    analytics = db.select("email_analytics")

    total_sent = sum(1 for a in analytics if a.get("sent_at"))
    delivered = sum(1 for a in analytics if a.get("delivered_at"))
    opened = sum(1 for a in analytics if a.get("opened_at"))
    clicked = sum(1 for a in analytics if a.get("clicked_at"))
    bounced = sum(1 for a in analytics if a.get("bounced_at"))

    return {
        "totalSubscribers": len(subscribers),
        # Rows created before the status column existed have no status
        "activeSubscribers": sum(
            1 for s in subscribers if not s.get("status") or s["status"] == db.SUBSCRIBER_ACTIVE
        ),
        "totalEmailsSent": total_sent,
        "bounced": bounced,
        "deliveryRate": round(delivered / total_sent * 100, 1) if total_sent else 0,
        "openRate": round(opened / delivered * 100, 1) if delivered else 0,
        "clickRate": round(clicked / delivered * 100, 1) if delivered else 0,
    }
