"""Newsletter subscribers — signup and token-based unsubscribe."""

import logging
import secrets
from datetime import datetime, timedelta, timezone

from postgrest import APIError

from imadlab_ops import supabase_client as db
from imadlab_ops.config import UNSUBSCRIBE_ATTRIBUTION_DAYS

logger = logging.getLogger(__name__)

# PostgreSQL unique_violation
_UNIQUE_VIOLATION = "23505"


def generate_unsubscribe_token() -> str:
    """Random, unguessable unsubscribe token."""
    return secrets.token_urlsafe(32)


def subscribe(email: str) -> dict:
    """Add an active subscriber.

    Returns {"status": "subscribed", "subscriber": row} or
    {"status": "already_subscribed"} when the email is taken.
    """
    try:
        row = db.insert_subscriber(email, generate_unsubscribe_token())
    except APIError as e:
        if e.code == _UNIQUE_VIOLATION:
            logger.info("Already subscribed: %s", email)
            return {"status": "already_subscribed"}
        raise

    logger.info("New newsletter subscriber: %s", email)
    return {"status": "subscribed", "subscriber": row}


def unsubscribe_by_token(token: str) -> dict | None:
    """Unsubscribe the subscriber owning `token`.

    Returns the subscriber row, or None if the token is unknown. A subscriber
    who is already unsubscribed is returned untouched.
    """
    subscriber = db.get_subscriber_by_token(token)
    if not subscriber:
        return None

    if subscriber.get("status") == db.SUBSCRIBER_UNSUBSCRIBED:
        return subscriber

    now = datetime.now(timezone.utc)
    db.update("newsletter_subscribers", {
        "status": db.SUBSCRIBER_UNSUBSCRIBED,
        "updated_at": now.isoformat(),
    }, {"unsubscribe_token": token})

    # Credit the unsubscribe to the most recent email they got, if recent
    since = (now - timedelta(days=UNSUBSCRIBE_ATTRIBUTION_DAYS)).isoformat()
    recent = db.get_latest_analytics_since(subscriber["email"], since)
    if recent:
        db.update_analytics(recent["id"], {"unsubscribed_at": now.isoformat()})

    logger.info("Unsubscribed %s", subscriber["email"])
    return {**subscriber, "status": db.SUBSCRIBER_UNSUBSCRIBED}
