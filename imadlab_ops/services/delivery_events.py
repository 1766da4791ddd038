"""Resend delivery events — signature verification and analytics reconciliation.

Resend reports delivery events by recipient address only, so an event is
matched to the newest analytics row for that address that has not been
confirmed delivered yet, falling back to the newest row for the address.
"""

import base64
import hashlib
import hmac
import logging
import time
from datetime import datetime, timezone

from imadlab_ops import supabase_client as db
from imadlab_ops.config import WEBHOOK_TOLERANCE_SECONDS

logger = logging.getLogger(__name__)

# event type -> analytics column
_EVENT_COLUMNS = {
    "email.delivered": "delivered_at",
    "email.opened": "opened_at",
    "email.clicked": "clicked_at",
    "email.bounced": "bounced_at",
    "email.complained": "bounced_at",
}

# event type -> subscriber status it forces
_EVENT_SUBSCRIBER_STATUS = {
    "email.bounced": db.SUBSCRIBER_INACTIVE,
    "email.complained": db.SUBSCRIBER_UNSUBSCRIBED,
}


def _parse_signature_header(signature: str) -> tuple[str | None, list[str]]:
    """'t=1700000000,v1=abc=,v1=def=' -> ('1700000000', ['abc=', 'def='])."""
    timestamp = None
    signatures = []
    for element in signature.split(","):
        key, sep, value = element.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    return timestamp, signatures


def compute_signature(payload: bytes | str, timestamp: str, secret: str) -> str:
    """Base64 HMAC-SHA256 over the bytes of '{timestamp}.{payload}'."""
    if isinstance(payload, str):
        payload = payload.encode()
    digest = hmac.new(
        secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode()


def verify_signature(payload: bytes | str, signature: str, timestamp: str, secret: str,
                     now: float | None = None) -> bool:
    """Check a webhook signature header against the raw request body.

    The timestamp signed is the header's `t=` element when present, otherwise
    the separate timestamp header. Timestamps more than
    WEBHOOK_TOLERANCE_SECONDS away from now are rejected.
    """
    signed_ts, candidates = _parse_signature_header(signature or "")
    signed_ts = signed_ts or timestamp
    if not signed_ts or not candidates:
        return False

    try:
        webhook_time = int(signed_ts)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if abs(current - webhook_time) > WEBHOOK_TOLERANCE_SECONDS:
        return False

    expected = compute_signature(payload, signed_ts, secret)
    return any(hmac.compare_digest(expected, candidate) for candidate in candidates)


def is_handled(event_type: str) -> bool:
    """Whether an event type changes analytics."""
    return event_type in _EVENT_COLUMNS


def find_analytics_record(email: str) -> dict | None:
    """Best-effort match of an event to the send it belongs to."""
    record = db.get_latest_undelivered_analytics(email)
    if record:
        return record
    return db.get_latest_analytics(email)


def _event_timestamp(event: dict) -> str:
    created_at = event.get("created_at")
    if created_at:
        try:
            dt = datetime.fromisoformat(str(created_at).replace("Z", "+00:00"))
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc).isoformat()
        except ValueError:
            logger.warning("Unparseable event created_at %r, using now", created_at)
    return datetime.now(timezone.utc).isoformat()


def apply_event(event: dict, recipient: str) -> dict | None:
    """Apply a handled event to the matching analytics row.

    Returns a summary dict, or None when no analytics row matches. Repeated
    events overwrite the earlier timestamp.
    """
    event_type = event.get("type", "")
    column = _EVENT_COLUMNS[event_type]

    record = find_analytics_record(recipient)
    if not record:
        logger.info("No analytics record found for %s event for %s", event_type, recipient)
        return None

    event_ts = _event_timestamp(event)
    logger.info("Processing %s event for %s, analytics record %s",
                event_type, recipient, record["id"])

    status = _EVENT_SUBSCRIBER_STATUS.get(event_type)
    if status:
        db.set_subscriber_status(recipient, status)
        logger.info("Marked subscriber %s as %s after %s", recipient, status, event_type)

    db.update_analytics(record["id"], {column: event_ts})

    return {
        "message": "Webhook processed successfully",
        "eventType": event_type,
        "recipientEmail": recipient,
        "analyticsId": record["id"],
        "timestamp": event_ts,
    }
