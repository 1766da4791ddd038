"""Supabase connection and query helpers for the content and newsletter tables."""

import threading
from datetime import datetime, timezone

from supabase import Client, create_client

from imadlab_ops.config import SUPABASE_SERVICE_KEY, SUPABASE_URL

_client: Client | None = None
_client_lock = threading.Lock()

# Queue item statuses
QUEUE_PENDING = "pending"
QUEUE_PROCESSING = "processing"
QUEUE_SENT = "sent"
QUEUE_FAILED = "failed"

# Subscriber statuses
SUBSCRIBER_ACTIVE = "active"
SUBSCRIBER_INACTIVE = "inactive"
SUBSCRIBER_UNSUBSCRIBED = "unsubscribed"

# content_type -> table
CONTENT_TABLES = {
    "blog_post": "posts",
    "project": "projects",
}


def get_client() -> Client:
    """Return the Supabase client singleton (thread-safe)."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
                    raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
                _client = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    return _client


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------

def _table(name: str):
    """Return a table query builder."""
    return get_client().table(name)


def insert(table: str, data: dict) -> dict:
    """Insert a row and return it."""
    result = _table(table).insert(data).execute()
    return result.data[0] if result.data else {}


def update(table: str, data: dict, match: dict) -> dict:
    """Update rows matching conditions."""
    q = _table(table).update(data)
    for k, v in match.items():
        q = q.eq(k, v)
    result = q.execute()
    return result.data[0] if result.data else {}


def select(table: str, columns: str = "*", match: dict | None = None,
           order: str | None = None, order_desc: bool = False,
           limit: int | None = None) -> list[dict]:
    """Select rows with optional filtering, ordering and limit."""
    q = _table(table).select(columns)
    if match:
        for k, v in match.items():
            q = q.eq(k, v)
    if order:
        q = q.order(order, desc=order_desc)
    if limit:
        q = q.limit(limit)
    result = q.execute()
    return result.data or []


def select_one(table: str, columns: str = "*", match: dict | None = None) -> dict | None:
    """Select a single row."""
    rows = select(table, columns, match, limit=1)
    return rows[0] if rows else None


# ---------------------------------------------------------------------------
# Content (posts / projects)
# ---------------------------------------------------------------------------

def get_content(content_type: str, content_id: str) -> dict | None:
    """Get a post or project by id. Unknown content types resolve to None."""
    table = CONTENT_TABLES.get(content_type)
    if not table:
        return None
    return select_one(table, match={"id": content_id})


def get_latest_content(content_type: str) -> dict | None:
    """Get the most recently created post or project."""
    table = CONTENT_TABLES.get(content_type)
    if not table:
        return None
    rows = select(table, order="created_at", order_desc=True, limit=1)
    return rows[0] if rows else None


# ---------------------------------------------------------------------------
# Email queue
# ---------------------------------------------------------------------------

def get_pending_queue_items(limit: int, max_retries: int) -> list[dict]:
    """Pending items that still have retries left, oldest schedule first."""
    q = _table("email_queue").select("*")
    q = q.eq("status", QUEUE_PENDING).lt("retry_count", max_retries)
    q = q.order("scheduled_at").limit(limit)
    result = q.execute()
    return result.data or []


def get_queue_items_by_ids(queue_ids: list[str], limit: int) -> list[dict]:
    """Explicitly requested items, regardless of status or retry count."""
    q = _table("email_queue").select("*").in_("id", queue_ids)
    q = q.order("scheduled_at").limit(limit)
    result = q.execute()
    return result.data or []


def get_queue_items(limit: int = 50) -> list[dict]:
    """Most recent queue items for the admin view."""
    return select("email_queue", order="created_at", order_desc=True, limit=limit)


def claim_queue_item(queue_id: str) -> bool:
    """Move an item to processing unless another run already holds it.

    The status filter makes this a conditional update, so two overlapping
    runs cannot both claim the same row.
    """
    q = _table("email_queue").update({"status": QUEUE_PROCESSING})
    q = q.eq("id", queue_id).neq("status", QUEUE_PROCESSING)
    result = q.execute()
    return bool(result.data)


def update_queue_item(queue_id: str, data: dict) -> dict:
    """Update a queue item by id."""
    return update("email_queue", data, {"id": queue_id})


def enqueue(content_type: str, content_id: str) -> dict:
    """Create a pending queue item for a piece of content."""
    now = utcnow()
    return insert("email_queue", {
        "content_type": content_type,
        "content_id": content_id,
        "status": QUEUE_PENDING,
        "retry_count": 0,
        "scheduled_at": now,
        "created_at": now,
    })


# ---------------------------------------------------------------------------
# Newsletter subscribers
# ---------------------------------------------------------------------------

def get_active_subscribers() -> list[dict]:
    """All subscribers allowed to receive new-content emails."""
    return select(
        "newsletter_subscribers",
        columns="id, email, unsubscribe_token",
        match={"status": SUBSCRIBER_ACTIVE},
    )


def get_subscriber_by_token(token: str) -> dict | None:
    """Resolve an unsubscribe token to its subscriber."""
    return select_one("newsletter_subscribers", match={"unsubscribe_token": token})


def set_subscriber_status(email: str, status: str) -> dict:
    """Change a subscriber's status by email."""
    return update("newsletter_subscribers", {
        "status": status,
        "updated_at": utcnow(),
    }, {"email": email})


def insert_subscriber(email: str, token: str) -> dict:
    """Insert a new active subscriber. Raises on unique violation."""
    now = utcnow()
    return insert("newsletter_subscribers", {
        "email": email,
        "status": SUBSCRIBER_ACTIVE,
        "unsubscribe_token": token,
        "created_at": now,
        "updated_at": now,
    })


# ---------------------------------------------------------------------------
# Email analytics
# ---------------------------------------------------------------------------

def record_send(queue_id: str, email: str) -> dict:
    """Create the analytics row for one successful send."""
    now = utcnow()
    return insert("email_analytics", {
        "email_queue_id": queue_id,
        "subscriber_email": email,
        "sent_at": now,
        "created_at": now,
    })


def get_latest_undelivered_analytics(email: str) -> dict | None:
    """Most recent send to this address with no delivery confirmation yet."""
    q = _table("email_analytics").select("*")
    q = q.eq("subscriber_email", email).is_("delivered_at", "null")
    q = q.order("sent_at", desc=True).limit(1)
    result = q.execute()
    return result.data[0] if result.data else None


def get_latest_analytics(email: str) -> dict | None:
    """Most recent send to this address."""
    rows = select("email_analytics", match={"subscriber_email": email},
                  order="sent_at", order_desc=True, limit=1)
    return rows[0] if rows else None


def get_latest_analytics_since(email: str, since: str) -> dict | None:
    """Most recent analytics row for this address created at or after `since`."""
    q = _table("email_analytics").select("id")
    q = q.eq("subscriber_email", email).gte("created_at", since)
    q = q.order("created_at", desc=True).limit(1)
    result = q.execute()
    return result.data[0] if result.data else None


def update_analytics(analytics_id: str, data: dict) -> dict:
    """Update an analytics row by id."""
    return update("email_analytics", data, {"id": analytics_id})
