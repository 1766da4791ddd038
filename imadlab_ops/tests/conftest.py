"""Shared fixtures for imadlab ops tests.

Provides:
- fake_db: patches supabase_client with an in-memory fake
- client: sync TestClient wired to the FastAPI app
- sample data factories for posts, projects, subscribers, queue items, analytics
"""

import os
import tempfile
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from unittest.mock import patch, MagicMock

import pytest
from postgrest import APIError

# Set env vars before any imadlab_ops imports
os.environ.setdefault("SUPABASE_URL", "https://fake.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "fake-key")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")
os.environ.setdefault("RESEND_WEBHOOK_SECRET", "whsec-test-secret")
os.environ.setdefault("ADMIN_SECRET", "admin-secret-123")
os.environ.setdefault("SITE_URL", "https://imadlab.com")
os.environ.setdefault("STRAVA_CACHE_PATH",
                      os.path.join(tempfile.gettempdir(), "imadlab-ops-test-strava.json"))

ADMIN_HEADERS = {"Authorization": "Bearer admin-secret-123"}

# Columns with a unique constraint, per table
UNIQUE_COLUMNS = {
    "newsletter_subscribers": ("email", "unsubscribe_token"),
}


# ---------------------------------------------------------------------------
# In-memory fake Supabase
# ---------------------------------------------------------------------------

class FakeQueryResult:
    def __init__(self, data=None, count=None):
        self.data = data or []
        self.count = count


def _comparable(row_val, val):
    if isinstance(row_val, (int, float)) and isinstance(val, (int, float)):
        return row_val, val
    return str(row_val), str(val)


def _sort_key(value):
    # NULLs sort first, like Postgres with DESC
    return (0, "") if value is None else (1, value)


class FakeQueryBuilder:
    """Mimics the supabase-py query builder chain."""

    def __init__(self, store, table_name):
        self._store = store
        self._table = table_name
        self._filters = []
        self._order_col = None
        self._order_desc = False
        self._limit_val = None
        self._columns = "*"
        self._count_mode = None
        self._update_data = None
        self._insert_data = None

    def select(self, columns="*", count=None):
        self._columns = columns
        self._count_mode = count
        return self

    def insert(self, data):
        self._insert_data = data
        return self

    def update(self, data):
        self._update_data = data
        return self

    def eq(self, col, val):
        self._filters.append(("eq", col, val))
        return self

    def neq(self, col, val):
        self._filters.append(("neq", col, val))
        return self

    def gte(self, col, val):
        self._filters.append(("gte", col, val))
        return self

    def lte(self, col, val):
        self._filters.append(("lte", col, val))
        return self

    def lt(self, col, val):
        self._filters.append(("lt", col, val))
        return self

    def is_(self, col, val):
        self._filters.append(("is", col, val))
        return self

    def in_(self, col, values):
        self._filters.append(("in", col, list(values)))
        return self

    def order(self, col, desc=False):
        self._order_col = col
        self._order_desc = desc
        return self

    def limit(self, n):
        self._limit_val = n
        return self

    def _match(self, row):
        for op, col, val in self._filters:
            row_val = row.get(col)
            if op == "eq" and row_val != val:
                return False
            if op == "neq" and row_val == val:
                return False
            if op == "is" and val == "null" and row_val is not None:
                return False
            if op == "in" and row_val not in val:
                return False
            if op in ("gte", "lte", "lt"):
                if row_val is None:
                    return False
                a, b = _comparable(row_val, val)
                if op == "gte" and a < b:
                    return False
                if op == "lte" and a > b:
                    return False
                if op == "lt" and a >= b:
                    return False
        return True

    def execute(self):
        table = self._store[self._table]

        if self._insert_data is not None:
            row = dict(self._insert_data)
            for col in UNIQUE_COLUMNS.get(self._table, ()):
                if row.get(col) is not None and any(r.get(col) == row[col] for r in table):
                    raise APIError({
                        "code": "23505",
                        "message": f"duplicate key value violates unique constraint on {col}",
                        "details": "",
                        "hint": "",
                    })
            if "id" not in row:
                row["id"] = str(uuid.uuid4())
            table.append(row)
            return FakeQueryResult(data=[row])

        if self._update_data is not None:
            updated = []
            for row in table:
                if self._match(row):
                    row.update(self._update_data)
                    updated.append(row)
            return FakeQueryResult(data=updated)

        # SELECT
        rows = [r for r in table if self._match(r)]

        if self._order_col:
            rows.sort(key=lambda r: _sort_key(r.get(self._order_col)), reverse=self._order_desc)

        total = len(rows)
        if self._limit_val is not None:
            rows = rows[:self._limit_val]

        return FakeQueryResult(data=rows, count=total if self._count_mode else None)


class FakeDB:
    """In-memory store keyed by table name."""

    def __init__(self):
        self.store = defaultdict(list)

    def table(self, name):
        return FakeQueryBuilder(self.store, name)

    def clear(self):
        self.store.clear()


@pytest.fixture
def fake_db():
    """Provides a clean in-memory DB and patches supabase_client._table."""
    db = FakeDB()

    def fake_table(name):
        return FakeQueryBuilder(db.store, name)

    with patch("imadlab_ops.supabase_client._table", side_effect=fake_table):
        with patch("imadlab_ops.supabase_client.get_client", return_value=MagicMock()):
            yield db


@pytest.fixture
def client(fake_db):
    """Sync test client for the FastAPI app with mocked DB and no scheduler."""
    from contextlib import asynccontextmanager

    from fastapi.testclient import TestClient

    from imadlab_ops.app import create_app

    @asynccontextmanager
    async def noop_lifespan(app):
        yield

    app = create_app()
    app.router.lifespan_context = noop_lifespan

    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------

def _now():
    return datetime.now(timezone.utc).isoformat()


def make_post(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "title": "Hello World",
        "slug": "hello-world",
        "excerpt": "A first post about building things.",
        "published_date": "2024-01-15T10:00:00Z",
        "tags": ["python", "email"],
        "image_url": None,
        "created_at": _now(),
    }
    defaults.update(overrides)
    return defaults


def make_project(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "title": "Trail Tracker",
        "description": "Maps every run I have ever done.",
        "tech_tags": ["React", "Supabase"],
        "image_url": None,
        "repo_url": "https://github.com/imadlab/trail-tracker",
        "created_at": _now(),
    }
    defaults.update(overrides)
    return defaults


def make_subscriber(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "email": "a@example.com",
        "status": "active",
        "unsubscribe_token": uuid.uuid4().hex,
        "created_at": "2024-01-01T00:00:00+00:00",
        "updated_at": "2024-01-01T00:00:00+00:00",
    }
    defaults.update(overrides)
    return defaults


def make_queue_item(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "content_type": "blog_post",
        "content_id": str(uuid.uuid4()),
        "status": "pending",
        "scheduled_at": _now(),
        "sent_at": None,
        "error_message": None,
        "retry_count": 0,
        "created_at": _now(),
    }
    defaults.update(overrides)
    return defaults


def make_analytics(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "email_queue_id": str(uuid.uuid4()),
        "subscriber_email": "a@example.com",
        "sent_at": _now(),
        "delivered_at": None,
        "opened_at": None,
        "clicked_at": None,
        "bounced_at": None,
        "unsubscribed_at": None,
        "created_at": _now(),
    }
    defaults.update(overrides)
    return defaults
