"""Newsletter signup — public form endpoint."""

import re
import time
from collections import defaultdict

from fastapi import APIRouter, HTTPException, Request

from imadlab_ops.services.subscribers import subscribe

router = APIRouter(prefix="/newsletter")

# Basic email validation — intentionally permissive
_EMAIL_RE = re.compile(r"^[^@\s]{1,64}@[^@\s]{1,255}$")

# In-memory rate limiter: {ip: [timestamp, ...]}
_rate_buckets: dict[str, list[float]] = defaultdict(list)
_RATE_LIMIT = 5        # max signups per window
_RATE_WINDOW = 60      # window in seconds


def _check_rate_limit(request: Request) -> None:
    """Raise 429 if IP exceeds rate limit. Simple sliding window."""
    ip = request.client.host if request.client else "unknown"
    now = time.monotonic()
    cutoff = now - _RATE_WINDOW
    _rate_buckets[ip] = bucket = [t for t in _rate_buckets[ip] if t > cutoff]
    if len(bucket) >= _RATE_LIMIT:
        raise HTTPException(status_code=429, detail="Rate limit exceeded")
    bucket.append(now)


def _validate_email(email: str) -> str:
    """Validate and normalize email. Raises HTTPException on invalid."""
    email = email.strip().lower()
    if not email or not _EMAIL_RE.match(email):
        raise HTTPException(status_code=400, detail="Invalid email format")
    return email


async def _json_body(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@router.post("/subscribe")
async def newsletter_subscribe(request: Request):
    _check_rate_limit(request)
    body = await _json_body(request)
    if body is None:
        raise HTTPException(status_code=400, detail="Invalid request body")
    email = _validate_email(str(body.get("email") or ""))

    result = subscribe(email)
    return {"status": result["status"], "email": email}
