"""imadlab ops configuration — loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

REPO_ROOT = Path(__file__).resolve().parent.parent

# Supabase
SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY", "")

# Resend (email sending + delivery webhooks)
RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "")
RESEND_FROM_EMAIL = os.environ.get("RESEND_FROM_EMAIL", "newsletter@imadlab.com")
RESEND_FROM_NAME = os.environ.get("RESEND_FROM_NAME", "imadlab")
RESEND_WEBHOOK_SECRET = os.environ.get("RESEND_WEBHOOK_SECRET", "")

# Public site (links in emails) and this service (unsubscribe, proxy)
SITE_URL = os.environ.get("SITE_URL", "https://imadlab.com").rstrip("/")
PUBLIC_URL = os.environ.get("PUBLIC_URL", SITE_URL).rstrip("/")

# Bearer secret for the admin email endpoints
ADMIN_SECRET = os.environ.get("ADMIN_SECRET", "")

# Server
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Email queue
QUEUE_BATCH_SIZE = int(os.environ.get("QUEUE_BATCH_SIZE", "50"))
QUEUE_MAX_RETRIES = int(os.environ.get("QUEUE_MAX_RETRIES", "3"))
QUEUE_INTERVAL_MINUTES = int(os.environ.get("QUEUE_INTERVAL_MINUTES", "15"))

# Delivery webhooks
WEBHOOK_TOLERANCE_SECONDS = int(os.environ.get("WEBHOOK_TOLERANCE_SECONDS", "300"))

# Unsubscribes are credited to an email sent within this window
UNSUBSCRIBE_ATTRIBUTION_DAYS = int(os.environ.get("UNSUBSCRIBE_ATTRIBUTION_DAYS", "30"))

# Strava
STRAVA_CLIENT_ID = os.environ.get("STRAVA_CLIENT_ID", "")
STRAVA_CLIENT_SECRET = os.environ.get("STRAVA_CLIENT_SECRET", "")
STRAVA_REFRESH_TOKEN = os.environ.get("STRAVA_REFRESH_TOKEN", "")
STRAVA_PROXY_URL = os.environ.get("STRAVA_PROXY_URL", f"{PUBLIC_URL}/strava")
STRAVA_CACHE_PATH = Path(os.environ.get("STRAVA_CACHE_PATH", str(REPO_ROOT / ".cache" / "strava.json")))
# 15 minutes keeps us well inside Strava's 100 requests / 15 min budget
STRAVA_MIN_API_INTERVAL_SECONDS = int(os.environ.get("STRAVA_MIN_API_INTERVAL_SECONDS", "900"))
STRAVA_MEMORY_TTL_SECONDS = int(os.environ.get("STRAVA_MEMORY_TTL_SECONDS", "60"))

# Outbound HTTP
HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "10"))
