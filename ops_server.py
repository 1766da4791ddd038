#!/usr/bin/env python3
"""imadlab ops — newsletter delivery, delivery webhooks and Strava data.

Launch: python3 ops_server.py
Serves at http://0.0.0.0:8000 (or PORT env var)
"""

import logging
import os

import uvicorn

from imadlab_ops.config import HOST, LOG_LEVEL, PORT


def main():
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )

    print("=" * 60)
    print("  imadlab ops")
    print("=" * 60)

    # Validate required env vars
    missing = [k for k in ("SUPABASE_URL", "SUPABASE_SERVICE_KEY", "RESEND_API_KEY",
                           "RESEND_WEBHOOK_SECRET") if not os.environ.get(k)]
    if missing:
        print("\n  WARNING: missing environment variables:")
        for key in missing:
            print(f"    {key}")
        print("  Continuing anyway for local development...\n")

    url = f"http://{HOST}:{PORT}"
    print(f"Starting server on {HOST}:{PORT}")
    print(f"\n  Health:      {url}/health")
    print(f"  Unsubscribe: {url}/unsubscribe?token=...")
    print("  Press Ctrl+C to stop\n")

    from imadlab_ops.app import create_app
    app = create_app()
    uvicorn.run(app, host=HOST, port=PORT, log_level="info")


if __name__ == "__main__":
    main()
