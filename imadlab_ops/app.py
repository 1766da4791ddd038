"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from imadlab_ops.config import QUEUE_INTERVAL_MINUTES
from imadlab_ops.routers import emails, newsletter, strava, unsubscribe, webhooks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    try:
        from imadlab_ops.scheduler import scheduler
        scheduler.start()
        logger.info("Scheduler started — processing the email queue every %d minutes",
                    QUEUE_INTERVAL_MINUTES)
    except Exception as e:
        logger.warning("Scheduler failed to start: %s", e)

    yield

    try:
        from imadlab_ops.scheduler import scheduler
        if scheduler.running:
            scheduler.shutdown(wait=False)
    except Exception as e:
        logger.warning("Scheduler failed to stop: %s", e)


def create_app() -> FastAPI:
    app = FastAPI(
        title="imadlab ops",
        description="Newsletter delivery, delivery webhooks and Strava data for imadlab.",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok"}

    # Public endpoints (email links, signup form, provider callbacks)
    for r in [unsubscribe, newsletter, webhooks, strava]:
        app.include_router(r.router, include_in_schema=False)

    # Admin endpoints
    app.include_router(emails.router)

    return app
