"""Strava routes — the raw proxy and the cached running data the site reads."""

import asyncio
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from imadlab_ops.config import STRAVA_CACHE_PATH, STRAVA_PROXY_URL
from imadlab_ops.services.strava_cache import (
    JsonFileStorage,
    StravaCache,
    StravaClient,
    StravaProxyClient,
)
from imadlab_ops.services.strava_proxy import (
    StravaAuthError,
    StravaRateLimitError,
    fetch_strava_data,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_cache = StravaCache(JsonFileStorage(STRAVA_CACHE_PATH))
strava_client = StravaClient(StravaProxyClient(STRAVA_PROXY_URL).fetch, _cache)


@router.get("/strava")
async def strava_proxy():
    """Fresh stats + activities straight from Strava (uncached)."""
    try:
        return await asyncio.to_thread(fetch_strava_data)
    except StravaRateLimitError as e:
        return JSONResponse({"error": str(e)}, status_code=429)
    except StravaAuthError as e:
        return JSONResponse({"error": str(e)}, status_code=401)
    except Exception as e:
        logger.error("Strava proxy error: %s", e)
        return JSONResponse({"error": str(e)}, status_code=500)


@router.get("/running")
async def running_data():
    """Cached Strava data with its age, for the running page."""
    try:
        data = await asyncio.to_thread(strava_client.get_data)
    except Exception as e:
        logger.error("Unable to load Strava data: %s", e)
        return JSONResponse({"error": str(e)}, status_code=503)

    return {**data, "cacheAgeMinutes": strava_client.cache.cache_age_minutes()}
