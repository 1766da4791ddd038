"""Strava API proxy — exchanges the refresh token and fetches stats + activities."""

import logging
from concurrent.futures import ThreadPoolExecutor

import requests

from imadlab_ops.config import (
    HTTP_TIMEOUT_SECONDS, STRAVA_CLIENT_ID, STRAVA_CLIENT_SECRET, STRAVA_REFRESH_TOKEN,
)

logger = logging.getLogger(__name__)

TOKEN_URL = "https://www.strava.com/oauth/token"
API_BASE = "https://www.strava.com/api/v3"
ACTIVITIES_PER_PAGE = 50


class StravaError(Exception):
    """Strava data could not be fetched."""


class StravaRateLimitError(StravaError):
    """Strava (or the proxy in front of it) answered 429."""


class StravaAuthError(StravaError):
    """Strava (or the proxy in front of it) rejected our credentials."""


def raise_for_strava_status(resp: requests.Response, what: str) -> None:
    """Map an unsuccessful response to the matching StravaError."""
    if resp.ok:
        return
    if resp.status_code == 429:
        raise StravaRateLimitError(f"Strava rate limit exceeded while fetching {what}")
    if resp.status_code in (401, 403):
        raise StravaAuthError(f"Strava authentication failed while fetching {what}: {resp.status_code}")
    raise StravaError(f"Failed to fetch {what}: {resp.status_code} - {resp.text[:200]}")


def _get_access_token(session: requests.Session) -> str:
    missing = [name for name, value in (
        ("STRAVA_CLIENT_ID", STRAVA_CLIENT_ID),
        ("STRAVA_CLIENT_SECRET", STRAVA_CLIENT_SECRET),
        ("STRAVA_REFRESH_TOKEN", STRAVA_REFRESH_TOKEN),
    ) if not value]
    if missing:
        raise StravaError(f"Missing Strava credentials: {', '.join(missing)}")

    resp = session.post(TOKEN_URL, json={
        "client_id": STRAVA_CLIENT_ID,
        "client_secret": STRAVA_CLIENT_SECRET,
        "refresh_token": STRAVA_REFRESH_TOKEN,
        "grant_type": "refresh_token",
    }, timeout=HTTP_TIMEOUT_SECONDS)
    raise_for_strava_status(resp, "access token")
    return resp.json()["access_token"]


def _get_json(session: requests.Session, url: str, token: str, what: str):
    resp = session.get(url, headers={"Authorization": f"Bearer {token}"},
                       timeout=HTTP_TIMEOUT_SECONDS)
    raise_for_strava_status(resp, what)
    return resp.json()


def fetch_strava_data(session: requests.Session | None = None) -> dict:
    """Fetch athlete stats and the latest activities from Strava.

    Returns {"stats": {...}, "activities": [...]}.
    """
    session = session or requests.Session()
    token = _get_access_token(session)
    athlete = _get_json(session, f"{API_BASE}/athlete", token, "athlete")

    stats_url = f"{API_BASE}/athletes/{athlete['id']}/stats"
    activities_url = f"{API_BASE}/athlete/activities?per_page={ACTIVITIES_PER_PAGE}"
    with ThreadPoolExecutor(max_workers=2) as pool:
        stats_future = pool.submit(_get_json, session, stats_url, token, "stats")
        activities_future = pool.submit(_get_json, session, activities_url, token, "activities")
        stats = stats_future.result()
        activities = activities_future.result()

    logger.info("Fetched Strava data: %d stat groups, %d activities", len(stats), len(activities))
    return {"stats": stats, "activities": activities}
