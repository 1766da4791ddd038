"""Strava data cache with rate-limit protection.

Two layers sit in front of the Strava proxy:

- an in-memory copy with a short TTL for rapid repeated calls, and
- a persistent blob holding the last good payload plus the time of the last
  API call. The last-call time gates new calls on its own, so a call can be
  refused even when the payload is stale.

Whenever any cached payload exists, upstream failures fall back to it; only a
cold cache plus a failed fetch raises.
"""

import json
import logging
import math
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable

import requests

from imadlab_ops.config import (
    HTTP_TIMEOUT_SECONDS,
    STRAVA_MEMORY_TTL_SECONDS,
    STRAVA_MIN_API_INTERVAL_SECONDS,
)
from imadlab_ops.services.strava_proxy import (
    StravaAuthError,
    StravaError,
    StravaRateLimitError,
    raise_for_strava_status,
)

logger = logging.getLogger(__name__)

CACHE_KEY = "strava_data_cache"


class JsonFileStorage:
    """Keyed JSON blobs in a single file. Survives restarts."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._write_lock = threading.Lock()

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Error reading cache file %s: %s", self.path, e)
            return {}

    def get(self, key: str):
        return self._load().get(key)

    def set(self, key: str, value) -> None:
        """Replace the file atomically so readers never see a partial write."""
        with self._write_lock:
            data = self._load()
            data[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(data, f)
                os.replace(tmp_path, self.path)
            except BaseException:
                os.unlink(tmp_path)
                raise


class StravaCache:
    """Persistent Strava payload + last-API-call timestamp."""

    def __init__(self, storage: JsonFileStorage, clock: Callable[[], float] = time.time,
                 min_api_interval: float = STRAVA_MIN_API_INTERVAL_SECONDS):
        self.storage = storage
        self.clock = clock
        self.min_api_interval = min_api_interval

    def get(self) -> dict | None:
        """Cached {stats, activities, cachedAt, lastApiCallAt}, or None."""
        try:
            entry = self.storage.get(CACHE_KEY)
        except OSError as e:
            logger.error("Error reading Strava cache: %s", e)
            return None
        if not entry or "stats" not in entry or "activities" not in entry:
            return None
        return entry

    def set(self, stats: dict, activities: list) -> None:
        now = self.clock()
        try:
            self.storage.set(CACHE_KEY, {
                "stats": stats,
                "activities": activities,
                "cachedAt": now,
                "lastApiCallAt": now,
            })
        except OSError as e:
            logger.error("Error saving Strava cache: %s", e)

    def update_last_api_call(self) -> None:
        """Bump the last-call time without touching the payload."""
        entry = self.get()
        if not entry:
            return
        entry["lastApiCallAt"] = self.clock()
        try:
            self.storage.set(CACHE_KEY, entry)
        except OSError as e:
            logger.error("Error updating Strava API call timestamp: %s", e)

    def time_until_next_call(self) -> float:
        """Seconds until another API call is allowed (0 if allowed now)."""
        entry = self.get()
        if not entry:
            return 0
        # Entries written without a timestamp never block a call
        elapsed = self.clock() - (entry.get("lastApiCallAt") or 0)
        return max(0, self.min_api_interval - elapsed)

    def can_make_api_call(self) -> bool:
        remaining = self.time_until_next_call()
        if remaining > 0:
            logger.debug("Strava rate limit protection: wait %d more minutes",
                         math.ceil(remaining / 60))
        return remaining == 0

    def cache_age_minutes(self) -> int:
        entry = self.get()
        cached_at = entry.get("cachedAt") if entry else None
        if cached_at is None:
            return 0
        return int((self.clock() - cached_at) // 60)


class StravaProxyClient:
    """Calls the Strava proxy endpoint."""

    def __init__(self, url: str, timeout: float = HTTP_TIMEOUT_SECONDS,
                 session: requests.Session | None = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self) -> dict:
        """Return {stats, activities}.

        Raises StravaRateLimitError on 429, StravaAuthError on 401/403 and
        StravaError for any other failure or a malformed payload.
        """
        try:
            resp = self.session.get(self.url, timeout=self.timeout)
        except requests.RequestException as e:
            raise StravaError(f"Failed to reach Strava proxy: {e}") from e
        raise_for_strava_status(resp, "Strava data")

        try:
            data = resp.json()
        except ValueError as e:
            raise StravaError("Strava proxy returned invalid JSON") from e
        if not isinstance(data, dict):
            raise StravaError("Strava proxy returned an unexpected payload")
        if data.get("error"):
            raise StravaError(data["error"])
        if "stats" not in data or "activities" not in data:
            raise StravaError("Strava proxy response is missing stats or activities")
        return {"stats": data["stats"], "activities": data["activities"]}


class StravaClient:
    """Strava data with in-memory + persistent caching and call throttling."""

    def __init__(self, fetcher: Callable[[], dict], cache: StravaCache,
                 clock: Callable[[], float] = time.time,
                 memory_ttl: float = STRAVA_MEMORY_TTL_SECONDS):
        self.fetcher = fetcher
        self.cache = cache
        self.clock = clock
        self.memory_ttl = memory_ttl
        self._memory: dict | None = None
        self._memory_at = 0.0
        # One refresh at a time; requests share this client across threads
        self._refresh_lock = threading.Lock()

    def _remember(self, data: dict) -> dict:
        self._memory = data
        self._memory_at = self.clock()
        return data

    def _from_memory(self) -> dict | None:
        if self._memory is not None and self.clock() - self._memory_at < self.memory_ttl:
            return self._memory
        return None

    def get_data(self) -> dict:
        """Return {stats, activities}, hitting the network only when allowed."""
        data = self._from_memory()
        if data is not None:
            return data

        with self._refresh_lock:
            # Another thread may have refreshed while we waited
            data = self._from_memory()
            if data is not None:
                return data
            return self._load()

    def _load(self) -> dict:
        cached = self.cache.get()
        cached_data = (
            {"stats": cached["stats"], "activities": cached["activities"]} if cached else None
        )

        if cached_data and not self.cache.can_make_api_call():
            return self._remember(cached_data)

        try:
            fresh = self.fetcher()
        except StravaRateLimitError:
            if not cached_data:
                raise
            logger.warning("Strava rate limited, serving cached data (%d min old)",
                           self.cache.cache_age_minutes())
            self.cache.update_last_api_call()
            return self._remember(cached_data)
        except StravaAuthError as e:
            if not cached_data:
                raise
            logger.error("Strava authentication failed, serving cached data: %s", e)
            return self._remember(cached_data)
        except Exception as e:
            if not cached_data:
                raise
            logger.warning("Strava fetch failed, serving cached data: %s", e)
            return self._remember(cached_data)

        self.cache.set(fresh["stats"], fresh["activities"])
        return self._remember(fresh)

    def get_athlete_stats(self) -> dict:
        return self.get_data()["stats"]

    def get_recent_activities(self) -> list:
        return self.get_data()["activities"]
