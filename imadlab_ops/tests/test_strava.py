"""Tests for the Strava proxy, persistent cache and throttled client."""

import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest
import requests

from imadlab_ops.services.strava_cache import (
    CACHE_KEY,
    JsonFileStorage,
    StravaCache,
    StravaClient,
    StravaProxyClient,
)
from imadlab_ops.services.strava_proxy import (
    StravaAuthError,
    StravaError,
    StravaRateLimitError,
    fetch_strava_data,
    raise_for_strava_status,
)

STATS = {"all_run_totals": {"count": 120, "distance": 900000.0}}
ACTIVITIES = [{"id": 1, "name": "Morning Run", "distance": 5000.0}]


class Clock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _response(status=200, payload=None, text=""):
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status
    resp.ok = status < 400
    resp.text = text
    resp.json.return_value = payload
    return resp


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache(tmp_path, clock):
    return StravaCache(JsonFileStorage(tmp_path / "strava.json"), clock=clock, min_api_interval=900)


class FakeFetcher:
    def __init__(self, result=None, error=None):
        self.result = result or {"stats": STATS, "activities": ACTIVITIES}
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


# ---------------------------------------------------------------------------
# Proxy
# ---------------------------------------------------------------------------

class TestStatusMapping:
    @pytest.mark.parametrize("status,exc", [
        (429, StravaRateLimitError),
        (401, StravaAuthError),
        (403, StravaAuthError),
        (500, StravaError),
    ])
    def test_errors(self, status, exc):
        with pytest.raises(exc):
            raise_for_strava_status(_response(status, text="boom"), "stats")

    def test_ok(self):
        raise_for_strava_status(_response(200), "stats")


class TestFetchStravaData:
    def _session(self):
        session = MagicMock()
        session.post.return_value = _response(200, {"access_token": "at-1"})

        def get(url, headers=None, timeout=None):
            assert headers == {"Authorization": "Bearer at-1"}
            if url.endswith("/athlete"):
                return _response(200, {"id": 42})
            if "/athletes/42/stats" in url:
                return _response(200, STATS)
            if "/athlete/activities" in url:
                assert "per_page=50" in url
                return _response(200, ACTIVITIES)
            raise AssertionError(url)

        session.get.side_effect = get
        return session

    def test_fetches_stats_and_activities(self):
        with patch.multiple("imadlab_ops.services.strava_proxy",
                            STRAVA_CLIENT_ID="1", STRAVA_CLIENT_SECRET="s",
                            STRAVA_REFRESH_TOKEN="r"):
            data = fetch_strava_data(self._session())
        assert data == {"stats": STATS, "activities": ACTIVITIES}

    def test_missing_credentials(self):
        with patch.multiple("imadlab_ops.services.strava_proxy",
                            STRAVA_CLIENT_ID="", STRAVA_CLIENT_SECRET="s",
                            STRAVA_REFRESH_TOKEN="r"):
            with pytest.raises(StravaError, match="STRAVA_CLIENT_ID"):
                fetch_strava_data(MagicMock())

    def test_token_refresh_rejected(self):
        session = MagicMock()
        session.post.return_value = _response(401)
        with patch.multiple("imadlab_ops.services.strava_proxy",
                            STRAVA_CLIENT_ID="1", STRAVA_CLIENT_SECRET="s",
                            STRAVA_REFRESH_TOKEN="r"):
            with pytest.raises(StravaAuthError):
                fetch_strava_data(session)


class TestStravaProxyClient:
    def _client(self, resp=None, error=None):
        session = MagicMock()
        if error:
            session.get.side_effect = error
        else:
            session.get.return_value = resp
        return StravaProxyClient("https://ops.example.com/strava", timeout=5, session=session)

    def test_ok(self):
        client = self._client(_response(200, {"stats": STATS, "activities": ACTIVITIES}))
        assert client.fetch() == {"stats": STATS, "activities": ACTIVITIES}
        client.session.get.assert_called_once_with("https://ops.example.com/strava", timeout=5)

    def test_rate_limited(self):
        with pytest.raises(StravaRateLimitError):
            self._client(_response(429, {"error": "Rate limit"})).fetch()

    def test_network_error(self):
        with pytest.raises(StravaError, match="Failed to reach"):
            self._client(error=requests.ConnectionError("down")).fetch()

    def test_error_payload(self):
        with pytest.raises(StravaError, match="upstream broke"):
            self._client(_response(200, {"error": "upstream broke"})).fetch()

    def test_missing_keys(self):
        with pytest.raises(StravaError):
            self._client(_response(200, {"stats": STATS})).fetch()


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class TestStravaCache:
    def test_empty(self, cache):
        assert cache.get() is None
        assert cache.can_make_api_call()
        assert cache.time_until_next_call() == 0
        assert cache.cache_age_minutes() == 0

    def test_set_then_get(self, cache, clock):
        cache.set(STATS, ACTIVITIES)
        entry = cache.get()
        assert entry["stats"] == STATS
        assert entry["cachedAt"] == clock.now
        assert entry["lastApiCallAt"] == clock.now

    def test_persists_across_instances(self, tmp_path, clock):
        path = tmp_path / "nested" / "strava.json"
        StravaCache(JsonFileStorage(path), clock=clock).set(STATS, ACTIVITIES)
        assert StravaCache(JsonFileStorage(path), clock=clock).get()["activities"] == ACTIVITIES

    def test_throttle_window(self, cache, clock):
        cache.set(STATS, ACTIVITIES)
        assert not cache.can_make_api_call()
        clock.advance(600)
        assert cache.time_until_next_call() == 300
        clock.advance(300)
        assert cache.can_make_api_call()

    def test_update_last_api_call_keeps_payload(self, cache, clock):
        cache.set(STATS, ACTIVITIES)
        cached_at = clock.now
        clock.advance(1000)
        cache.update_last_api_call()
        entry = cache.get()
        assert entry["cachedAt"] == cached_at
        assert entry["lastApiCallAt"] == clock.now
        assert cache.cache_age_minutes() == 16

    def test_corrupt_file_is_empty(self, tmp_path, clock):
        path = tmp_path / "strava.json"
        path.write_text("{not json")
        assert StravaCache(JsonFileStorage(path), clock=clock).get() is None

    def test_incomplete_entry_ignored(self, tmp_path, clock):
        storage = JsonFileStorage(tmp_path / "strava.json")
        storage.set(CACHE_KEY, {"stats": STATS})
        assert StravaCache(storage, clock=clock).get() is None

    def test_entry_without_timestamps_does_not_block(self, tmp_path, clock):
        storage = JsonFileStorage(tmp_path / "strava.json")
        storage.set(CACHE_KEY, {"stats": STATS, "activities": ACTIVITIES})
        cache = StravaCache(storage, clock=clock)
        assert cache.can_make_api_call()
        assert cache.cache_age_minutes() == 0

    def test_write_replaces_file_whole(self, tmp_path, clock):
        path = tmp_path / "strava.json"
        cache = StravaCache(JsonFileStorage(path), clock=clock)
        cache.set(STATS, ACTIVITIES)

        with patch("imadlab_ops.services.strava_cache.json.dump", side_effect=OSError("disk full")):
            cache.set({"new": True}, [])

        assert cache.get()["stats"] == STATS
        assert [p.name for p in tmp_path.iterdir()] == ["strava.json"]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class TestStravaClient:
    def test_cold_cache_fetches_and_stores(self, cache, clock):
        fetcher = FakeFetcher()
        client = StravaClient(fetcher, cache, clock=clock)
        assert client.get_data() == {"stats": STATS, "activities": ACTIVITIES}
        assert fetcher.calls == 1
        assert cache.get()["stats"] == STATS

    def test_memory_hit(self, cache, clock):
        fetcher = FakeFetcher()
        client = StravaClient(fetcher, cache, clock=clock, memory_ttl=60)
        client.get_data()
        clock.advance(30)
        client.get_data()
        assert fetcher.calls == 1

    def test_throttled_serves_cache_without_calling(self, cache, clock):
        cache.set({"old": True}, [])
        fetcher = FakeFetcher()
        client = StravaClient(fetcher, cache, clock=clock)
        clock.advance(120)
        assert client.get_data()["stats"] == {"old": True}
        assert fetcher.calls == 0

    def test_refreshes_after_interval(self, cache, clock):
        cache.set({"old": True}, [])
        fetcher = FakeFetcher()
        client = StravaClient(fetcher, cache, clock=clock)
        clock.advance(901)
        assert client.get_data()["stats"] == STATS
        assert fetcher.calls == 1
        assert cache.get()["cachedAt"] == clock.now

    def test_rate_limit_serves_cache_and_bumps_last_call(self, cache, clock):
        cache.set({"old": True}, [])
        clock.advance(1000)
        client = StravaClient(FakeFetcher(error=StravaRateLimitError("429")), cache, clock=clock)
        assert client.get_data()["stats"] == {"old": True}
        assert cache.get()["lastApiCallAt"] == clock.now
        assert not cache.can_make_api_call()

    def test_rate_limit_cold_cache_raises(self, cache, clock):
        client = StravaClient(FakeFetcher(error=StravaRateLimitError("429")), cache, clock=clock)
        with pytest.raises(StravaRateLimitError):
            client.get_data()

    def test_auth_error_serves_cache(self, cache, clock):
        cache.set({"old": True}, [])
        clock.advance(1000)
        client = StravaClient(FakeFetcher(error=StravaAuthError("401")), cache, clock=clock)
        assert client.get_data()["stats"] == {"old": True}

    def test_auth_error_cold_cache_raises(self, cache, clock):
        client = StravaClient(FakeFetcher(error=StravaAuthError("401")), cache, clock=clock)
        with pytest.raises(StravaAuthError):
            client.get_data()

    def test_other_error_serves_cache(self, cache, clock):
        cache.set({"old": True}, [])
        clock.advance(1000)
        client = StravaClient(FakeFetcher(error=StravaError("boom")), cache, clock=clock)
        assert client.get_athlete_stats() == {"old": True}
        assert client.get_recent_activities() == []

    def test_other_error_cold_cache_raises(self, cache, clock):
        client = StravaClient(FakeFetcher(error=StravaError("boom")), cache, clock=clock)
        with pytest.raises(StravaError):
            client.get_data()

    def test_concurrent_cold_requests_fetch_once(self, cache, clock):
        calls = []

        def slow_fetch():
            calls.append(1)
            time.sleep(0.2)
            return {"stats": STATS, "activities": ACTIVITIES}

        client = StravaClient(slow_fetch, cache, clock=clock)
        with ThreadPoolExecutor(max_workers=5) as pool:
            results = list(pool.map(lambda _: client.get_data(), range(5)))

        assert len(calls) == 1
        assert all(r["stats"] == STATS for r in results)


class TestStravaRoutes:
    def test_running(self, client, cache, clock):
        from imadlab_ops.routers import strava

        fake = StravaClient(FakeFetcher(), cache, clock=clock)
        with patch.object(strava, "strava_client", fake):
            resp = client.get("/running")
        assert resp.status_code == 200
        assert resp.json() == {"stats": STATS, "activities": ACTIVITIES, "cacheAgeMinutes": 0}

    def test_running_unavailable(self, client, cache, clock):
        from imadlab_ops.routers import strava

        fake = StravaClient(FakeFetcher(error=StravaError("boom")), cache, clock=clock)
        with patch.object(strava, "strava_client", fake):
            resp = client.get("/running")
        assert resp.status_code == 503

    @pytest.mark.parametrize("error,status", [
        (StravaRateLimitError("slow down"), 429),
        (StravaAuthError("bad token"), 401),
        (StravaError("boom"), 500),
    ])
    def test_proxy_errors(self, client, error, status):
        with patch("imadlab_ops.routers.strava.fetch_strava_data", side_effect=error):
            resp = client.get("/strava")
        assert resp.status_code == status
        assert resp.json()["error"] == str(error)

    def test_proxy_ok(self, client):
        with patch("imadlab_ops.routers.strava.fetch_strava_data",
                   return_value={"stats": STATS, "activities": ACTIVITIES}):
            resp = client.get("/strava")
        assert resp.status_code == 200
        assert resp.json()["activities"] == ACTIVITIES
