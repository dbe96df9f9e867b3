"""
Tests for the schedule cache: generation-based listing invalidation,
per-movie schedules and fail-open behaviour.
"""

from datetime import date, datetime, timedelta, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from showbook.main import app
from showbook.services.cache_service import (
    LISTING_GENERATION_KEY,
    ScheduleCache,
    get_schedule_cache,
    listing_key,
    movie_key,
)


class InMemoryRedis:
    """Just the commands the schedule cache issues."""

    def __init__(self):
        self.store = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value

    async def incr(self, key):
        self._check()
        self.store[key] = str(int(self.store.get(key, 0)) + 1)
        return int(self.store[key])

    async def delete(self, key):
        self._check()
        return 1 if self.store.pop(key, None) is not None else 0

    async def info(self, section):
        self._check()
        return {"keyspace_hits": 3, "keyspace_misses": 1}

    async def aclose(self):
        pass

    def pipeline(self, transaction=True):
        return _Pipeline(self)


class _Pipeline:
    def __init__(self, client):
        self.client = client
        self.calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def incr(self, key):
        self.calls.append(("incr", key))

    def delete(self, key):
        self.calls.append(("delete", key))

    async def execute(self):
        return [await getattr(self.client, name)(key) for name, key in self.calls]


@pytest.fixture
def redis_stub():
    return InMemoryRedis()


@pytest.fixture
def cache(redis_stub):
    schedule_cache = ScheduleCache("redis://cache.test:6379/0", ttl=300)
    schedule_cache._client = redis_stub
    return schedule_cache


LISTING = {"shows": [], "total": 0, "page": 1, "page_size": 20, "cached": False}


@pytest.mark.asyncio
async def test_listing_round_trip(cache, redis_stub):
    assert await cache.get_listing(1, 20, True) is None

    await cache.put_listing(1, 20, True, LISTING)

    assert listing_key(0, 1, 20, True) in redis_stub.store
    assert await cache.get_listing(1, 20, True) == LISTING
    assert await cache.get_listing(1, 20, False) is None


@pytest.mark.asyncio
async def test_scheduling_retires_every_listing_page(cache, redis_stub):
    await cache.put_listing(1, 20, True, LISTING)
    await cache.put_listing(2, 20, True, LISTING)

    await cache.shows_scheduled("603")

    assert redis_stub.store[LISTING_GENERATION_KEY] == "1"
    assert await cache.get_listing(1, 20, True) is None
    assert await cache.get_listing(2, 20, True) is None


@pytest.mark.asyncio
async def test_movie_schedule_dropped_only_for_that_movie(cache):
    today = date(2026, 10, 19)
    await cache.put_movie_schedule("603", today, {"2026-10-20": []})
    await cache.put_movie_schedule("550", today, {"2026-10-21": []})

    await cache.shows_scheduled("603")

    assert await cache.get_movie_schedule("603", today) is None
    assert await cache.get_movie_schedule("550", today) == {"2026-10-21": []}


@pytest.mark.asyncio
async def test_movie_schedule_from_another_day_is_a_miss(cache, redis_stub):
    today = date(2026, 10, 19)
    await cache.put_movie_schedule("603", today, {"2026-10-19": []})

    assert movie_key("603") in redis_stub.store
    assert await cache.get_movie_schedule("603", today + timedelta(days=1)) is None


@pytest.mark.asyncio
async def test_redis_errors_fail_open(cache, redis_stub):
    await cache.put_listing(1, 20, True, LISTING)
    redis_stub.fail = True

    assert await cache.get_listing(1, 20, True) is None
    await cache.put_listing(1, 20, True, LISTING)
    await cache.shows_scheduled("603")
    assert (await cache.stats())["status"] == "error"


@pytest.mark.asyncio
async def test_disabled_cache_never_connects():
    cache = ScheduleCache("redis://cache.test:6379/0", ttl=300, enabled=False)

    assert await cache.connect() is None
    assert await cache.get_listing(1, 20, True) is None
    assert await cache.stats() == {"status": "disabled"}


@pytest.mark.asyncio
async def test_stats_when_connected(cache):
    assert await cache.stats() == {"status": "connected", "hits": 3, "misses": 1}


@pytest.mark.asyncio
async def test_new_show_refreshes_cached_movie_schedule(client, cache, make_show, admin_headers):
    app.dependency_overrides[get_schedule_cache] = lambda: cache
    await make_show(movie_id="603")

    first = await client.get("/api/v1/shows/movie/603")
    second = await client.get("/api/v1/shows/movie/603")
    assert first.json()["cached"] is False
    assert second.json()["cached"] is True
    assert second.json()["schedule"] == first.json()["schedule"]

    starts_at = (datetime.now(timezone.utc) + timedelta(days=5)).isoformat()
    created = await client.post(
        "/api/v1/shows/",
        json={"movie_id": "603", "starts_at": starts_at, "price": 12.0},
        headers=admin_headers,
    )
    assert created.status_code == 201

    third = await client.get("/api/v1/shows/movie/603")
    assert third.json()["cached"] is False
    slots = [slot["show_id"] for day in third.json()["schedule"].values() for slot in day]
    assert created.json()["id"] in slots
