"""
Schedule cache: Redis copies of the read-mostly schedule views.

Two views are cached, both free of seat data:

  listing     shows:listing:g{generation}:p{page}:s{size}:u{0|1}
              Paginated schedule. Keys embed a generation number kept in
              `shows:listing:generation`; scheduling a show bumps it, so
              every older page becomes unreachable at once and ages out by
              TTL. No key scans on the write path.

  movie       shows:movie:{movie_id}
              One movie's upcoming shows grouped by date. Dropped when that
              movie gets new shows. The payload records the UTC day it was
              built for and is ignored on any other day, since the view
              starts at midnight.

Occupancy is never cached: the reservation path reads the seat map inside
its compare-and-swap, and a stale copy would only mislead clients.

Redis is optional. Every Redis error is logged and treated as a miss; after
a failed connect the cache stays off for REDIS_RECONNECT_SECONDS instead of
paying a connect timeout on each request.
"""

import json
import time
from datetime import date
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from showbook.core.config import get_settings
from showbook.core.logging import get_logger

logger = get_logger(__name__)

LISTING_GENERATION_KEY = "shows:listing:generation"

REDIS_RECONNECT_SECONDS = 30.0


def listing_key(generation: int, page: int, page_size: int, upcoming_only: bool) -> str:
    return f"shows:listing:g{generation}:p{page}:s{page_size}:u{int(upcoming_only)}"


def movie_key(movie_id: str) -> str:
    return f"shows:movie:{movie_id}"


class ScheduleCache:

    def __init__(self, url: str, ttl: int, enabled: bool = True):
        self.url = url
        self.ttl = ttl
        self.enabled = enabled
        self._client: Optional[redis.Redis] = None
        self._down_until = 0.0

    async def connect(self) -> Optional[redis.Redis]:
        if not self.enabled:
            return None
        if self._client is not None:
            return self._client
        if time.monotonic() < self._down_until:
            return None

        client = redis.from_url(self.url, decode_responses=True, socket_connect_timeout=2, socket_timeout=2)
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            self._down_until = time.monotonic() + REDIS_RECONNECT_SECONDS
            logger.warning("schedule_cache_unavailable", error=str(e), retry_in=REDIS_RECONNECT_SECONDS)
            await client.aclose()
            return None

        logger.info("schedule_cache_connected", url=self.url)
        self._client = client
        return client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _read(self, key: str) -> Optional[Any]:
        client = await self.connect()
        if client is None:
            return None
        try:
            raw = await client.get(key)
        except RedisError as e:
            logger.error("schedule_cache_read_failed", key=key, error=str(e))
            return None
        return json.loads(raw) if raw else None

    async def _write(self, key: str, value: Any) -> None:
        client = await self.connect()
        if client is None:
            return
        try:
            await client.set(key, json.dumps(value, default=str), ex=self.ttl)
        except RedisError as e:
            logger.error("schedule_cache_write_failed", key=key, error=str(e))

    async def _generation(self) -> Optional[int]:
        client = await self.connect()
        if client is None:
            return None
        try:
            return int(await client.get(LISTING_GENERATION_KEY) or 0)
        except RedisError as e:
            logger.error("schedule_cache_read_failed", key=LISTING_GENERATION_KEY, error=str(e))
            return None

    async def get_listing(self, page: int, page_size: int, upcoming_only: bool) -> Optional[dict]:
        generation = await self._generation()
        if generation is None:
            return None
        return await self._read(listing_key(generation, page, page_size, upcoming_only))

    async def put_listing(self, page: int, page_size: int, upcoming_only: bool, data: dict) -> None:
        generation = await self._generation()
        if generation is not None:
            await self._write(listing_key(generation, page, page_size, upcoming_only), data)

    async def get_movie_schedule(self, movie_id: str, today: date) -> Optional[dict]:
        cached = await self._read(movie_key(movie_id))
        if not cached or cached.get("day") != today.isoformat():
            return None
        return cached["schedule"]

    async def put_movie_schedule(self, movie_id: str, today: date, schedule: dict) -> None:
        await self._write(movie_key(movie_id), {"day": today.isoformat(), "schedule": schedule})

    async def shows_scheduled(self, movie_id: str) -> None:
        """New shows for `movie_id`: every listing page and that movie's view are stale."""
        client = await self.connect()
        if client is None:
            return
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.incr(LISTING_GENERATION_KEY)
                pipe.delete(movie_key(movie_id))
                generation, _ = await pipe.execute()
            logger.info("schedule_cache_invalidated", movie_id=movie_id, generation=generation)
        except RedisError as e:
            logger.error("schedule_cache_invalidation_failed", movie_id=movie_id, error=str(e))

    async def stats(self) -> dict:
        client = await self.connect()
        if client is None:
            return {"status": "disabled" if not self.enabled else "unavailable"}
        try:
            info = await client.info("stats")
        except RedisError as e:
            return {"status": "error", "error": str(e)}
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {"status": "connected", "hits": hits, "misses": misses}


_schedule_cache: Optional[ScheduleCache] = None


def get_schedule_cache() -> ScheduleCache:
    """Process-wide cache. Also the FastAPI dependency."""
    global _schedule_cache
    if _schedule_cache is None:
        settings = get_settings()
        _schedule_cache = ScheduleCache(settings.REDIS_URL, settings.REDIS_CACHE_TTL, enabled=settings.REDIS_ENABLED)
    return _schedule_cache
