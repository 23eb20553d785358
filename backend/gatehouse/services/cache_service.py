"""
Redis cache for the public event catalog.

Only paginated listings are cached. Single-event reads and everything on the
reserve / checkout path read the live tier counters from the database.

Invalidation is generation based: every listing key embeds the current value
of ``catalog:generation``. Creating an event or moving inventory bumps the
generation with one INCR, which orphans all older pages at once; orphaned
pages age out through their TTL.

Redis is optional. When it is disabled or unreachable every function here
degrades to a no-op and callers read straight from the database.
"""

import json
import time
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from gatehouse.core.config import get_settings
from gatehouse.core.logging import get_logger
from gatehouse.core.metrics import record_cache_operation

logger = get_logger(__name__)
settings = get_settings()

GENERATION_KEY = "catalog:generation"

_client: Optional[redis.Redis] = None
# Monotonic deadline before which no reconnect is attempted
_retry_after = 0.0


async def get_redis() -> Optional[redis.Redis]:
    """Lazily connect. None means "run uncached".

    A failed connect is remembered for REDIS_RETRY_BACKOFF_SECONDS so an
    outage costs one timeout per window, not one per request.
    """
    global _client, _retry_after
    if not settings.REDIS_ENABLED:
        return None
    if _client is not None:
        return _client
    if time.monotonic() < _retry_after:
        return None

    candidate = redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )
    try:
        await candidate.ping()
    except (RedisError, OSError) as e:
        _retry_after = time.monotonic() + settings.REDIS_RETRY_BACKOFF_SECONDS
        logger.warning(
            "catalog_cache_unreachable",
            url=settings.REDIS_URL,
            error=str(e),
            retry_in=settings.REDIS_RETRY_BACKOFF_SECONDS,
        )
        await candidate.aclose()
        return None

    _client = candidate
    logger.info("catalog_cache_connected", url=settings.REDIS_URL)
    return _client


async def close_redis() -> None:
    global _client, _retry_after
    _retry_after = 0.0
    if _client is not None:
        await _client.aclose()
        _client = None


async def _listing_key(client: redis.Redis, page: int, page_size: int, upcoming_only: bool) -> str:
    generation = await client.get(GENERATION_KEY) or "0"
    scope = "upcoming" if upcoming_only else "all"
    return f"catalog:g{generation}:events:{scope}:{page}:{page_size}"


async def get_cached_events(page: int, page_size: int, upcoming_only: bool) -> Optional[dict]:
    client = await get_redis()
    if client is None:
        return None
    try:
        raw = await client.get(await _listing_key(client, page, page_size, upcoming_only))
    except RedisError as e:
        logger.warning("catalog_cache_read_failed", error=str(e))
        return None
    record_cache_operation("get", hit=raw is not None)
    return json.loads(raw) if raw is not None else None


async def set_cached_events(page: int, page_size: int, upcoming_only: bool, data: dict) -> None:
    client = await get_redis()
    if client is None:
        return
    try:
        key = await _listing_key(client, page, page_size, upcoming_only)
        await client.set(key, json.dumps(data, default=str), ex=settings.REDIS_CACHE_TTL)
    except RedisError as e:
        logger.warning("catalog_cache_write_failed", error=str(e))
        return
    record_cache_operation("set", hit=False)


async def invalidate_event_cache() -> None:
    """Orphan every cached listing page."""
    client = await get_redis()
    if client is None:
        return
    try:
        generation = await client.incr(GENERATION_KEY)
    except RedisError as e:
        # Stale pages still expire through their TTL
        logger.warning("catalog_cache_invalidation_failed", error=str(e))
        return
    logger.debug("catalog_cache_invalidated", generation=generation)


async def get_cache_stats() -> dict:
    client = await get_redis()
    if client is None:
        return {"status": "disabled"}
    try:
        info = await client.info("stats")
        generation = await client.get(GENERATION_KEY) or "0"
    except RedisError as e:
        return {"status": "error", "error": str(e)}
    hits, misses = info.get("keyspace_hits", 0), info.get("keyspace_misses", 0)
    return {
        "status": "connected",
        "generation": int(generation),
        "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
    }
