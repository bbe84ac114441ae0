"""Redis caching for dashboard reports.

Report endpoints are wrapped with ``@cached``; every committed write calls
``invalidate_cache("reports:*")``.  Redis being down never fails a request:
reads fall back to the database and invalidation is skipped with a warning.
Reports lag writes by at most ``report_cache_ttl`` seconds if invalidation
is missed.
"""

import functools
import hashlib
import json
import logging
from datetime import date, datetime
from typing import Callable, Optional

import redis.asyncio as redis

from abacatrack.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def cache_key(**kwargs) -> str:
    """Deterministic hash of the simple-typed keyword arguments."""
    if not kwargs:
        return "default"

    key_data = json.dumps(kwargs, sort_keys=True)
    return hashlib.md5(key_data.encode()).hexdigest()


def _serialize(result):
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json")
    if isinstance(result, list) and result and hasattr(result[0], "model_dump"):
        return [item.model_dump(mode="json") for item in result]
    return result


def cached(ttl: int | None = None, prefix: str = "reports"):
    """Decorator to cache an endpoint's result in Redis.

    Cache keys: {prefix}:{function_name}:{kwargs_hash}.  Only int / str /
    bool / float / None / date keyword arguments enter the key, so injected
    dependencies (sessions, actors) are ignored.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if not settings.report_cache_enabled:
                return await func(*args, **kwargs)

            cache_kwargs = {}
            for k, v in kwargs.items():
                if k.startswith("_"):
                    continue
                if isinstance(v, (int, str, bool, float, type(None))):
                    cache_kwargs[k] = v
                elif isinstance(v, (date, datetime)):
                    cache_kwargs[k] = v.isoformat()
            key = f"{prefix}:{func.__name__}:{cache_key(**cache_kwargs)}"

            try:
                redis_client = await get_redis()
                cached_value = await redis_client.get(key)
                if cached_value:
                    logger.debug(f"Cache HIT: {key}")
                    return json.loads(cached_value)

                logger.debug(f"Cache MISS: {key}")
                result = await func(*args, **kwargs)
                await redis_client.setex(
                    key,
                    ttl or settings.report_cache_ttl,
                    json.dumps(_serialize(result)),
                )
                return result

            except redis.RedisError as e:
                logger.warning(f"Redis error (falling back to uncached): {e}")
                return await func(*args, **kwargs)

        return wrapper

    return decorator


async def invalidate_cache(pattern: str):
    """Delete cache keys matching a pattern (e.g. "reports:*")."""
    if not settings.report_cache_enabled:
        return
    try:
        redis_client = await get_redis()
        keys = []
        async for key in redis_client.scan_iter(match=pattern):
            keys.append(key)

        if keys:
            await redis_client.delete(*keys)
            logger.info(f"Invalidated {len(keys)} cache keys matching {pattern}")
    except redis.RedisError as e:
        logger.warning(f"Failed to invalidate cache: {e}")
