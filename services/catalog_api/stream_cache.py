"""
Cache of presigned stream URLs.

Playlist responses sign one URL per track; caching the signatures keeps
repeated playlist loads from re-signing every object. Entries are keyed by
``(provider, object key)`` and dropped ``EXPIRY_MARGIN`` seconds before the
signature itself expires. Redis is used when ``REDIS_URL`` is set so the
cache is shared between workers; otherwise a per-process dict is used.
"""

import logging
import threading
import time
from typing import Callable, Optional

import redis

from services.catalog_api import config

logger = logging.getLogger("catalog-api.stream-cache")

EXPIRY_MARGIN = 60
REDIS_PREFIX = "catalog:signed-url"

_memory_cache: dict[tuple[str, str], dict] = {}
_memory_lock = threading.Lock()
_redis_client: Optional["redis.Redis"] = None


def _cache_ttl(ttl: int) -> int:
    return max(ttl - EXPIRY_MARGIN, 0)


def _get_redis() -> Optional["redis.Redis"]:
    global _redis_client
    if not config.REDIS_URL:
        return None
    if _redis_client is None:
        _redis_client = redis.from_url(config.REDIS_URL, decode_responses=True)
    return _redis_client


def _redis_key(provider: str, key: str) -> str:
    return f"{REDIS_PREFIX}:{provider}:{key}"


def get_cached(provider: str, key: str) -> Optional[str]:
    client = _get_redis()
    if client is not None:
        try:
            return client.get(_redis_key(provider, key))
        except redis.RedisError as e:
            logger.warning(f"Redis lookup failed, signing directly: {e}")
            return None

    with _memory_lock:
        cached = _memory_cache.get((provider, key))
    if cached and time.time() < cached["expires_at"]:
        return cached["url"]
    return None


def set_cached(provider: str, key: str, url: str, ttl: int) -> None:
    cache_ttl = _cache_ttl(ttl)
    if cache_ttl <= 0:
        return
    client = _get_redis()
    if client is not None:
        try:
            client.setex(_redis_key(provider, key), cache_ttl, url)
        except redis.RedisError as e:
            logger.warning(f"Redis store failed: {e}")
        return
    with _memory_lock:
        _memory_cache[(provider, key)] = {"url": url, "expires_at": time.time() + cache_ttl}


def signed_url(provider: str, key: str, sign: Callable[[str, int], str], ttl: Optional[int] = None) -> str:
    """Return a cached signature for ``key`` or produce one with ``sign(key, ttl)``."""
    ttl = ttl or config.SIGNED_URL_TTL
    cached = get_cached(provider, key)
    if cached:
        return cached
    url = sign(key, ttl)
    set_cached(provider, key, url, ttl)
    return url


def invalidate(provider: str, key: str) -> None:
    with _memory_lock:
        _memory_cache.pop((provider, key), None)
    client = _get_redis()
    if client is not None:
        try:
            client.delete(_redis_key(provider, key))
        except redis.RedisError as e:
            logger.warning(f"Redis delete failed: {e}")


def clean_expired() -> int:
    """Remove expired entries from the in-process cache."""
    now = time.time()
    with _memory_lock:
        expired = [k for k, v in _memory_cache.items() if now >= v["expires_at"]]
        for k in expired:
            del _memory_cache[k]
    if expired:
        logger.debug(f"Cleaned {len(expired)} expired signed URL entries")
    return len(expired)


def clear() -> None:
    global _redis_client
    with _memory_lock:
        _memory_cache.clear()
    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None
