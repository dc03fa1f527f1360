"""
Redis cache for the product listing and statistics endpoints.

Entries live under {prefix}:{module}:{key} and hold the JSON payload the
endpoint returns. Every stock or catalog write drops both modules. When
Redis is down reads simply go to the database.
"""

import json
import logging
from typing import Any, Callable, Optional

import redis
from redis.exceptions import RedisError
from flask import Flask, current_app

logger = logging.getLogger(__name__)

PRODUCTS_MODULE = 'products'
REPORTS_MODULE = 'reports'
STOCK_MODULES = (PRODUCTS_MODULE, REPORTS_MODULE)


class StockCache:
    """Cache-aside store for read endpoints; a None client means disabled."""

    def __init__(self, client: Optional[redis.Redis] = None, prefix: str = 'almacen'):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_app(cls, app: Flask) -> 'StockCache':
        prefix = app.config.get('CACHE_KEY_PREFIX', 'almacen')

        if not app.config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] Cache is DISABLED via config")
            return cls(prefix=prefix)

        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        try:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
            )
            client.ping()
        except RedisError as e:
            logger.warning(f"[CACHE] Redis connection failed: {e}. Cache DISABLED.")
            return cls(prefix=prefix)

        logger.info(f"[CACHE] Redis connected: {redis_url}")
        return cls(client, prefix)

    def is_available(self) -> bool:
        if self.client is None:
            return False
        try:
            self.client.ping()
            return True
        except RedisError:
            return False

    def _key(self, module: str, key: str) -> str:
        return f"{self.prefix}:{module}:{key}"

    def cached(self, module: str, key: str, loader: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """
        Return the cached payload for (module, key), or call loader and store its result.

        Redis errors are logged and treated as a miss.
        """
        full_key = self._key(module, key)

        if self.client is not None:
            try:
                hit = self.client.get(full_key)
                if hit is not None:
                    return json.loads(hit)
            except (RedisError, ValueError) as e:
                logger.warning(f"[CACHE] Read error on {full_key}: {e}")

        value = loader()

        if self.client is not None:
            if ttl is None:
                ttl = current_app.config.get('CACHE_DEFAULT_TTL', 60)
            try:
                self.client.setex(full_key, ttl, json.dumps(value))
            except (RedisError, TypeError) as e:
                logger.warning(f"[CACHE] Write error on {full_key}: {e}")

        return value

    def invalidate(self, *modules: str) -> int:
        """Delete every entry of the given modules. Returns the number of keys removed."""
        if self.client is None:
            return 0

        deleted = 0
        for module in modules:
            pattern = self._key(module, '*')
            try:
                keys = list(self.client.scan_iter(match=pattern, count=100))
                if keys:
                    self.client.delete(*keys)
                    deleted += len(keys)
            except RedisError as e:
                logger.warning(f"[CACHE] Invalidate error on {pattern}: {e}")

        if deleted:
            logger.info(f"[CACHE] INVALIDATE {', '.join(modules)} ({deleted} keys)")
        return deleted


_cache: Optional[StockCache] = None


def init_cache(app: Flask) -> None:
    global _cache
    _cache = StockCache.from_app(app)
    app.extensions['cache'] = _cache


def get_cache() -> StockCache:
    if _cache is None:
        raise RuntimeError("Cache not initialized.")
    return _cache


def invalidate_stock_caches() -> None:
    """Drop cached product listings and statistics after any stock or catalog write."""
    if _cache is None:
        return
    _cache.invalidate(*STOCK_MODULES)
