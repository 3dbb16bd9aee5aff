"""
Redis cache for per-customer read models (loyalty summaries).

Every operation degrades to a no-op when Redis is disabled or unreachable,
so callers always fall through to the database.
"""

import logging
import json
from typing import Any, Optional, Callable
from datetime import datetime, date
from decimal import Decimal

import redis
from redis.exceptions import RedisError, ConnectionError, TimeoutError
from flask import Flask, current_app

logger = logging.getLogger(__name__)

_DECIMAL_TAG = '__decimal__'


def _encode(value: Any) -> str:
    def fallback(obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return {_DECIMAL_TAG: str(obj)}
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        raise TypeError(f"Cannot cache value of type {type(obj).__name__}")
    return json.dumps(value, default=fallback)


def _decode(raw: str) -> Any:
    def revive(obj: dict) -> Any:
        if _DECIMAL_TAG in obj:
            return Decimal(obj[_DECIMAL_TAG])
        return obj
    return json.loads(raw, object_hook=revive)


class CacheService:
    """
    Customer-scoped cache.

    Keys: {prefix}:customer:{customer_id}:{module}:{key}, so one customer's
    module can be dropped with a single pattern scan.
    """

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self._enabled = False
        self._prefix = ''
        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self._prefix = app.config.get('CACHE_KEY_PREFIX', 'storefront')
        self._enabled = bool(app.config.get('CACHE_ENABLED', True))
        if not self._enabled:
            logger.info("[CACHE] Disabled by configuration")
            return

        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        try:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30
            )
            client.ping()
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"[CACHE] Redis unreachable at {redis_url} ({e}); running without cache")
            self._enabled = False
            return

        self.client = client
        logger.info(f"[CACHE] Connected to {redis_url}")

    def is_available(self) -> bool:
        if not (self._enabled and self.client):
            return False
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def _build_key(self, customer_id: int, module: str, key: str) -> str:
        return f"{self._prefix}:customer:{customer_id}:{module}:{key}"

    def get(self, customer_id: int, module: str, key: str) -> Optional[Any]:
        if not self.is_available():
            return None
        try:
            raw = self.client.get(self._build_key(customer_id, module, key))
            return _decode(raw) if raw is not None else None
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] Read failed for customer {customer_id} {module}/{key}: {e}")
            return None

    def set(self, customer_id: int, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.is_available():
            return False
        if ttl is None:
            ttl = current_app.config.get('CACHE_DEFAULT_TTL', 60)
        try:
            self.client.setex(self._build_key(customer_id, module, key), ttl, _encode(value))
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Write failed for customer {customer_id} {module}/{key}: {e}")
            return False

    def memoize(self, customer_id: int, module: str, key: str, loader_fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value, or call loader_fn and cache its result."""
        cached = self.get(customer_id, module, key)
        if cached is not None:
            return cached
        value = loader_fn()
        self.set(customer_id, module, key, value, ttl)
        return value

    def invalidate_module(self, customer_id: int, module: str) -> int:
        """Drop every key of a customer's module. Returns the number removed."""
        if not self.is_available():
            return 0
        pattern = self._build_key(customer_id, module, '*')
        try:
            keys = list(self.client.scan_iter(match=pattern, count=100))
            if keys:
                self.client.delete(*keys)
                logger.info(f"[CACHE] Invalidated {len(keys)} keys for {pattern}")
            return len(keys)
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidation failed for {pattern}: {e}")
            return 0


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask) -> CacheService:
    global _cache_service
    _cache_service = CacheService(app)
    app.extensions['cache'] = _cache_service
    return _cache_service


def get_cache() -> CacheService:
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service
