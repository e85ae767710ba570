"""
Redis caching service for analytics responses.

Funnel and summary reads are cached per filter combination and dropped
whenever a lead changes, either through the API or because a maintenance
pass rewrote rows. Every operation degrades to a cache miss when Redis is
disabled or unreachable.
"""

import json
import logging
import time
from typing import Any, Optional

import redis
from redis.exceptions import RedisError

from ..core.config import settings


logger = logging.getLogger(__name__)


class CacheService:
    """
    Redis-based caching service with fallback to no-cache.

    Provides:
    - Analytics response caching (``cache_ttl_analytics`` TTL)
    - Invalidation on lead changes
    - Graceful fallback when Redis is unavailable
    """

    # Cache key prefixes
    PREFIX_ANALYTICS = "fitleads:analytics"

    def __init__(self):
        """Initialize Redis connection."""
        self._redis: Optional[redis.Redis] = None
        self._connected = False
        self._connect()

    def _connect(self) -> None:
        """Establish Redis connection."""
        if not settings.cache_enabled:
            logger.info("Caching disabled by configuration")
            return

        try:
            self._redis = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            # Test connection
            self._redis.ping()
            self._connected = True
            logger.info("Redis cache connected successfully")
        except RedisError as e:
            logger.warning(f"Redis connection failed: {e}. Operating without cache.")
            self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if Redis is connected."""
        return self._connected and self._redis is not None

    def _ensure_connection(self) -> bool:
        """Ensure Redis connection is active, attempt reconnect if needed."""
        if not settings.cache_enabled:
            return False

        if self.is_connected:
            try:
                self._redis.ping()
                return True
            except RedisError:
                self._connected = False

        self._connect()
        return self.is_connected

    def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns:
            Cached value or None if not found/error
        """
        if not self._ensure_connection():
            return None

        try:
            value = self._redis.get(key)
            if value:
                return json.loads(value)
            return None
        except (RedisError, json.JSONDecodeError) as e:
            logger.warning(f"Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set value in cache with optional TTL.

        Args:
            key: Cache key
            value: Value to cache (must be JSON serializable)
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        if not self._ensure_connection():
            return False

        try:
            serialized = json.dumps(value, default=str)
            if ttl:
                self._redis.setex(key, ttl, serialized)
            else:
                self._redis.set(key, serialized)
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"Cache set error for {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching pattern.

        Returns:
            Number of keys deleted
        """
        if not self._ensure_connection():
            return 0

        try:
            keys = list(self._redis.scan_iter(match=pattern))
            if keys:
                return self._redis.delete(*keys)
            return 0
        except RedisError as e:
            logger.warning(f"Cache delete pattern error for {pattern}: {e}")
            return 0

    # ==========================================================================
    # Analytics Caching
    # ==========================================================================

    def analytics_key(self, view: str, **filters: Optional[str]) -> str:
        """
        Build a cache key for an analytics view and its filters.

        Example:
            cache.analytics_key("funnel", month="June", year=None)
            # -> "fitleads:analytics:funnel:month=june"
        """
        parts = [
            f"{name}={str(value).strip().lower()}"
            for name, value in sorted(filters.items())
            if value
        ]
        return ":".join([self.PREFIX_ANALYTICS, view, *parts])

    def get_analytics(self, view: str, **filters: Optional[str]) -> Optional[dict]:
        return self.get(self.analytics_key(view, **filters))

    def set_analytics(self, view: str, data: Any, **filters: Optional[str]) -> bool:
        return self.set(
            self.analytics_key(view, **filters),
            data,
            ttl=settings.cache_ttl_analytics,
        )

    # ==========================================================================
    # Cache Invalidation
    # ==========================================================================

    def invalidate_on_lead_change(self) -> None:
        """
        Invalidate caches affected by lead changes.

        Called when a lead is created or updated, and after a maintenance
        run that changed rows.
        """
        deleted = self.delete_pattern(f"{self.PREFIX_ANALYTICS}:*")
        logger.debug(f"Lead change cache invalidation removed {deleted} keys")

    # ==========================================================================
    # Health & Monitoring
    # ==========================================================================

    def health_check(self) -> dict:
        """
        Check Redis health and return status.

        Returns:
            Dict with health status and latency
        """
        if not settings.cache_enabled:
            return {"status": "disabled", "connected": False}

        if not self._ensure_connection():
            return {
                "status": "unhealthy",
                "connected": False,
                "error": "Not connected to Redis"
            }

        try:
            latency_start = time.time()
            self._redis.ping()
            latency_ms = (time.time() - latency_start) * 1000

            return {
                "status": "healthy",
                "connected": True,
                "latency_ms": round(latency_ms, 2),
            }
        except RedisError as e:
            return {
                "status": "unhealthy",
                "connected": False,
                "error": str(e)
            }


# Global cache service instance
_cache_service: Optional[CacheService] = None


def get_cache() -> CacheService:
    """
    Get global cache service instance.

    Creates instance on first call (lazy initialization).
    """
    global _cache_service
    if _cache_service is None:
        _cache_service = CacheService()
    return _cache_service
