"""
Caching utilities for the authorization engine.

Provides centralized cache key definitions and a CacheService wrapper whose
backend errors degrade to a miss instead of propagating.
"""
import logging
from typing import Any
from django.core.cache import cache

logger = logging.getLogger(__name__)


class CacheKeys:
    """Centralized cache key definitions with consistent naming."""

    # Resolved permission sets, addressed by generation and per-user version
    USER_PERMISSIONS = "rbac:permissions:{generation}:{user_id}:{version}"
    USER_PERMISSIONS_VERSION = "rbac:permissions:version:{user_id}"
    PERMISSIONS_GENERATION = "rbac:permissions:generation"

    # Hit/miss counters for the permission cache
    PERMISSION_CACHE_HITS = "rbac:permissions:stats:hits"
    PERMISSION_CACHE_MISSES = "rbac:permissions:stats:misses"

    # Health probe
    HEALTH_CHECK = "monitoring:health:{token}"

    @classmethod
    def format(cls, key_template: str, **kwargs) -> str:
        """Format a cache key with provided parameters."""
        return key_template.format(**kwargs)


class CacheService:
    """Service for managing cached data with consistent patterns."""

    @staticmethod
    def get(key: str, default: Any = None) -> Any:
        """
        Get value from cache.

        Args:
            key: Cache key
            default: Default value if key not found or the backend fails

        Returns:
            Cached value or default
        """
        try:
            value = cache.get(key, default)
            if value is not None:
                logger.debug(f"Cache HIT: {key}")
            else:
                logger.debug(f"Cache MISS: {key}")
            return value
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {str(e)}")
            return default

    @staticmethod
    def set(key: str, value: Any, ttl: int = None) -> bool:
        """
        Set value in cache.

        Returns:
            True if successful, False otherwise
        """
        try:
            cache.set(key, value, timeout=ttl)
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {str(e)}")
            return False

    @staticmethod
    def add(key: str, value: Any, ttl: int = None) -> bool:
        """
        Set value only if the key is absent.

        Returns:
            True if the value was stored
        """
        try:
            return bool(cache.add(key, value, timeout=ttl))
        except Exception as e:
            logger.error(f"Cache add error for key {key}: {str(e)}")
            return False

    @staticmethod
    def delete(key: str) -> bool:
        """
        Delete value from cache.

        Returns:
            True if successful, False otherwise
        """
        try:
            cache.delete(key)
            logger.debug(f"Cache DELETE: {key}")
            return True
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {str(e)}")
            return False

    @staticmethod
    def incr(key: str, delta: int = 1) -> int:
        """
        Increment a counter, creating it when missing.

        Returns:
            New counter value, or 0 when the backend fails
        """
        try:
            # add() leaves an existing counter untouched
            cache.add(key, 0, timeout=None)
            return cache.incr(key, delta)
        except ValueError:
            # Key evicted between add() and incr()
            cache.set(key, delta, timeout=None)
            return delta
        except Exception as e:
            logger.error(f"Cache incr error for key {key}: {str(e)}")
            return 0
