"""
Tests for caching utilities.
"""
from unittest.mock import patch

from apps.core.cache import CacheKeys, CacheService


class TestCacheService:
    """Test CacheService basic operations."""

    def test_get_set(self):
        assert CacheService.set("test:key", {"data": "test"}, ttl=60) is True
        assert CacheService.get("test:key") == {"data": "test"}

    def test_get_default(self):
        assert CacheService.get("nonexistent:key", default="default_value") == "default_value"

    def test_add_only_when_absent(self):
        assert CacheService.add("test:key", "first") is True
        assert CacheService.add("test:key", "second") is False
        assert CacheService.get("test:key") == "first"

    def test_delete(self):
        CacheService.set("test:key", "test_value")

        assert CacheService.delete("test:key") is True
        assert CacheService.get("test:key") is None

    def test_incr_creates_counter(self):
        assert CacheService.incr("test:counter") == 1
        assert CacheService.incr("test:counter", 4) == 5


class TestCacheFailures:
    """Backend errors degrade instead of propagating."""

    def test_get_returns_default(self):
        with patch('apps.core.cache.cache.get', side_effect=ConnectionError('redis down')):
            assert CacheService.get("test:key", default="fallback") == "fallback"

    def test_set_returns_false(self):
        with patch('apps.core.cache.cache.set', side_effect=ConnectionError('redis down')):
            assert CacheService.set("test:key", "value") is False

    def test_incr_returns_zero(self):
        with patch('apps.core.cache.cache.add', side_effect=ConnectionError('redis down')):
            assert CacheService.incr("test:counter") == 0


class TestCacheKeys:
    """Test cache key formatting."""

    def test_user_permissions_key(self):
        key = CacheKeys.format(CacheKeys.USER_PERMISSIONS, generation='g1', user_id='u1', version='v2')
        assert key == "rbac:permissions:g1:u1:v2"
