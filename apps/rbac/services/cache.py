"""
Permission cache.

Resolved permission sets are cached per user under versioned keys:

    rbac:permissions:{generation}:{user_id}:{version}

invalidate() swaps the user's version token and invalidate_all() swaps the
global generation. A resolution that read its version before an
invalidation writes to a key no later read consults, so readers never see
a set mixing pre- and post-mutation state. Mutators invalidate immediately
and again when the surrounding transaction commits.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Tuple
from django.db import transaction
from django.utils import timezone

from apps.core.cache import CacheKeys, CacheService
from apps.core.platform_settings import PlatformSettings

logger = logging.getLogger(__name__)

# (generation, version) read before resolving; pass back to set()
VersionToken = Tuple[str, str]


@dataclass(frozen=True)
class CachedPermissions:
    permissions: frozenset
    resolved_at: datetime
    # Earliest expiry among the temporary grants folded into the set
    valid_until: Optional[datetime] = None


class PermissionCache:
    """
    Cache of resolved permission sets with a narrow invalidation contract.

    Backend errors degrade to a miss.
    """

    @staticmethod
    def _new_token() -> str:
        return uuid.uuid4().hex

    @classmethod
    def _current(cls, key: str) -> str:
        value = CacheService.get(key)
        if value is None:
            CacheService.add(key, cls._new_token(), ttl=None)
            value = CacheService.get(key)
        # Unreachable backend: fall back to a fixed token, every read misses anyway
        return value or '0'

    @classmethod
    def version_token(cls, user_id) -> VersionToken:
        """Snapshot the key coordinates for a user before resolving."""
        generation = cls._current(CacheKeys.PERMISSIONS_GENERATION)
        version = cls._current(CacheKeys.format(CacheKeys.USER_PERMISSIONS_VERSION, user_id=user_id))
        return generation, version

    @classmethod
    def _key(cls, user_id, token: VersionToken) -> str:
        generation, version = token
        return CacheKeys.format(
            CacheKeys.USER_PERMISSIONS,
            generation=generation,
            user_id=user_id,
            version=version,
        )

    @classmethod
    def get(cls, user_id) -> Optional[CachedPermissions]:
        """Cached set for a user, or None on a miss."""
        value = CacheService.get(cls._key(user_id, cls.version_token(user_id)))
        valid_until = None
        if value is not None and value.get('valid_until'):
            valid_until = datetime.fromisoformat(value['valid_until'])
            if timezone.now() >= valid_until:
                value = None

        if value is None:
            CacheService.incr(CacheKeys.PERMISSION_CACHE_MISSES)
            return None

        CacheService.incr(CacheKeys.PERMISSION_CACHE_HITS)
        return CachedPermissions(
            permissions=frozenset(value['permissions']),
            resolved_at=datetime.fromisoformat(value['resolved_at']),
            valid_until=valid_until,
        )

    @classmethod
    def set(cls, user_id, permissions: Iterable[str], token: VersionToken = None,
            valid_until: Optional[datetime] = None) -> bool:
        """
        Store a resolved set.

        Args:
            user_id: User the set belongs to
            permissions: Resolved permission names
            token: Result of version_token() taken before resolution started
            valid_until: Instant the set stops being correct (first grant expiry);
                reads at or after it miss
        """
        token = token or cls.version_token(user_id)
        now = timezone.now()
        ttl = PlatformSettings.get_permission_cache_ttl()
        if valid_until is not None:
            remaining = int((valid_until - now).total_seconds())
            if remaining <= 0:
                return False
            ttl = min(ttl, remaining)

        value = {
            'permissions': sorted(permissions),
            'resolved_at': now.isoformat(),
            'valid_until': valid_until.isoformat() if valid_until else None,
        }
        return CacheService.set(cls._key(user_id, token), value, ttl=ttl)

    @classmethod
    def _swap(cls, key: str):
        CacheService.set(key, cls._new_token(), ttl=None)

    @classmethod
    def invalidate(cls, user_id):
        """Drop the cached set for one user, now and again on commit."""
        key = CacheKeys.format(CacheKeys.USER_PERMISSIONS_VERSION, user_id=user_id)
        cls._swap(key)
        transaction.on_commit(lambda: cls._swap(key))
        logger.debug(f"Permission cache invalidated for user {user_id}")

    @classmethod
    def invalidate_all(cls):
        """Drop every cached set, now and again on commit."""
        cls._swap(CacheKeys.PERMISSIONS_GENERATION)
        transaction.on_commit(lambda: cls._swap(CacheKeys.PERMISSIONS_GENERATION))
        logger.info("Permission cache invalidated for all users")

    @classmethod
    def stats(cls) -> dict:
        hits = int(CacheService.get(CacheKeys.PERMISSION_CACHE_HITS, 0) or 0)
        misses = int(CacheService.get(CacheKeys.PERMISSION_CACHE_MISSES, 0) or 0)
        total = hits + misses
        return {
            'hits': hits,
            'misses': misses,
            'total_requests': total,
            'hit_rate': (hits / total) if total else 1.0,
        }

    @classmethod
    def reset_stats(cls):
        CacheService.delete(CacheKeys.PERMISSION_CACHE_HITS)
        CacheService.delete(CacheKeys.PERMISSION_CACHE_MISSES)
