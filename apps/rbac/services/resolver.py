"""
Permission resolution.

Merges role-derived sources, temporary grants and per-user overrides into
one effective permission set.
"""
import logging
import time
from typing import Dict, Any
from django.db import DatabaseError, transaction
from django.db.models import Min
from django.utils import timezone

from apps.core.exceptions import NotFound, StorageUnavailable
from apps.core.logging import SecurityLogger
from apps.core.platform_settings import PlatformSettings
from apps.rbac.models import User, Permission, TemporaryPermission, UserPermissionOverride
from apps.rbac.services.cache import PermissionCache
from apps.rbac.services.sources import get_permission_sources

logger = logging.getLogger(__name__)


class PermissionResolver:
    """
    Service for permission resolution and checks.

    Precedence:
    1. Super Admin resolves to the whole catalog
    2. Union of every configured role source
    3. Permissions of effective temporary grants
    4. Overrides: allows are added, then denies removed (deny wins)
    """

    @classmethod
    def _load_user(cls, user) -> User:
        user_id = getattr(user, 'pk', user)
        loaded = User.objects.select_related('role_model').filter(pk=user_id).first()
        if loaded is None:
            raise NotFound(f"User '{user_id}' does not exist", details={'user_id': str(user_id)})
        return loaded

    @classmethod
    def resolve(cls, user, now=None) -> frozenset:
        """
        Resolve the effective permission set for a user. Read-only.

        Args:
            user: User instance or primary key
            now: Evaluation instant for temporary grants (defaults to now)

        Returns:
            frozenset of permission names

        Raises:
            NotFound: If the user does not exist
        """
        now = now or timezone.now()
        user = cls._load_user(user)

        with transaction.atomic():
            if user.is_super_admin:
                return frozenset(Permission.objects.all_names())

            permissions = set()
            for source in get_permission_sources():
                permissions |= source.permissions_for(user)

            permissions |= cls._temporary_names(user, now)

            allowed, denied = cls._override_names(user)
            permissions |= allowed
            permissions -= denied

        return frozenset(permissions)

    @classmethod
    def _temporary_names(cls, user, now):
        return set(
            TemporaryPermission.objects.for_user(user)
            .effective(now)
            .with_live_permission()
            .values_list('permission__name', flat=True)
        )

    @classmethod
    def next_expiry(cls, user, now=None):
        """Earliest expires_at among the user's effective grants, or None."""
        now = now or timezone.now()
        return (
            TemporaryPermission.objects.for_user(user)
            .effective(now)
            .with_live_permission()
            .aggregate(earliest=Min('expires_at'))['earliest']
        )

    @classmethod
    def _override_names(cls, user):
        allowed, denied = set(), set()
        rows = UserPermissionOverride.objects.filter(
            user=user,
            permission__deleted_at__isnull=True,
        ).values_list('permission__name', 'allowed')
        for name, is_allowed in rows:
            (allowed if is_allowed else denied).add(name)
        return allowed, denied

    @classmethod
    def effective_permissions(cls, user) -> frozenset:
        """
        Effective set for a user, served from the permission cache when possible.

        Raises:
            NotFound: If the user does not exist
            StorageUnavailable: If the database cannot be read
        """
        user_id = getattr(user, 'pk', user)
        cached = PermissionCache.get(user_id)
        if cached is not None:
            return cached.permissions

        token = PermissionCache.version_token(user_id)
        now = timezone.now()
        try:
            permissions = cls.resolve(user_id, now=now)
            valid_until = cls.next_expiry(user_id, now=now)
        except DatabaseError as e:
            raise StorageUnavailable("Permission storage unavailable", details={'error': str(e)}) from e
        # Entry must not outlive the first grant that expires
        PermissionCache.set(user_id, permissions, token=token, valid_until=valid_until)
        return permissions

    @classmethod
    def has_permission(cls, user, permission_name: str) -> bool:
        """
        Check whether a user holds a permission.

        Fails closed: storage errors deny and log a security event.
        Denials and slow checks are reported to the monitoring service;
        monitoring failures never change the answer.
        """
        started = time.monotonic()
        allowed = False
        try:
            if not isinstance(user, User):
                user = cls._load_user(user)
            if not user.is_active:
                allowed = False
            elif user.is_super_admin:
                allowed = True
            else:
                allowed = permission_name in cls.effective_permissions(user)
        except (StorageUnavailable, DatabaseError) as e:
            SecurityLogger.log_fail_closed(
                user_id=str(getattr(user, 'pk', user)),
                permission=permission_name,
                error=str(e),
            )
            allowed = False

        elapsed_ms = (time.monotonic() - started) * 1000
        cls._report(user, permission_name, allowed, elapsed_ms)
        return allowed

    @classmethod
    def _report(cls, user, permission_name, allowed, elapsed_ms):
        if not PlatformSettings.is_monitoring_enabled():
            return

        from apps.monitoring.services.monitoring_service import MonitoringService

        context = {
            'user_id': str(getattr(user, 'pk', user)),
            'permission': permission_name,
        }
        try:
            if not allowed:
                MonitoringService.log_failed_attempt(context)
            if elapsed_ms > PlatformSettings.get_threshold('RESPONSE_TIME_MS'):
                MonitoringService.log_permission_check_time(elapsed_ms, context)
        except Exception:
            logger.exception("Failed to report permission check metrics")

    @classmethod
    def explain(cls, user, permission_name: str, now=None) -> Dict[str, Any]:
        """
        Per-source breakdown for one permission, used to diagnose denials.

        Returns:
            Dict with one entry per role source plus 'temporary' and
            'override' ('allow', 'deny' or None), and the final 'granted'
        """
        now = now or timezone.now()
        user = cls._load_user(user)

        if user.is_super_admin:
            return {'permission': permission_name, 'super_admin': True, 'granted': True}

        breakdown = {'permission': permission_name, 'super_admin': False}
        for source in get_permission_sources():
            breakdown[source.name] = permission_name in source.permissions_for(user)
        breakdown['temporary'] = permission_name in cls._temporary_names(user, now)

        allowed, denied = cls._override_names(user)
        if permission_name in denied:
            breakdown['override'] = 'deny'
        elif permission_name in allowed:
            breakdown['override'] = 'allow'
        else:
            breakdown['override'] = None

        breakdown['granted'] = permission_name in cls.resolve(user, now=now)
        return breakdown
