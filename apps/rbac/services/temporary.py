"""
Temporary permission lifecycle: grant, revoke, listing and expiry sweep.
"""
import logging
from typing import List, Optional
from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import Conflict, NotFound, ValidationError
from apps.core.logging import SecurityLogger
from apps.core.platform_settings import PlatformSettings
from apps.rbac.models import (
    User, Permission, PermissionDependency, TemporaryPermission, is_effective
)
from apps.rbac.services.cache import PermissionCache
from apps.rbac.services.resolver import PermissionResolver
from apps.rbac.services.sessions import SessionAuditService

logger = logging.getLogger(__name__)


def get_permission(permission) -> Permission:
    """Accept a Permission or a permission name; raise NotFound for unknown names."""
    if isinstance(permission, Permission):
        return permission
    found = Permission.objects.by_name(permission)
    if found is None:
        raise NotFound(f"Permission '{permission}' does not exist", details={'permission': permission})
    return found


def get_user(user) -> User:
    if isinstance(user, User):
        return user
    found = User.objects.filter(pk=user).first()
    if found is None:
        raise NotFound(f"User '{user}' does not exist", details={'user_id': str(user)})
    return found


class TemporaryPermissionManager:
    """
    Service for time-bounded permission grants.
    """

    @classmethod
    def is_effective(cls, record, now=None) -> bool:
        return is_effective(record, now or timezone.now())

    @classmethod
    def _missing_dependencies(cls, permission, held) -> List[Permission]:
        """
        Transitive prerequisites of `permission` not in `held`, breadth first.
        """
        missing = []
        seen = {permission.id}
        frontier = [permission]
        while frontier:
            current = frontier.pop(0)
            prerequisites = Permission.objects.filter(
                dependents__permission=current,
                dependents__deleted_at__isnull=True,
            )
            for prerequisite in prerequisites:
                if prerequisite.id in seen:
                    continue
                seen.add(prerequisite.id)
                if prerequisite.name not in held:
                    missing.append(prerequisite)
                    frontier.append(prerequisite)
        return missing

    @classmethod
    def grant(cls, user, permission, granted_by, expires_at, reason: str = '', now=None) -> TemporaryPermission:
        """
        Grant a permission to a user until `expires_at`.

        Args:
            user: User (or id) receiving the grant
            permission: Permission (or name)
            granted_by: User making the grant, None for system grants
            expires_at: Expiry instant, strictly in the future
            reason: Justification

        Returns:
            The TemporaryPermission for the requested permission

        Raises:
            NotFound: Unknown user or permission
            ValidationError: Expiry not in the future, or unmet dependencies
                under the 'reject' dependency policy
            Conflict: The user already holds an effective grant of it
        """
        now = now or timezone.now()
        user = get_user(user)
        permission = get_permission(permission)

        if expires_at is None or expires_at <= now:
            raise ValidationError(
                "Expiry must be in the future",
                details={'expires_at': expires_at.isoformat() if expires_at else None}
            )

        with transaction.atomic():
            existing = TemporaryPermission.objects.for_user(user).effective(now).filter(permission=permission)
            if existing.exists():
                raise Conflict(
                    f"User already holds an active temporary grant of '{permission.name}'",
                    details={'temporary_permission_id': str(existing.first().id)}
                )

            held = PermissionResolver.resolve(user, now=now)
            missing = cls._missing_dependencies(permission, held)
            if missing and PlatformSettings.get_dependency_policy() == 'reject':
                raise ValidationError(
                    f"'{permission.name}' has unmet dependencies",
                    details={'unmet_dependencies': sorted(p.name for p in missing)}
                )

            grant = cls._create(user, permission, granted_by, now, expires_at, reason)
            for dependency in missing:
                cls._create(
                    user, dependency, granted_by, now, expires_at,
                    f"Dependency of {permission.name}: {reason}".strip(),
                )

            PermissionCache.invalidate(user.id)
            SessionAuditService.record_for_actor(
                granted_by,
                'grant_temporary_permission',
                {
                    'temporary_permission_id': str(grant.id),
                    'user_id': str(user.id),
                    'permission': permission.name,
                    'expires_at': expires_at.isoformat(),
                    'reason': reason,
                    'included_dependencies': [p.name for p in missing],
                }
            )

        SecurityLogger.log_grant_change(
            'grant_temporary_permission',
            user_id=str(user.id),
            permission=permission.name,
            actor_id=str(granted_by.id) if granted_by else None,
            expires_at=expires_at.isoformat(),
        )
        return grant

    @classmethod
    def _create(cls, user, permission, granted_by, now, expires_at, reason):
        return TemporaryPermission.objects.create(
            user=user,
            permission=permission,
            granted_by=granted_by,
            granted_at=now,
            expires_at=expires_at,
            reason=reason,
            is_active=True,
        )

    @classmethod
    def revoke(cls, temporary_permission_id, revoked_by) -> TemporaryPermission:
        """
        Revoke a grant. Revoking an inactive grant returns it unchanged.

        Raises:
            NotFound: Unknown grant id
        """
        with transaction.atomic():
            record = (
                TemporaryPermission.objects.select_for_update()
                .filter(pk=temporary_permission_id)
                .first()
            )
            if record is None:
                raise NotFound(
                    f"Temporary permission '{temporary_permission_id}' does not exist",
                    details={'temporary_permission_id': str(temporary_permission_id)}
                )
            if not record.is_active:
                return record

            record.is_active = False
            record.revoked_at = timezone.now()
            record.revoked_by = revoked_by
            record.save(update_fields=['is_active', 'revoked_at', 'revoked_by', 'updated_at'])

            PermissionCache.invalidate(record.user_id)
            SessionAuditService.record_for_actor(
                revoked_by,
                'revoke_temporary_permission',
                {
                    'temporary_permission_id': str(record.id),
                    'user_id': str(record.user_id),
                    'permission': record.permission_name,
                }
            )

        SecurityLogger.log_grant_change(
            'revoke_temporary_permission',
            user_id=str(record.user_id),
            permission=record.permission_name,
            actor_id=str(revoked_by.id) if revoked_by else None,
        )
        return record

    @classmethod
    def list_for_user(cls, user, include_inactive: bool = False, now=None):
        """Grants for a user, newest first; effective ones only unless include_inactive."""
        queryset = TemporaryPermission.objects.for_user(user).select_related('granted_by', 'revoked_by')
        if not include_inactive:
            queryset = queryset.effective(now or timezone.now()).with_live_permission()
        return queryset.order_by('-granted_at')

    @classmethod
    def check(cls, user, permission_name: str, now=None) -> bool:
        """Whether the user holds an effective temporary grant of the permission."""
        return (
            TemporaryPermission.objects.for_user(user)
            .effective(now or timezone.now())
            .with_live_permission()
            .filter(permission__name=permission_name)
            .exists()
        )

    @classmethod
    def sweep_expired(cls, now=None) -> int:
        """
        Deactivate grants past their expiry.

        Expired grants already stop contributing at read time; this only
        keeps the active set small.
        """
        swept = TemporaryPermission.objects.expired_but_active(now or timezone.now()).update(is_active=False)
        if swept:
            logger.info(f"Deactivated {swept} expired temporary permissions")
        return swept

    @classmethod
    def get(cls, temporary_permission_id) -> Optional[TemporaryPermission]:
        return TemporaryPermission.objects.filter(pk=temporary_permission_id).first()
