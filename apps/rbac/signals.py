"""
RBAC signals for permission cache invalidation.

Service-layer mutations invalidate explicitly. These receivers cover writes
that bypass the services (admin shell, data fixes, cascades), so the cache
never outlives a change to a resolution input.
"""
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver

from apps.rbac.models import (
    User, RolePermission, LegacyRolePermission, UserPermissionOverride, TemporaryPermission
)
from apps.rbac.services.cache import PermissionCache


@receiver([post_save, post_delete], sender=UserPermissionOverride)
@receiver([post_save, post_delete], sender=TemporaryPermission)
def invalidate_user_grant(sender, instance, **kwargs):
    PermissionCache.invalidate(instance.user_id)


@receiver([post_save, post_delete], sender=RolePermission)
def invalidate_role_mapping(sender, instance, **kwargs):
    role = instance.role
    for user_id in User.objects.with_role_name(role.name).values_list('id', flat=True):
        PermissionCache.invalidate(user_id)


@receiver([post_save, post_delete], sender=LegacyRolePermission)
def invalidate_legacy_mapping(sender, instance, **kwargs):
    for user_id in User.objects.filter(role=instance.role_name).values_list('id', flat=True):
        PermissionCache.invalidate(user_id)


@receiver(post_save, sender=User)
def invalidate_user_role(sender, instance, created, **kwargs):
    if not created:
        PermissionCache.invalidate(instance.id)
