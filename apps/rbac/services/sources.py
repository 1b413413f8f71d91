"""
Role-derived permission sources.

A source maps a user to the permission names granted through one kind of
role assignment. The resolver merges every configured source, so retiring
the legacy mapping table is a change to RBAC['PERMISSION_SOURCES'].
"""
import logging
from typing import List, Set
from django.utils.module_loading import import_string

from apps.core.platform_settings import PlatformSettings
from apps.rbac.models import Permission

logger = logging.getLogger(__name__)


class PermissionSource:
    """Interface for a role-derived permission source."""

    # Key used in explain() breakdowns
    name = 'source'

    def permissions_for(self, user) -> Set[str]:
        raise NotImplementedError


class NormalizedRoleSource(PermissionSource):
    """Permissions of the role referenced by User.role_model."""

    name = 'normalized_role'

    def permissions_for(self, user) -> Set[str]:
        if user.role_model_id is None:
            return set()
        return set(
            Permission.objects.filter(
                role_permissions__role_id=user.role_model_id,
                role_permissions__role__deleted_at__isnull=True,
                role_permissions__deleted_at__isnull=True,
            ).values_list('name', flat=True)
        )


class LegacyRoleSource(PermissionSource):
    """Permissions mapped to the legacy User.role name."""

    name = 'legacy_role'

    def permissions_for(self, user) -> Set[str]:
        if not user.role:
            return set()
        return set(
            Permission.objects.filter(
                legacy_role_permissions__role_name=user.role,
                legacy_role_permissions__deleted_at__isnull=True,
            ).values_list('name', flat=True)
        )


def get_permission_sources() -> List[PermissionSource]:
    """Instantiate the sources named in RBAC['PERMISSION_SOURCES']."""
    sources = []
    for path in PlatformSettings.get_rbac_config()['PERMISSION_SOURCES']:
        source_class = import_string(path)
        sources.append(source_class())
    return sources
