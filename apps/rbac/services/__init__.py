"""
RBAC services: resolution, caching, temporary grants, segregation of duties,
catalog administration, session audit and change requests.
"""
from .sources import PermissionSource, NormalizedRoleSource, LegacyRoleSource, get_permission_sources
from .cache import PermissionCache, CachedPermissions
from .resolver import PermissionResolver
from .sessions import SessionAuditService
from .temporary import TemporaryPermissionManager
from .segregation import SegregationChecker, Violation
from .catalog import CatalogService
from .change_requests import ChangeRequestService

__all__ = [
    'PermissionSource',
    'NormalizedRoleSource',
    'LegacyRoleSource',
    'get_permission_sources',
    'PermissionCache',
    'CachedPermissions',
    'PermissionResolver',
    'SessionAuditService',
    'TemporaryPermissionManager',
    'SegregationChecker',
    'Violation',
    'CatalogService',
    'ChangeRequestService',
]
