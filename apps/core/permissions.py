"""
DRF permission classes and decorators for permission enforcement.

This module provides:
- HasPermissions: DRF permission class that enforces required permission names
- EnforceSegregationOfDuties: blocks users holding a critical conflicting pair
- @requires_permissions: Decorator to declare required permissions on views
"""
import logging
from rest_framework.permissions import BasePermission

logger = logging.getLogger(__name__)


def _client_ip(request):
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


class HasPermissions(BasePermission):
    """
    DRF permission class that enforces permission requirements on API endpoints.

    The view declares `required_permissions`; every name must be in the
    requesting user's effective permission set. Denials are logged with the
    per-source breakdown so the missing grant can be diagnosed.

    Usage in views:
        class MyView(APIView):
            permission_classes = [HasPermissions]
            required_permissions = ['manage-roles']

    Or use with decorator:
        @requires_permissions('manage-roles')
        class MyView(APIView):
            permission_classes = [HasPermissions]
    """

    message = 'You do not have the permission required for this action.'

    def has_permission(self, request, view):
        required = getattr(view, 'required_permissions', None)
        if not required:
            return True

        if isinstance(required, str):
            required = {required}
        else:
            required = set(required)

        user = getattr(request, 'user', None)
        if user is None or not getattr(user, 'is_authenticated', False):
            return False

        from apps.rbac.services.resolver import PermissionResolver
        from apps.core.logging import SecurityLogger

        missing = sorted(name for name in required if not PermissionResolver.has_permission(user, name))
        if not missing:
            return True

        for name in missing:
            SecurityLogger.log_permission_denied(
                user_id=str(user.id),
                permission=name,
                breakdown=PermissionResolver.explain(user, name),
                ip_address=_client_ip(request),
                path=request.path,
            )

        logger.warning(
            f"Permission denied: user {user.id} missing {missing}",
            extra={
                'user_id': str(user.id),
                'required_permissions': sorted(required),
                'missing_permissions': missing,
                'view': view.__class__.__name__,
                'method': request.method,
                'request_id': getattr(request, 'request_id', None),
            }
        )
        return False


class EnforceSegregationOfDuties(BasePermission):
    """
    Rejects requests from users whose permission set violates a critical
    segregation-of-duties rule. Lower severity violations are logged and the
    request continues. Super Admins are exempt.
    """

    message = 'Segregation of duties violation prevents access.'

    def has_permission(self, request, view):
        user = getattr(request, 'user', None)
        if user is None or not getattr(user, 'is_authenticated', False):
            return True

        from apps.rbac.services.segregation import SegregationChecker
        from apps.core.logging import SecurityLogger

        violations = SegregationChecker.check_violations(user)
        if not violations:
            return True

        blocked = any(violation.severity == 'critical' for violation in violations)
        SecurityLogger.log_segregation_violation(
            user_id=str(user.id),
            violations=[violation.as_dict() for violation in violations],
            blocked=blocked,
            ip_address=_client_ip(request),
            path=request.path,
        )
        return not blocked


def requires_permissions(*permissions):
    """
    Decorator to declare required permissions on a view class.

    Sets `required_permissions` on the view, which HasPermissions checks
    before any handler runs.

    Usage:
        @requires_permissions('view-permissions')
        class PermissionListView(APIView):
            permission_classes = [HasPermissions]

    Args:
        *permissions: Permission names required for access
    """
    def decorator(view_class):
        if not isinstance(view_class, type):
            raise TypeError('requires_permissions decorates view classes')
        view_class.required_permissions = set(permissions)
        return view_class

    return decorator
