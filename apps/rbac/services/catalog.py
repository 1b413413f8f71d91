"""
Administrative operations on the permission catalog.

Every mutation validates before writing, runs in one transaction, invalidates
the affected cache entries and appends a session action for the actor.
"""
import logging
import re
import uuid
from typing import Iterable, List, Optional
from django.db import transaction

from apps.core.exceptions import Conflict, NotFound, ValidationError
from apps.core.logging import SecurityLogger
from apps.core.platform_settings import PlatformSettings, SEVERITIES
from apps.rbac.models import (
    User, Permission, Role, RolePermission, UserPermissionOverride,
    PermissionDependency, SegregationRule
)
from apps.rbac.services.cache import PermissionCache
from apps.rbac.services.sessions import SessionAuditService
from apps.rbac.services.temporary import get_permission, get_user

logger = logging.getLogger(__name__)

PERMISSION_NAME_PATTERN = re.compile(r'^[a-z0-9][a-z0-9_.:-]*$')


def get_role(role) -> Role:
    if isinstance(role, Role):
        return role
    found = Role.objects.filter(pk=role).first() if _looks_like_pk(role) else Role.objects.by_name(role)
    if found is None:
        raise NotFound(f"Role '{role}' does not exist", details={'role': str(role)})
    return found


def _looks_like_pk(value) -> bool:
    try:
        uuid.UUID(str(value))
        return True
    except ValueError:
        return False


def resolve_permission_names(names: Iterable[str]) -> List[Permission]:
    """
    Look up permissions by name.

    Raises:
        ValidationError: listing every unknown name
    """
    names = list(dict.fromkeys(names or []))
    found = {p.name: p for p in Permission.objects.filter(name__in=names)}
    unknown = [name for name in names if name not in found]
    if unknown:
        raise ValidationError("Unknown permissions", details={'unknown_permissions': unknown})
    return [found[name] for name in names]


class CatalogService:
    """
    Service for permission, role, override, dependency and segregation rule administration.
    """

    # Permissions

    @classmethod
    def create_permission(cls, name: str, resource: str = '', action: str = '',
                          description: str = '', category: str = '', actor: Optional[User] = None) -> Permission:
        name = (name or '').strip()
        if not name or len(name) > 100 or not PERMISSION_NAME_PATTERN.match(name):
            raise ValidationError(
                "Permission names are lowercase letters, digits and '-', '_', '.', ':'",
                details={'name': name}
            )
        if Permission.objects_with_deleted.filter(name=name).exists():
            raise Conflict(f"Permission '{name}' already exists", details={'name': name})

        with transaction.atomic():
            permission = Permission.objects.create(
                name=name,
                resource=resource,
                action=action,
                description=description,
                category=category,
            )
            SessionAuditService.record_for_actor(actor, 'create_permission', {'permission': name})

        logger.info(f"Permission created: {name}")
        return permission

    @classmethod
    def update_permission(cls, permission, actor: Optional[User] = None, **fields) -> Permission:
        """
        Edit an unreferenced permission.

        Raises:
            Conflict: The permission is referenced by a grant, mapping or override
        """
        permission = get_permission(permission)
        allowed_fields = {'name', 'resource', 'action', 'description', 'category'}
        unexpected = set(fields) - allowed_fields
        if unexpected:
            raise ValidationError("Unknown permission fields", details={'fields': sorted(unexpected)})
        if permission.is_referenced():
            raise Conflict(
                f"Permission '{permission.name}' is referenced and cannot be edited",
                details={'permission': permission.name}
            )
        new_name = fields.get('name')
        if new_name and new_name != permission.name:
            if not PERMISSION_NAME_PATTERN.match(new_name):
                raise ValidationError("Invalid permission name", details={'name': new_name})
            if Permission.objects_with_deleted.filter(name=new_name).exists():
                raise Conflict(f"Permission '{new_name}' already exists", details={'name': new_name})

        with transaction.atomic():
            for field, value in fields.items():
                setattr(permission, field, value)
            permission.save()
            PermissionCache.invalidate_all()
            SessionAuditService.record_for_actor(
                actor, 'update_permission', {'permission': permission.name, 'fields': sorted(fields)}
            )
        return permission

    @classmethod
    def delete_permission(cls, permission, actor: Optional[User] = None):
        permission = get_permission(permission)
        if permission.is_referenced():
            raise Conflict(
                f"Permission '{permission.name}' is referenced and cannot be deleted",
                details={'permission': permission.name}
            )
        with transaction.atomic():
            permission.delete()
            PermissionCache.invalidate_all()
            SessionAuditService.record_for_actor(actor, 'delete_permission', {'permission': permission.name})
        logger.info(f"Permission deleted: {permission.name}")

    # Roles

    @classmethod
    def _ensure_editable(cls, role: Role):
        if role.is_super_admin:
            raise Conflict(
                f"The {role.name} role cannot be modified",
                details={'role': role.name}
            )

    @classmethod
    def _invalidate_role_users(cls, role: Role):
        for user_id in role.assigned_users().values_list('id', flat=True):
            PermissionCache.invalidate(user_id)

    @classmethod
    def create_role(cls, name: str, display_name: str = '', description: str = '', priority: int = 0,
                    permissions: Iterable[str] = (), is_system: bool = False,
                    actor: Optional[User] = None) -> Role:
        name = (name or '').strip()
        if not name:
            raise ValidationError("Role name is required")
        if Role.objects_with_deleted.filter(name=name).exists():
            raise Conflict(f"Role '{name}' already exists", details={'name': name})
        resolved = resolve_permission_names(permissions)

        with transaction.atomic():
            role = Role.objects.create(
                name=name,
                display_name=display_name or name,
                description=description,
                priority=priority,
                is_system=is_system,
            )
            for permission in resolved:
                RolePermission.objects.grant_permission(role, permission)
            SessionAuditService.record_for_actor(
                actor, 'create_role', {'role': name, 'permissions': [p.name for p in resolved]}
            )
        logger.info(f"Role created: {name}")
        return role

    @classmethod
    def update_role(cls, role, actor: Optional[User] = None, permissions: Optional[Iterable[str]] = None,
                    **fields) -> Role:
        """
        Edit role attributes and, when `permissions` is given, replace its permission set.

        Raises:
            Conflict: The role is the Super Admin role
        """
        role = get_role(role)
        cls._ensure_editable(role)
        allowed_fields = {'display_name', 'description', 'priority'}
        unexpected = set(fields) - allowed_fields
        if unexpected:
            raise ValidationError("Unknown role fields", details={'fields': sorted(unexpected)})
        resolved = resolve_permission_names(permissions) if permissions is not None else None

        with transaction.atomic():
            for field, value in fields.items():
                setattr(role, field, value)
            role.save()
            details = {'role': role.name, 'fields': sorted(fields)}
            if resolved is not None:
                added, removed = cls._sync_role_permissions(role, resolved)
                details.update({'added': added, 'removed': removed})
                cls._invalidate_role_users(role)
                SessionAuditService.record_for_actor(actor, 'update_role_permissions', details)
            else:
                SessionAuditService.record_for_actor(actor, 'update_role', details)
        return role

    @classmethod
    def _sync_role_permissions(cls, role: Role, permissions: List[Permission]):
        """Make the role hold exactly `permissions`. Returns (added, removed) names."""
        current = {
            rp.permission_id: rp.permission.name
            for rp in RolePermission.objects.for_role(role).select_related('permission')
        }
        target = {p.id: p for p in permissions}

        added = []
        for permission_id, permission in target.items():
            if permission_id not in current:
                RolePermission.objects.grant_permission(role, permission)
                added.append(permission.name)

        removed_ids = set(current) - set(target)
        if removed_ids:
            RolePermission.objects.filter(role=role, permission_id__in=removed_ids).hard_delete()
        return sorted(added), sorted(current[pid] for pid in removed_ids)

    @classmethod
    def delete_role(cls, role, actor: Optional[User] = None):
        """
        Raises:
            Conflict: Super Admin role, or users are still assigned to it
        """
        role = get_role(role)
        cls._ensure_editable(role)
        assigned = role.assigned_users().count()
        if assigned:
            raise Conflict(
                f"Role '{role.name}' is assigned to {assigned} user(s)",
                details={'role': role.name, 'assigned_users': assigned}
            )
        with transaction.atomic():
            RolePermission.objects.filter(role=role).hard_delete()
            role.delete()
            SessionAuditService.record_for_actor(actor, 'delete_role', {'role': role.name})
        logger.info(f"Role deleted: {role.name}")

    @classmethod
    def assign_role(cls, user, role, actor: Optional[User] = None) -> User:
        """
        Assign a normalized role (or clear it with role=None).

        Raises:
            Conflict: Removing a Super Admin through this flow
        """
        user = get_user(user)
        role = get_role(role) if role is not None else None
        super_admin = PlatformSettings.get_super_admin_role()
        if user.is_super_admin and (role is None or role.name != super_admin):
            raise Conflict(
                f"{super_admin} users cannot be reassigned through this operation",
                details={'user_id': str(user.id)}
            )

        previous = user.role_names
        with transaction.atomic():
            user.role_model = role
            user.role = role.name if role else ''
            user.save(update_fields=['role_model', 'role', 'updated_at'])
            PermissionCache.invalidate(user.id)
            SessionAuditService.record_for_actor(
                actor, 'assign_role',
                {'user_id': str(user.id), 'previous_roles': previous, 'role': role.name if role else None}
            )
        return user

    # Overrides

    @classmethod
    def set_override(cls, user, permission, allowed: bool, reason: str = '',
                     actor: Optional[User] = None) -> UserPermissionOverride:
        user = get_user(user)
        permission = get_permission(permission)
        with transaction.atomic():
            override, _ = UserPermissionOverride.objects.set_override(
                user=user,
                permission=permission,
                allowed=allowed,
                reason=reason,
                granted_by=actor,
            )
            PermissionCache.invalidate(user.id)
            SessionAuditService.record_for_actor(
                actor, 'set_permission_override',
                {'user_id': str(user.id), 'permission': permission.name, 'allowed': allowed, 'reason': reason}
            )
        SecurityLogger.log_grant_change(
            'set_permission_override',
            user_id=str(user.id),
            permission=permission.name,
            actor_id=str(actor.id) if actor else None,
            allowed=allowed,
        )
        return override

    @classmethod
    def remove_override(cls, user, permission, actor: Optional[User] = None):
        user = get_user(user)
        permission = get_permission(permission)
        overrides = UserPermissionOverride.objects.filter(user=user, permission=permission)
        if not overrides.exists():
            raise NotFound(
                f"No override of '{permission.name}' for this user",
                details={'user_id': str(user.id), 'permission': permission.name}
            )
        with transaction.atomic():
            overrides.hard_delete()
            PermissionCache.invalidate(user.id)
            SessionAuditService.record_for_actor(
                actor, 'remove_permission_override',
                {'user_id': str(user.id), 'permission': permission.name}
            )
        SecurityLogger.log_grant_change(
            'remove_permission_override',
            user_id=str(user.id),
            permission=permission.name,
            actor_id=str(actor.id) if actor else None,
        )

    @classmethod
    def update_user_permissions(cls, user, add: Iterable[str] = (), remove: Iterable[str] = (),
                                reason: str = '', actor: Optional[User] = None):
        """
        Apply allow overrides for `add` and deny overrides for `remove` in one transaction.
        """
        user = get_user(user)
        to_add = resolve_permission_names(add)
        to_remove = resolve_permission_names(remove)
        overlap = {p.name for p in to_add} & {p.name for p in to_remove}
        if overlap:
            raise ValidationError(
                "Permissions cannot be both added and removed",
                details={'permissions': sorted(overlap)}
            )

        with transaction.atomic():
            for permission in to_add:
                UserPermissionOverride.objects.set_override(user, permission, True, reason, actor)
            for permission in to_remove:
                UserPermissionOverride.objects.set_override(user, permission, False, reason, actor)
            PermissionCache.invalidate(user.id)
            SessionAuditService.record_for_actor(
                actor, 'update_user_permissions',
                {
                    'user_id': str(user.id),
                    'added': [p.name for p in to_add],
                    'removed': [p.name for p in to_remove],
                    'reason': reason,
                }
            )

    # Dependencies

    @classmethod
    def add_dependency(cls, permission, depends_on, actor: Optional[User] = None) -> PermissionDependency:
        permission = get_permission(permission)
        depends_on = get_permission(depends_on)
        if permission.id == depends_on.id:
            raise ValidationError(
                "A permission cannot depend on itself", details={'permission': permission.name}
            )
        if PermissionDependency.objects.filter(permission=permission, depends_on=depends_on).exists():
            raise Conflict(
                f"'{permission.name}' already depends on '{depends_on.name}'",
                details={'permission': permission.name, 'depends_on': depends_on.name}
            )
        with transaction.atomic():
            dependency = PermissionDependency.objects.create(permission=permission, depends_on=depends_on)
            SessionAuditService.record_for_actor(
                actor, 'add_permission_dependency',
                {'permission': permission.name, 'depends_on': depends_on.name}
            )
        return dependency

    @classmethod
    def remove_dependency(cls, permission, depends_on, actor: Optional[User] = None):
        permission = get_permission(permission)
        depends_on = get_permission(depends_on)
        deleted, _ = PermissionDependency.objects.filter(
            permission=permission, depends_on=depends_on
        ).hard_delete()
        if not deleted:
            raise NotFound(
                f"'{permission.name}' does not depend on '{depends_on.name}'",
                details={'permission': permission.name, 'depends_on': depends_on.name}
            )
        SessionAuditService.record_for_actor(
            actor, 'remove_permission_dependency',
            {'permission': permission.name, 'depends_on': depends_on.name}
        )

    # Segregation rules

    @classmethod
    def create_segregation_rule(cls, permission_a, permission_b, severity: str = 'high',
                                description: str = '', actor: Optional[User] = None) -> SegregationRule:
        permission_a = get_permission(permission_a)
        permission_b = get_permission(permission_b)
        if permission_a.id == permission_b.id:
            raise ValidationError(
                "A segregation rule needs two different permissions",
                details={'permission': permission_a.name}
            )
        if severity not in SEVERITIES:
            raise ValidationError(
                f"Severity must be one of {', '.join(SEVERITIES)}", details={'severity': severity}
            )
        if SegregationRule.objects.for_pair(permission_a, permission_b).exists():
            raise Conflict(
                "A segregation rule already covers this pair",
                details={'permission_a': permission_a.name, 'permission_b': permission_b.name}
            )
        with transaction.atomic():
            rule = SegregationRule.objects.create(
                permission_a=permission_a,
                permission_b=permission_b,
                severity=severity,
                description=description,
            )
            SessionAuditService.record_for_actor(
                actor, 'create_segregation_rule',
                {'permission_a': permission_a.name, 'permission_b': permission_b.name, 'severity': severity}
            )
        return rule

    @classmethod
    def delete_segregation_rule(cls, rule_id, actor: Optional[User] = None):
        rule = SegregationRule.objects.filter(pk=rule_id).first()
        if rule is None:
            raise NotFound(f"Segregation rule '{rule_id}' does not exist", details={'rule_id': str(rule_id)})
        with transaction.atomic():
            rule.hard_delete()
            SessionAuditService.record_for_actor(
                actor, 'delete_segregation_rule',
                {'permission_a': rule.permission_a.name, 'permission_b': rule.permission_b.name}
            )
