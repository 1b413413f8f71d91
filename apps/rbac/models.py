"""
RBAC models for the hospital authorization engine.

Implements:
- User (identity authenticated upstream, carrying legacy and normalized role references)
- Permission (catalog of resource/action permissions)
- Role and RolePermission (normalized role-permission mapping)
- LegacyRolePermission (pre-migration mapping keyed by role name)
- UserPermissionOverride (per-user allow/deny, deny wins)
- TemporaryPermission (time-bounded grants)
- PermissionDependency and SegregationRule (catalog constraints)
- PermissionSession and SessionAction (append-only audit trail)
- PermissionChangeRequest (request/approve/reject workflow)
"""
import logging
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone
from apps.core.models import BaseModel, BaseModelManager, BaseModelQuerySet, AppendOnlyModel
from apps.core.platform_settings import PlatformSettings

logger = logging.getLogger(__name__)

SoftDeleteManager = BaseModelManager.from_queryset(BaseModelQuerySet)

SEVERITY_CHOICES = [
    ('critical', 'Critical'),
    ('high', 'High'),
    ('medium', 'Medium'),
    ('low', 'Low'),
]


class UserManager(SoftDeleteManager):
    """Manager for User queries."""

    def active(self):
        """Return only active users."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find user by email (case-insensitive)."""
        return self.filter(email__iexact=email).first()

    def with_role_name(self, role_name):
        """Users assigned a role by legacy name or normalized role."""
        return self.filter(models.Q(role=role_name) | models.Q(role_model__name=role_name))

    def create_user(self, email, name='', role='', role_model=None, **extra_fields):
        """Create a user. Credentials live with the upstream identity provider."""
        if not email:
            raise ValueError('Email address is required')
        email_name, _, domain_part = email.strip().rpartition('@')
        email = f"{email_name}@{domain_part.lower()}" if email_name else email.strip()
        extra_fields.setdefault('is_active', True)
        user = self.model(email=email, name=name, role=role, role_model=role_model, **extra_fields)
        user.save(using=self._db)
        return user

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    Hospital staff identity.

    Authentication happens upstream; this model carries the role assignment
    used for authorization. A user may reference a role two ways: the legacy
    `role` name string and the normalized `role_model` foreign key. Both are
    consulted during permission resolution.

    This is the AUTH_USER_MODEL for the project.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique)"
    )
    name = models.CharField(
        max_length=255,
        blank=True,
        help_text="Display name"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    role = models.CharField(
        max_length=100,
        blank=True,
        db_index=True,
        help_text="Legacy role name (e.g., 'Doctor', 'Super Admin')"
    )
    role_model = models.ForeignKey(
        'Role',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        db_column='role_id',
        related_name='users',
        help_text="Normalized role assignment"
    )

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at']),
            models.Index(fields=['role']),
        ]

    def __str__(self):
        return self.email

    @property
    def is_super_admin(self):
        """True when either role reference names the Super Admin role."""
        super_admin = PlatformSettings.get_super_admin_role()
        if self.role == super_admin:
            return True
        return self.role_model_id is not None and self.role_model.name == super_admin

    @property
    def role_names(self):
        """Distinct role names referenced by this user."""
        names = []
        if self.role_model_id is not None:
            names.append(self.role_model.name)
        if self.role and self.role not in names:
            names.append(self.role)
        return names

    @property
    def is_authenticated(self):
        """Always True for User instances (Django auth compatibility)."""
        return True

    @property
    def is_anonymous(self):
        """Always False for User instances (Django auth compatibility)."""
        return False

    def get_username(self):
        return self.email

    def natural_key(self):
        return (self.email,)


class PermissionManager(SoftDeleteManager):
    """Manager for Permission queries."""

    def by_name(self, name):
        """Find permission by exact name."""
        return self.filter(name=name).first()

    def by_name_ci(self, name):
        """Find permission by name, ignoring case."""
        return self.filter(name__iexact=name).first()

    def by_category(self, category):
        """Get all permissions in a category."""
        return self.filter(category=category)

    def all_names(self):
        """Names of every live permission in the catalog."""
        return set(self.values_list('name', flat=True))


class Permission(BaseModel):
    """
    Catalog permission identified by a unique name such as 'view-patients'.

    Immutable once referenced by grants or overrides; created, edited and
    deleted only through CatalogService.
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Unique permission name (e.g., 'view-patients')"
    )
    resource = models.CharField(
        max_length=100,
        blank=True,
        db_index=True,
        help_text="Resource the permission applies to (e.g., 'patients')"
    )
    action = models.CharField(
        max_length=50,
        blank=True,
        help_text="Action on the resource (e.g., 'view', 'edit', 'delete')"
    )
    description = models.TextField(
        blank=True,
        help_text="Detailed description of what this permission grants"
    )
    category = models.CharField(
        max_length=50,
        blank=True,
        db_index=True,
        help_text="Permission category (e.g., 'clinical', 'billing', 'administration')"
    )

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['category', 'name']
        indexes = [
            models.Index(fields=['category']),
            models.Index(fields=['resource', 'action']),
        ]

    def __str__(self):
        return self.name

    def is_referenced(self):
        """Whether any grant, override or role mapping points at this permission."""
        return (
            self.role_permissions.filter(deleted_at__isnull=True).exists()
            or self.legacy_role_permissions.filter(deleted_at__isnull=True).exists()
            or self.user_overrides.filter(deleted_at__isnull=True).exists()
            or TemporaryPermission.objects.filter(permission_id=self.id).exists()
        )


class RoleManager(SoftDeleteManager):
    """Manager for Role queries."""

    def by_name(self, name):
        return self.filter(name=name).first()

    def by_priority(self):
        """Roles ordered from most to least authority."""
        return self.order_by('-priority', 'name')


class Role(BaseModel):
    """
    Named collection of permissions with a priority (higher = more authority).

    The Super Admin role is terminal: it bypasses all checks and cannot be
    edited or deleted.
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        help_text="Role name (e.g., 'Doctor', 'Pharmacist')"
    )
    display_name = models.CharField(
        max_length=255,
        blank=True,
        help_text="Human-readable role name"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )
    priority = models.IntegerField(
        default=0,
        db_index=True,
        help_text="Authority level; higher values outrank lower ones"
    )
    is_system = models.BooleanField(
        default=False,
        help_text="Whether this role was seeded by the system"
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['-priority', 'name']

    def __str__(self):
        return self.name

    @property
    def is_super_admin(self):
        return self.name == PlatformSettings.get_super_admin_role()

    def get_permissions(self):
        """Get all live permissions for this role."""
        return Permission.objects.filter(
            role_permissions__role=self,
            role_permissions__deleted_at__isnull=True,
        )

    def assigned_users(self):
        """Users referencing this role by normalized FK or legacy name."""
        return User.objects.with_role_name(self.name)


class RolePermissionManager(SoftDeleteManager):
    """Manager for RolePermission queries."""

    def for_role(self, role):
        return self.filter(role=role)

    def grant_permission(self, role, permission):
        """Grant permission to role (idempotent)."""
        role_permission, created = self.get_or_create(role=role, permission=permission)
        return role_permission, created

    def revoke_permission(self, role, permission):
        """Remove permission from role."""
        return self.filter(role=role, permission=permission).hard_delete()


class RolePermission(BaseModel):
    """
    Normalized role to permission mapping.
    """

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        db_index=True,
        help_text="Role receiving the permission"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        db_index=True,
        help_text="Permission granted to the role"
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]
        ordering = ['role', 'permission']

    def __str__(self):
        return f"{self.role.name} -> {self.permission.name}"


class LegacyRolePermissionManager(SoftDeleteManager):
    """Manager for LegacyRolePermission queries."""

    def for_role_name(self, role_name):
        return self.filter(role_name=role_name)


class LegacyRolePermission(BaseModel):
    """
    Pre-migration role to permission mapping keyed by role name.

    Read-only input to resolution; kept until every user carries a
    normalized role.
    """

    role_name = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Legacy role name this row applies to"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='legacy_role_permissions',
        help_text="Permission granted to the legacy role"
    )

    objects = LegacyRolePermissionManager()

    class Meta:
        db_table = 'legacy_role_permissions'
        unique_together = [('role_name', 'permission')]
        ordering = ['role_name']

    def __str__(self):
        return f"{self.role_name} -> {self.permission.name} (legacy)"


class UserPermissionOverrideManager(SoftDeleteManager):
    """Manager for UserPermissionOverride queries."""

    def for_user(self, user):
        return self.filter(user=user)

    def allows(self, user):
        return self.filter(user=user, allowed=True)

    def denies(self, user):
        return self.filter(user=user, allowed=False)

    def set_override(self, user, permission, allowed, reason='', granted_by=None):
        """Create or replace the single override for (user, permission)."""
        return self.update_or_create(
            user=user,
            permission=permission,
            defaults={
                'allowed': allowed,
                'reason': reason,
                'granted_by': granted_by,
            }
        )


class UserPermissionOverride(BaseModel):
    """
    Per-user permission override.

    allowed=True adds the permission, allowed=False removes it. Overrides are
    applied after role-derived and temporary sources, and deny always wins.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='permission_overrides',
        db_index=True,
        help_text="User this override applies to"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='user_overrides',
        help_text="Permission being allowed or denied"
    )
    allowed = models.BooleanField(
        help_text="True = allow, False = deny (deny wins over every other source)"
    )
    reason = models.TextField(
        blank=True,
        help_text="Reason for this override"
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_overrides_made',
        help_text="User who created this override"
    )

    objects = UserPermissionOverrideManager()

    class Meta:
        db_table = 'user_permission_overrides'
        unique_together = [('user', 'permission')]
        ordering = ['user', 'permission']
        indexes = [
            models.Index(fields=['user', 'allowed']),
        ]

    def __str__(self):
        action = "ALLOW" if self.allowed else "DENY"
        return f"{action} {self.permission.name} for {self.user.email}"


def is_effective(record, now):
    """
    Whether a temporary permission contributes to resolution at `now`.

    A grant is effective while it is active and `now` is strictly before its
    expiry. This is the single definition used by resolution and detection;
    TemporaryPermissionQuerySet.effective() is its query equivalent.
    """
    return bool(record.is_active) and now < record.expires_at


class TemporaryPermissionQuerySet(BaseModelQuerySet):

    def effective(self, now=None):
        """Query equivalent of is_effective()."""
        now = now or timezone.now()
        return self.filter(is_active=True, expires_at__gt=now)

    def for_user(self, user):
        return self.filter(user=user)

    def with_live_permission(self):
        """Skip rows whose permission was deleted or soft-deleted."""
        return self.filter(permission__deleted_at__isnull=True)

    def expired_but_active(self, now=None):
        now = now or timezone.now()
        return self.filter(is_active=True, expires_at__lte=now)


class TemporaryPermission(BaseModel):
    """
    Time-bounded grant of one permission to one user.

    Inert once `now >= expires_at` (checked at read time) or after
    revocation (`is_active=False`). The permission reference carries no
    database constraint so rows pointing at removed permissions are kept
    for audit and skipped by readers.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='temporary_permissions',
        db_index=True,
        help_text="User receiving the grant"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='temporary_grants',
        help_text="Permission granted"
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='temporary_permissions_granted',
        help_text="User who made the grant"
    )
    granted_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the grant was made"
    )
    expires_at = models.DateTimeField(
        db_index=True,
        help_text="Grant stops contributing at this instant"
    )
    reason = models.TextField(
        blank=True,
        help_text="Justification for the grant"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="False once revoked or swept after expiry"
    )
    revoked_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the grant was revoked"
    )
    revoked_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='temporary_permissions_revoked',
        help_text="User who revoked the grant"
    )

    objects = BaseModelManager.from_queryset(TemporaryPermissionQuerySet)()

    class Meta:
        db_table = 'temporary_permissions'
        ordering = ['-granted_at']
        indexes = [
            models.Index(fields=['user', 'is_active', 'expires_at']),
            models.Index(fields=['granted_at', 'is_active']),
        ]

    def __str__(self):
        return f"{self.permission_id} for {self.user_id} until {self.expires_at.isoformat()}"

    def is_effective_at(self, now=None):
        return is_effective(self, now or timezone.now())

    @property
    def permission_name(self):
        """Permission name, or None when the referenced permission is gone."""
        permission = Permission.objects.filter(id=self.permission_id).first()
        return permission.name if permission else None


class PermissionDependency(BaseModel):
    """
    `permission` may only be held together with `depends_on`.
    """

    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='dependencies',
        help_text="Dependent permission"
    )
    depends_on = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='dependents',
        help_text="Prerequisite permission"
    )

    class Meta:
        db_table = 'permission_dependencies'
        unique_together = [('permission', 'depends_on')]

    def __str__(self):
        return f"{self.permission.name} requires {self.depends_on.name}"

    def clean(self):
        if self.permission_id == self.depends_on_id:
            raise DjangoValidationError("A permission cannot depend on itself")


class SegregationRuleQuerySet(BaseModelQuerySet):

    def active(self):
        return self.filter(is_active=True)

    def for_pair(self, permission_a, permission_b):
        """Rules covering the unordered pair."""
        return self.filter(
            models.Q(permission_a=permission_a, permission_b=permission_b)
            | models.Q(permission_a=permission_b, permission_b=permission_a)
        )


class SegregationRule(BaseModel):
    """
    Declares two permissions that must not be held by the same user.
    """

    permission_a = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='segregation_rules_a',
        help_text="First conflicting permission"
    )
    permission_b = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='segregation_rules_b',
        help_text="Second conflicting permission"
    )
    severity = models.CharField(
        max_length=10,
        choices=SEVERITY_CHOICES,
        default='high',
        help_text="Critical violations block requests; others are logged"
    )
    description = models.TextField(
        blank=True,
        help_text="Why the pair conflicts"
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Inactive rules are ignored"
    )

    objects = BaseModelManager.from_queryset(SegregationRuleQuerySet)()

    class Meta:
        db_table = 'segregation_rules'
        unique_together = [('permission_a', 'permission_b')]
        ordering = ['severity', 'created_at']

    def __str__(self):
        return f"{self.permission_a.name} x {self.permission_b.name} ({self.severity})"

    def clean(self):
        if self.permission_a_id == self.permission_b_id:
            raise DjangoValidationError("A segregation rule needs two different permissions")


class PermissionSession(BaseModel):
    """
    A user's administrative session; groups the actions they perform.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='permission_sessions',
        db_index=True,
        help_text="Session owner"
    )
    started_at = models.DateTimeField(
        default=timezone.now,
        help_text="Session start"
    )
    last_activity = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="Time of the most recent recorded action"
    )
    ended_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Set when the session is closed or expired"
    )
    ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="Client IP address"
    )
    user_agent = models.TextField(
        blank=True,
        help_text="User agent string"
    )

    class Meta:
        db_table = 'permission_sessions'
        ordering = ['-started_at']

    def __str__(self):
        return f"Session {self.id} ({self.user_id})"


class SessionAction(AppendOnlyModel):
    """
    One audited action inside a permission session. Append-only.
    """

    session = models.ForeignKey(
        PermissionSession,
        on_delete=models.CASCADE,
        related_name='actions',
        help_text="Session the action belongs to"
    )
    action_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'grant_temporary_permission')"
    )
    performed_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the action happened"
    )
    details = models.JSONField(
        default=dict,
        encoder=DjangoJSONEncoder,
        blank=True,
        help_text="Action context"
    )

    class Meta:
        db_table = 'permission_session_actions'
        ordering = ['-performed_at']
        indexes = [
            models.Index(fields=['action_type', 'performed_at']),
        ]

    def __str__(self):
        return f"{self.action_type} @ {self.performed_at.isoformat()}"


# Action types that change someone's effective permissions
PERMISSION_CHANGE_ACTIONS = (
    'grant_temporary_permission',
    'revoke_temporary_permission',
    'update_user_permissions',
    'set_permission_override',
    'remove_permission_override',
    'assign_role',
    'update_role_permissions',
    'approve_change_request',
)


class PermissionChangeRequestQuerySet(BaseModelQuerySet):

    def pending(self):
        return self.filter(status=PermissionChangeRequest.STATUS_PENDING)

    def overdue(self, now=None):
        now = now or timezone.now()
        return self.pending().filter(expires_at__lte=now)


class PermissionChangeRequest(BaseModel):
    """
    Request to add or remove permissions for a user.

    Status moves from pending to approved, rejected or expired. Terminal
    states are final. Permission lists hold canonical catalog names.
    """

    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_EXPIRED = 'expired'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_EXPIRED, 'Expired'),
    ]
    TERMINAL_STATUSES = {STATUS_APPROVED, STATUS_REJECTED, STATUS_EXPIRED}

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='permission_change_requests',
        help_text="User whose permissions would change"
    )
    requested_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        related_name='permission_change_requests_made',
        help_text="User who filed the request"
    )
    permissions_to_add = models.JSONField(
        default=list,
        blank=True,
        help_text="Permission names to add"
    )
    permissions_to_remove = models.JSONField(
        default=list,
        blank=True,
        help_text="Permission names to remove"
    )
    reason = models.TextField(
        blank=True,
        help_text="Justification"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True,
        help_text="Workflow status"
    )
    expires_at = models.DateTimeField(
        help_text="Pending requests expire at this instant"
    )
    reviewed_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_change_requests_reviewed',
        help_text="User who approved or rejected"
    )
    reviewed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the request left the pending state"
    )
    review_notes = models.TextField(
        blank=True,
        help_text="Reviewer notes"
    )

    objects = BaseModelManager.from_queryset(PermissionChangeRequestQuerySet)()

    class Meta:
        db_table = 'permission_change_requests'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'expires_at']),
        ]

    def __str__(self):
        return f"Change request {self.id} for {self.user_id} ({self.status})"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def requested_permissions(self):
        """Names to add followed by names to remove."""
        return list(self.permissions_to_add or []) + list(self.permissions_to_remove or [])
