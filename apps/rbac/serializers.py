"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Users and effective permissions
- Permissions, roles and dependencies
- Temporary permissions and user overrides
- Segregation rules and violations
- Change requests
- Permission sessions and actions
"""
from django.utils import timezone
from rest_framework import serializers
from apps.core.platform_settings import SEVERITIES
from apps.rbac.models import (
    User, Permission, Role, UserPermissionOverride, TemporaryPermission,
    PermissionDependency, SegregationRule, PermissionSession, SessionAction,
    PermissionChangeRequest
)


# ===== USER SERIALIZERS =====

class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model."""

    role_model = serializers.SlugRelatedField(slug_field='name', read_only=True)
    is_super_admin = serializers.BooleanField(read_only=True)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'name', 'is_active', 'role', 'role_model',
            'is_super_admin', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class AssignRoleSerializer(serializers.Serializer):
    """Serializer for assigning a normalized role; null clears it."""

    role = serializers.CharField(allow_null=True, max_length=100)


# ===== PERMISSION SERIALIZERS =====

class PermissionSerializer(serializers.ModelSerializer):
    """Serializer for Permission model."""

    class Meta:
        model = Permission
        fields = [
            'id', 'name', 'resource', 'action', 'description', 'category',
            'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']


class PermissionCreateSerializer(serializers.Serializer):
    """Serializer for creating permissions."""

    name = serializers.CharField(max_length=100)
    resource = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    action = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    description = serializers.CharField(required=False, allow_blank=True, default='')
    category = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')


class PermissionUpdateSerializer(serializers.Serializer):
    """Serializer for editing unreferenced permissions."""

    name = serializers.CharField(max_length=100, required=False)
    resource = serializers.CharField(max_length=100, required=False, allow_blank=True)
    action = serializers.CharField(max_length=50, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    category = serializers.CharField(max_length=50, required=False, allow_blank=True)


class PermissionCheckSerializer(serializers.Serializer):
    """Query serializer for single permission checks."""

    permission = serializers.CharField(max_length=100)
    user_id = serializers.UUIDField(required=False)


class PermissionDependencySerializer(serializers.ModelSerializer):
    """Serializer for PermissionDependency model."""

    permission = serializers.CharField(source='permission.name', read_only=True)
    depends_on = serializers.CharField(source='depends_on.name', read_only=True)

    class Meta:
        model = PermissionDependency
        fields = ['id', 'permission', 'depends_on', 'created_at']
        read_only_fields = fields


class PermissionDependencyCreateSerializer(serializers.Serializer):
    """Serializer for declaring a dependency."""

    permission = serializers.CharField(max_length=100)
    depends_on = serializers.CharField(max_length=100)


# ===== ROLE SERIALIZERS =====

class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role model."""

    permission_count = serializers.SerializerMethodField()
    user_count = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = [
            'id', 'name', 'display_name', 'description', 'priority', 'is_system',
            'permission_count', 'user_count', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_permission_count(self, obj):
        return obj.get_permissions().count()

    def get_user_count(self, obj):
        return obj.assigned_users().count()


class RoleDetailSerializer(RoleSerializer):
    """Detailed serializer for Role with full permission list."""

    permissions = PermissionSerializer(
        source='get_permissions',
        many=True,
        read_only=True
    )

    class Meta(RoleSerializer.Meta):
        fields = RoleSerializer.Meta.fields + ['permissions']
        read_only_fields = fields


class RoleCreateSerializer(serializers.Serializer):
    """Serializer for creating roles."""

    name = serializers.CharField(max_length=100)
    display_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    description = serializers.CharField(required=False, allow_blank=True, default='')
    priority = serializers.IntegerField(required=False, default=0)
    permissions = serializers.ListField(
        child=serializers.CharField(max_length=100),
        required=False,
        default=list
    )


class RoleUpdateSerializer(serializers.Serializer):
    """Serializer for editing roles. `permissions` replaces the role's set when present."""

    display_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    priority = serializers.IntegerField(required=False)
    permissions = serializers.ListField(
        child=serializers.CharField(max_length=100),
        required=False
    )


# ===== GRANT SERIALIZERS =====

class TemporaryPermissionSerializer(serializers.ModelSerializer):
    """Serializer for TemporaryPermission model."""

    user_id = serializers.UUIDField(read_only=True)
    permission = serializers.CharField(source='permission_name', read_only=True)
    granted_by = serializers.EmailField(source='granted_by.email', read_only=True, default=None)
    revoked_by = serializers.EmailField(source='revoked_by.email', read_only=True, default=None)
    is_effective = serializers.SerializerMethodField()

    class Meta:
        model = TemporaryPermission
        fields = [
            'id', 'user_id', 'permission', 'granted_by', 'granted_at', 'expires_at',
            'reason', 'is_active', 'is_effective', 'revoked_at', 'revoked_by'
        ]
        read_only_fields = fields

    def get_is_effective(self, obj):
        return obj.is_effective_at(timezone.now())


class TemporaryPermissionCreateSerializer(serializers.Serializer):
    """Serializer for granting temporary permissions."""

    user_id = serializers.UUIDField()
    permission = serializers.CharField(max_length=100)
    expires_at = serializers.DateTimeField()
    reason = serializers.CharField(required=False, allow_blank=True, default='')

    def validate_expires_at(self, value):
        if value <= timezone.now():
            raise serializers.ValidationError("Expiry must be in the future.")
        return value


class UserPermissionOverrideSerializer(serializers.ModelSerializer):
    """Serializer for UserPermissionOverride model."""

    permission = serializers.CharField(source='permission.name', read_only=True)
    granted_by = serializers.EmailField(source='granted_by.email', read_only=True, default=None)

    class Meta:
        model = UserPermissionOverride
        fields = ['id', 'permission', 'allowed', 'reason', 'granted_by', 'created_at', 'updated_at']
        read_only_fields = fields


class UserPermissionOverrideCreateSerializer(serializers.Serializer):
    """Serializer for setting a user override."""

    permission = serializers.CharField(max_length=100)
    allowed = serializers.BooleanField()
    reason = serializers.CharField(required=False, allow_blank=True, default='')


# ===== SEGREGATION SERIALIZERS =====

class SegregationRuleSerializer(serializers.ModelSerializer):
    """Serializer for SegregationRule model."""

    permission_a = serializers.CharField(source='permission_a.name', read_only=True)
    permission_b = serializers.CharField(source='permission_b.name', read_only=True)

    class Meta:
        model = SegregationRule
        fields = ['id', 'permission_a', 'permission_b', 'severity', 'description', 'is_active', 'created_at']
        read_only_fields = fields


class SegregationRuleCreateSerializer(serializers.Serializer):
    """Serializer for declaring a conflicting permission pair."""

    permission_a = serializers.CharField(max_length=100)
    permission_b = serializers.CharField(max_length=100)
    severity = serializers.ChoiceField(choices=SEVERITIES, default='high')
    description = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, attrs):
        if attrs['permission_a'] == attrs['permission_b']:
            raise serializers.ValidationError("A rule needs two different permissions.")
        return attrs


class ViolationSerializer(serializers.Serializer):
    """Serializer for segregation violations."""

    rule_id = serializers.CharField()
    permission_a = serializers.CharField()
    permission_b = serializers.CharField()
    severity = serializers.CharField()
    description = serializers.CharField()


# ===== CHANGE REQUEST SERIALIZERS =====

class PermissionChangeRequestSerializer(serializers.ModelSerializer):
    """Serializer for PermissionChangeRequest model."""

    user_id = serializers.UUIDField(read_only=True)
    requested_by = serializers.EmailField(source='requested_by.email', read_only=True, default=None)
    reviewed_by = serializers.EmailField(source='reviewed_by.email', read_only=True, default=None)

    class Meta:
        model = PermissionChangeRequest
        fields = [
            'id', 'user_id', 'requested_by', 'permissions_to_add', 'permissions_to_remove',
            'reason', 'status', 'expires_at', 'reviewed_by', 'reviewed_at', 'review_notes',
            'created_at'
        ]
        read_only_fields = fields


class PermissionChangeRequestCreateSerializer(serializers.Serializer):
    """Serializer for filing a change request."""

    user_id = serializers.UUIDField()
    permissions_to_add = serializers.ListField(
        child=serializers.CharField(max_length=100), required=False, default=list
    )
    permissions_to_remove = serializers.ListField(
        child=serializers.CharField(max_length=100), required=False, default=list
    )
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    expires_at = serializers.DateTimeField(required=False)

    def validate(self, attrs):
        if not attrs.get('permissions_to_add') and not attrs.get('permissions_to_remove'):
            raise serializers.ValidationError("Add or remove at least one permission.")
        return attrs


class ChangeRequestReviewSerializer(serializers.Serializer):
    """Serializer for approving or rejecting a change request."""

    notes = serializers.CharField(required=False, allow_blank=True, default='')


# ===== SESSION SERIALIZERS =====

class SessionActionSerializer(serializers.ModelSerializer):
    """Serializer for SessionAction model."""

    session_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = SessionAction
        fields = ['id', 'session_id', 'action_type', 'performed_at', 'details']
        read_only_fields = fields


class PermissionSessionSerializer(serializers.ModelSerializer):
    """Serializer for PermissionSession model."""

    user_id = serializers.UUIDField(read_only=True)
    action_count = serializers.SerializerMethodField()

    class Meta:
        model = PermissionSession
        fields = [
            'id', 'user_id', 'started_at', 'last_activity', 'ended_at',
            'ip_address', 'user_agent', 'action_count'
        ]
        read_only_fields = fields

    def get_action_count(self, obj):
        return obj.actions.count()


class SessionActionCreateSerializer(serializers.Serializer):
    """Serializer for appending an action to the caller's session."""

    action_type = serializers.CharField(max_length=100)
    details = serializers.DictField(required=False, default=dict)
