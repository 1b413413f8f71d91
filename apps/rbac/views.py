"""
RBAC REST API views.

Implements endpoints for:
- Permission checks and effective permission sets
- Permission catalog and dependency administration
- Role management and assignment
- Per-user overrides and temporary permissions
- Segregation rules and violations
- Permission change requests
- Permission sessions and actions
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import NotFound
from apps.core.pagination import paginated_response
from apps.core.permissions import HasPermissions, EnforceSegregationOfDuties, requires_permissions
from apps.rbac.models import (
    User, Permission, Role, PermissionDependency, SegregationRule,
    PermissionSession, UserPermissionOverride
)
from apps.rbac.services import (
    PermissionResolver, TemporaryPermissionManager, SegregationChecker,
    CatalogService, ChangeRequestService, SessionAuditService
)
from apps.rbac.serializers import (
    UserSerializer, AssignRoleSerializer,
    PermissionSerializer, PermissionCreateSerializer, PermissionUpdateSerializer,
    PermissionCheckSerializer, PermissionDependencySerializer, PermissionDependencyCreateSerializer,
    RoleSerializer, RoleDetailSerializer, RoleCreateSerializer, RoleUpdateSerializer,
    TemporaryPermissionSerializer, TemporaryPermissionCreateSerializer,
    UserPermissionOverrideSerializer, UserPermissionOverrideCreateSerializer,
    SegregationRuleSerializer, SegregationRuleCreateSerializer, ViolationSerializer,
    PermissionChangeRequestSerializer, PermissionChangeRequestCreateSerializer,
    ChangeRequestReviewSerializer,
    PermissionSessionSerializer, SessionActionSerializer, SessionActionCreateSerializer
)


def _get_user(user_id):
    user = User.objects.filter(pk=user_id).first()
    if user is None:
        raise NotFound(f"User '{user_id}' does not exist", details={'user_id': str(user_id)})
    return user


def _client_meta(request):
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    ip_address = forwarded.split(',')[0].strip() if forwarded else request.META.get('REMOTE_ADDR')
    return ip_address, request.META.get('HTTP_USER_AGENT', '')


# ===== PERMISSION CHECKS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Check a permission',
        description='''
Check whether a user holds a permission.

Without `user_id` the authenticated user is checked. Checking another user
requires `view-permissions`.
        ''',
        parameters=[
            OpenApiParameter('permission', OpenApiTypes.STR, required=True),
            OpenApiParameter('user_id', OpenApiTypes.UUID, required=False),
        ],
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
class PermissionCheckView(APIView):
    """
    GET /v1/permissions/check?permission=view-patients

    Check one permission for the caller or, with view-permissions, another user.
    """

    def get(self, request):
        serializer = PermissionCheckSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        permission = serializer.validated_data['permission']
        user_id = serializer.validated_data.get('user_id')

        if user_id and user_id != request.user.id:
            if not PermissionResolver.has_permission(request.user, 'view-permissions'):
                return Response(
                    {'error': 'view-permissions is required to check other users', 'code': 'PERMISSION_DENIED'},
                    status=status.HTTP_403_FORBIDDEN
                )
            user = _get_user(user_id)
        else:
            user = request.user

        granted = PermissionResolver.has_permission(user, permission)
        response = {
            'user_id': str(user.id),
            'permission': permission,
            'granted': granted,
        }
        if not granted and request.query_params.get('explain') == 'true':
            response['breakdown'] = PermissionResolver.explain(user, permission)
        return Response(response)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Get my effective permissions',
        description='Return the authenticated user and their effective permission set.',
        responses={200: OpenApiTypes.OBJECT}
    )
)
class MyPermissionsView(APIView):
    """
    GET /v1/users/me/permissions
    """

    def get(self, request):
        permissions = PermissionResolver.effective_permissions(request.user)
        return Response({
            'user': UserSerializer(request.user).data,
            'permissions': sorted(permissions),
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Overrides'],
        summary='Get user permissions',
        description='''
Effective permission set of a user together with their overrides and active
temporary permissions.

**Required permission:** `view-permissions`
        ''',
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('view-permissions')
class UserPermissionsView(APIView):
    """
    GET /v1/users/{user_id}/permissions
    """

    permission_classes = [HasPermissions]

    def get(self, request, user_id):
        user = _get_user(user_id)
        overrides = UserPermissionOverride.objects.filter(user=user).select_related('permission', 'granted_by')
        temporary = TemporaryPermissionManager.list_for_user(user)
        return Response({
            'user': UserSerializer(user).data,
            'permissions': sorted(PermissionResolver.effective_permissions(user)),
            'overrides': UserPermissionOverrideSerializer(overrides, many=True).data,
            'temporary_permissions': TemporaryPermissionSerializer(temporary, many=True).data,
        })


# ===== OVERRIDES =====

@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Overrides'],
        summary='Set a user override',
        description='''
Allow or deny one permission for a user. Denies win over every other source.

**Required permission:** `manage-user-permissions`
        ''',
        request=UserPermissionOverrideCreateSerializer,
        responses={200: UserPermissionOverrideSerializer, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    ),
    delete=extend_schema(
        tags=['RBAC - Overrides'],
        summary='Remove a user override',
        parameters=[OpenApiParameter('permission', OpenApiTypes.STR, required=True)],
        responses={204: None, 404: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('manage-user-permissions')
class UserPermissionsManageView(APIView):
    """
    POST /v1/users/{user_id}/permissions/manage
    DELETE /v1/users/{user_id}/permissions/manage?permission=view-billing
    """

    permission_classes = [HasPermissions, EnforceSegregationOfDuties]

    def post(self, request, user_id):
        serializer = UserPermissionOverrideCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        override = CatalogService.set_override(
            user_id,
            serializer.validated_data['permission'],
            allowed=serializer.validated_data['allowed'],
            reason=serializer.validated_data['reason'],
            actor=request.user,
        )
        return Response(UserPermissionOverrideSerializer(override).data)

    def delete(self, request, user_id):
        permission = request.query_params.get('permission')
        if not permission:
            return Response(
                {'error': 'permission query parameter is required', 'code': 'VALIDATION_ERROR'},
                status=status.HTTP_400_BAD_REQUEST
            )
        CatalogService.remove_override(user_id, permission, actor=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


# ===== PERMISSION CATALOG =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List permissions',
        description='''
List the permission catalog.

**Required permission:** `view-permissions`
        ''',
        parameters=[OpenApiParameter('category', OpenApiTypes.STR, required=False)],
        responses={200: PermissionSerializer(many=True)}
    )
)
@requires_permissions('view-permissions')
class PermissionListView(APIView):
    """
    GET /v1/permissions
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        permissions = Permission.objects.all().order_by('category', 'name')
        category = request.query_params.get('category')
        if category:
            permissions = permissions.filter(category=category)
        return paginated_response(request, permissions, PermissionSerializer, 'permissions')


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Create permission',
        description='**Required permission:** `manage-permissions`',
        request=PermissionCreateSerializer,
        responses={201: PermissionSerializer, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('manage-permissions')
class PermissionCreateView(APIView):
    """
    POST /v1/permissions/create
    """

    permission_classes = [HasPermissions, EnforceSegregationOfDuties]

    def post(self, request):
        serializer = PermissionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        permission = CatalogService.create_permission(actor=request.user, **serializer.validated_data)
        return Response(PermissionSerializer(permission).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    patch=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Edit permission',
        description='Edit a permission that no grant, mapping or override references.',
        request=PermissionUpdateSerializer,
        responses={200: PermissionSerializer, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    ),
    delete=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Delete permission',
        responses={204: None, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('manage-permissions')
class PermissionDetailView(APIView):
    """
    PATCH/DELETE /v1/permissions/{permission_id}
    """

    permission_classes = [HasPermissions, EnforceSegregationOfDuties]

    def _get_permission(self, permission_id):
        permission = Permission.objects.filter(pk=permission_id).first()
        if permission is None:
            raise NotFound(f"Permission '{permission_id}' does not exist")
        return permission

    def patch(self, request, permission_id):
        permission = self._get_permission(permission_id)
        serializer = PermissionUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        permission = CatalogService.update_permission(permission, actor=request.user, **serializer.validated_data)
        return Response(PermissionSerializer(permission).data)

    def delete(self, request, permission_id):
        CatalogService.delete_permission(self._get_permission(permission_id), actor=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List permission dependencies',
        responses={200: PermissionDependencySerializer(many=True)}
    )
)
@requires_permissions('view-permissions')
class PermissionDependencyListView(APIView):
    """
    GET /v1/permissions/dependencies
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        dependencies = PermissionDependency.objects.select_related('permission', 'depends_on')
        return paginated_response(request, dependencies, PermissionDependencySerializer, 'dependencies')


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Declare a permission dependency',
        description='**Required permission:** `manage-segregation-rules`',
        request=PermissionDependencyCreateSerializer,
        responses={201: PermissionDependencySerializer, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('manage-segregation-rules')
class PermissionDependencyCreateView(APIView):
    """
    POST /v1/permissions/dependencies/create
    """

    permission_classes = [HasPermissions, EnforceSegregationOfDuties]

    def post(self, request):
        serializer = PermissionDependencyCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dependency = CatalogService.add_dependency(
            serializer.validated_data['permission'],
            serializer.validated_data['depends_on'],
            actor=request.user,
        )
        return Response(PermissionDependencySerializer(dependency).data, status=status.HTTP_201_CREATED)


# ===== ROLES =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List roles',
        description='Roles ordered by priority, highest first.',
        responses={200: RoleSerializer(many=True)}
    )
)
@requires_permissions('view-permissions')
class RoleListView(APIView):
    """
    GET /v1/roles
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        return paginated_response(request, Role.objects.by_priority(), RoleSerializer, 'roles')


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Create role',
        description='**Required permission:** `manage-roles`',
        request=RoleCreateSerializer,
        responses={201: RoleDetailSerializer, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('manage-roles')
class RoleCreateView(APIView):
    """
    POST /v1/roles/create
    """

    permission_classes = [HasPermissions, EnforceSegregationOfDuties]

    def post(self, request):
        serializer = RoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        role = CatalogService.create_role(actor=request.user, **serializer.validated_data)
        return Response(RoleDetailSerializer(role).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='Get role details',
        responses={200: RoleDetailSerializer, 404: OpenApiTypes.OBJECT}
    ),
    patch=extend_schema(
        tags=['RBAC - Roles'],
        summary='Edit role',
        description='''
Edit role attributes. A `permissions` list replaces the role's permission set.
The Super Admin role cannot be edited.
        ''',
        request=RoleUpdateSerializer,
        responses={200: RoleDetailSerializer, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    ),
    delete=extend_schema(
        tags=['RBAC - Roles'],
        summary='Delete role',
        description='Roles still assigned to users and the Super Admin role cannot be deleted.',
        responses={204: None, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('manage-roles')
class RoleDetailView(APIView):
    """
    GET/PATCH/DELETE /v1/roles/{role_id}
    """

    permission_classes = [HasPermissions, EnforceSegregationOfDuties]

    def _get_role(self, role_id):
        role = Role.objects.filter(pk=role_id).first()
        if role is None:
            raise NotFound(f"Role '{role_id}' does not exist")
        return role

    def get(self, request, role_id):
        return Response(RoleDetailSerializer(self._get_role(role_id)).data)

    def patch(self, request, role_id):
        role = self._get_role(role_id)
        serializer = RoleUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        fields = dict(serializer.validated_data)
        permissions = fields.pop('permissions', None)
        role = CatalogService.update_role(role, actor=request.user, permissions=permissions, **fields)
        return Response(RoleDetailSerializer(role).data)

    def delete(self, request, role_id):
        CatalogService.delete_role(self._get_role(role_id), actor=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Assign role to user',
        description='''
Set a user's normalized role, or clear it with `{"role": null}`.
Super Admin users cannot be reassigned through this endpoint.
        ''',
        request=AssignRoleSerializer,
        responses={200: UserSerializer, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('manage-roles')
class UserRoleAssignView(APIView):
    """
    POST /v1/users/{user_id}/role
    """

    permission_classes = [HasPermissions, EnforceSegregationOfDuties]

    def post(self, request, user_id):
        serializer = AssignRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = CatalogService.assign_role(user_id, serializer.validated_data['role'], actor=request.user)
        return Response(UserSerializer(user).data)


# ===== TEMPORARY PERMISSIONS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Temporary Permissions'],
        summary='List temporary permissions',
        parameters=[
            OpenApiParameter('user_id', OpenApiTypes.UUID, required=True),
            OpenApiParameter('include_inactive', OpenApiTypes.BOOL, required=False),
        ],
        responses={200: TemporaryPermissionSerializer(many=True)}
    )
)
@requires_permissions('view-permissions')
class TemporaryPermissionListView(APIView):
    """
    GET /v1/temporary-permissions?user_id={uuid}
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        user_id = request.query_params.get('user_id')
        if not user_id:
            return Response(
                {'error': 'user_id query parameter is required', 'code': 'VALIDATION_ERROR'},
                status=status.HTTP_400_BAD_REQUEST
            )
        grants = TemporaryPermissionManager.list_for_user(
            _get_user(user_id),
            include_inactive=request.query_params.get('include_inactive') == 'true',
        )
        return paginated_response(request, grants, TemporaryPermissionSerializer, 'temporary_permissions')


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Temporary Permissions'],
        summary='Grant temporary permission',
        description='''
Grant one permission until `expires_at`. Unmet dependencies are rejected or
granted alongside, depending on the dependency policy. The response lists
segregation rules the grant newly violates.

**Required permission:** `grant-temporary-permissions`
        ''',
        request=TemporaryPermissionCreateSerializer,
        responses={
            201: OpenApiTypes.OBJECT,
            400: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        }
    )
)
@requires_permissions('grant-temporary-permissions')
class TemporaryPermissionGrantView(APIView):
    """
    POST /v1/temporary-permissions/grant
    """

    permission_classes = [HasPermissions, EnforceSegregationOfDuties]

    def post(self, request):
        serializer = TemporaryPermissionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        user = _get_user(data['user_id'])

        warnings = SegregationChecker.would_violate(user, [data['permission']])
        grant = TemporaryPermissionManager.grant(
            user,
            data['permission'],
            granted_by=request.user,
            expires_at=data['expires_at'],
            reason=data['reason'],
        )
        return Response({
            'temporary_permission': TemporaryPermissionSerializer(grant).data,
            'segregation_warnings': ViolationSerializer(warnings, many=True).data,
        }, status=status.HTTP_201_CREATED)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Temporary Permissions'],
        summary='Revoke temporary permission',
        description='Revoking an already inactive grant returns it unchanged.',
        request=None,
        responses={200: TemporaryPermissionSerializer, 404: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('grant-temporary-permissions')
class TemporaryPermissionRevokeView(APIView):
    """
    POST /v1/temporary-permissions/{grant_id}/revoke
    """

    permission_classes = [HasPermissions, EnforceSegregationOfDuties]

    def post(self, request, grant_id):
        record = TemporaryPermissionManager.revoke(grant_id, revoked_by=request.user)
        return Response(TemporaryPermissionSerializer(record).data)


# ===== SEGREGATION OF DUTIES =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Segregation of Duties'],
        summary='List segregation rules',
        responses={200: SegregationRuleSerializer(many=True)}
    )
)
@requires_permissions('view-permissions')
class SegregationRuleListView(APIView):
    """
    GET /v1/segregation-rules
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        rules = SegregationRule.objects.select_related('permission_a', 'permission_b')
        return paginated_response(request, rules, SegregationRuleSerializer, 'rules')


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Segregation of Duties'],
        summary='Create segregation rule',
        description='**Required permission:** `manage-segregation-rules`',
        request=SegregationRuleCreateSerializer,
        responses={201: SegregationRuleSerializer, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('manage-segregation-rules')
class SegregationRuleCreateView(APIView):
    """
    POST /v1/segregation-rules/create
    """

    permission_classes = [HasPermissions, EnforceSegregationOfDuties]

    def post(self, request):
        serializer = SegregationRuleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        rule = CatalogService.create_segregation_rule(actor=request.user, **serializer.validated_data)
        return Response(SegregationRuleSerializer(rule).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Segregation of Duties'],
        summary='Delete segregation rule',
        responses={204: None, 404: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('manage-segregation-rules')
class SegregationRuleDetailView(APIView):
    """
    DELETE /v1/segregation-rules/{rule_id}
    """

    permission_classes = [HasPermissions, EnforceSegregationOfDuties]

    def delete(self, request, rule_id):
        CatalogService.delete_segregation_rule(rule_id, actor=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Segregation of Duties'],
        summary='Get segregation violations for a user',
        description='Super Admins never have violations.',
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('view-permissions')
class UserViolationsView(APIView):
    """
    GET /v1/users/{user_id}/violations
    """

    permission_classes = [HasPermissions]

    def get(self, request, user_id):
        violations = SegregationChecker.check_violations(_get_user(user_id))
        return Response({
            'user_id': str(user_id),
            'count': len(violations),
            'violations': ViolationSerializer(violations, many=True).data,
        })


# ===== CHANGE REQUESTS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Change Requests'],
        summary='List change requests',
        parameters=[
            OpenApiParameter('status', OpenApiTypes.STR, required=False,
                             enum=['pending', 'approved', 'rejected', 'expired']),
        ],
        responses={200: PermissionChangeRequestSerializer(many=True)}
    )
)
@requires_permissions('view-permissions')
class ChangeRequestListView(APIView):
    """
    GET /v1/change-requests
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        requests = ChangeRequestService.list_requests(status=request.query_params.get('status'))
        return paginated_response(request, requests, PermissionChangeRequestSerializer, 'change_requests')


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Change Requests'],
        summary='File a change request',
        description='''
Request permissions to be added to or removed from a user. Names are matched
to the catalog ignoring case and stored in canonical form.

**Required permission:** `request-permission-changes`
        ''',
        request=PermissionChangeRequestCreateSerializer,
        responses={201: PermissionChangeRequestSerializer, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('request-permission-changes')
class ChangeRequestCreateView(APIView):
    """
    POST /v1/change-requests/create
    """

    permission_classes = [HasPermissions]

    def post(self, request):
        serializer = PermissionChangeRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        change_request = ChangeRequestService.create(
            data['user_id'],
            requested_by=request.user,
            permissions_to_add=data['permissions_to_add'],
            permissions_to_remove=data['permissions_to_remove'],
            reason=data['reason'],
            expires_at=data.get('expires_at'),
        )
        return Response(PermissionChangeRequestSerializer(change_request).data, status=status.HTTP_201_CREATED)


class _ChangeRequestReviewView(APIView):
    permission_classes = [HasPermissions, EnforceSegregationOfDuties]
    review = None

    def post(self, request, request_id):
        serializer = ChangeRequestReviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        change_request = self.review(request_id, request.user, serializer.validated_data['notes'])
        return Response(PermissionChangeRequestSerializer(change_request).data)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Change Requests'],
        summary='Approve a change request',
        description='''
Approve and apply a pending request. The requester and the subject of the
request cannot approve it.

**Required permission:** `approve-permission-changes`
        ''',
        request=ChangeRequestReviewSerializer,
        responses={
            200: PermissionChangeRequestSerializer,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        }
    )
)
@requires_permissions('approve-permission-changes')
class ChangeRequestApproveView(_ChangeRequestReviewView):
    """
    POST /v1/change-requests/{request_id}/approve
    """

    review = staticmethod(ChangeRequestService.approve)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Change Requests'],
        summary='Reject a change request',
        request=ChangeRequestReviewSerializer,
        responses={200: PermissionChangeRequestSerializer, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('approve-permission-changes')
class ChangeRequestRejectView(_ChangeRequestReviewView):
    """
    POST /v1/change-requests/{request_id}/reject
    """

    review = staticmethod(ChangeRequestService.reject)


# ===== SESSIONS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Sessions'],
        summary='List permission sessions',
        parameters=[OpenApiParameter('user_id', OpenApiTypes.UUID, required=False)],
        responses={200: PermissionSessionSerializer(many=True)}
    )
)
@requires_permissions('view-audit-log')
class SessionListView(APIView):
    """
    GET /v1/sessions
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        sessions = PermissionSession.objects.all().order_by('-last_activity')
        user_id = request.query_params.get('user_id')
        if user_id:
            sessions = sessions.filter(user_id=user_id)
        return paginated_response(request, sessions, PermissionSessionSerializer, 'sessions')


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Sessions'],
        summary='List actions in a session',
        responses={200: SessionActionSerializer(many=True), 404: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('view-audit-log')
class SessionActionListView(APIView):
    """
    GET /v1/sessions/{session_id}/actions
    """

    permission_classes = [HasPermissions]

    def get(self, request, session_id):
        session = PermissionSession.objects.filter(pk=session_id).first()
        if session is None:
            raise NotFound(f"Session '{session_id}' does not exist")
        actions = SessionAuditService.list_actions(
            session=session,
            action_type=request.query_params.get('action_type'),
        )
        return paginated_response(request, actions, SessionActionSerializer, 'actions')


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Sessions'],
        summary='Record an action',
        description='''
Append an action to the caller's current session, opening one when needed.
Recording is fire-and-forget: failures are logged and the request still
succeeds.
        ''',
        request=SessionActionCreateSerializer,
        responses={202: OpenApiTypes.OBJECT}
    )
)
class SessionActionRecordView(APIView):
    """
    POST /v1/sessions/actions
    """

    def post(self, request):
        serializer = SessionActionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ip_address, user_agent = _client_meta(request)
        session = SessionAuditService.get_or_open_session(request.user, ip_address, user_agent)
        action = SessionAuditService.record_session_action(
            session,
            serializer.validated_data['action_type'],
            serializer.validated_data['details'],
        )
        return Response({
            'session_id': str(session.id),
            'recorded': action is not None,
        }, status=status.HTTP_202_ACCEPTED)
