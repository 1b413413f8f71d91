"""
RBAC API URLs.

Provides endpoints for:
- Permission checks and effective permissions
- Permission catalog, dependencies and roles
- User overrides, role assignment and temporary permissions
- Segregation rules and violations
- Change requests
- Permission sessions and actions
"""
from django.urls import path
from apps.rbac.views import (
    PermissionCheckView,
    MyPermissionsView,
    UserPermissionsView,
    UserPermissionsManageView,
    UserRoleAssignView,
    UserViolationsView,
    PermissionListView,
    PermissionCreateView,
    PermissionDetailView,
    PermissionDependencyListView,
    PermissionDependencyCreateView,
    RoleListView,
    RoleCreateView,
    RoleDetailView,
    TemporaryPermissionListView,
    TemporaryPermissionGrantView,
    TemporaryPermissionRevokeView,
    SegregationRuleListView,
    SegregationRuleCreateView,
    SegregationRuleDetailView,
    ChangeRequestListView,
    ChangeRequestCreateView,
    ChangeRequestApproveView,
    ChangeRequestRejectView,
    SessionListView,
    SessionActionListView,
    SessionActionRecordView,
)

app_name = 'rbac'

urlpatterns = [
    # Permission checks
    path('permissions/check', PermissionCheckView.as_view(), name='permission-check'),
    path('users/me/permissions', MyPermissionsView.as_view(), name='my-permissions'),

    # User permissions, overrides and roles
    path('users/<uuid:user_id>/permissions', UserPermissionsView.as_view(), name='user-permissions'),
    path('users/<uuid:user_id>/permissions/manage', UserPermissionsManageView.as_view(), name='user-permissions-manage'),
    path('users/<uuid:user_id>/role', UserRoleAssignView.as_view(), name='user-role-assign'),
    path('users/<uuid:user_id>/violations', UserViolationsView.as_view(), name='user-violations'),

    # Permission catalog
    path('permissions', PermissionListView.as_view(), name='permission-list'),
    path('permissions/create', PermissionCreateView.as_view(), name='permission-create'),
    path('permissions/dependencies', PermissionDependencyListView.as_view(), name='permission-dependency-list'),
    path('permissions/dependencies/create', PermissionDependencyCreateView.as_view(), name='permission-dependency-create'),
    path('permissions/<uuid:permission_id>', PermissionDetailView.as_view(), name='permission-detail'),

    # Roles
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/create', RoleCreateView.as_view(), name='role-create'),
    path('roles/<uuid:role_id>', RoleDetailView.as_view(), name='role-detail'),

    # Temporary permissions
    path('temporary-permissions', TemporaryPermissionListView.as_view(), name='temporary-permission-list'),
    path('temporary-permissions/grant', TemporaryPermissionGrantView.as_view(), name='temporary-permission-grant'),
    path('temporary-permissions/<uuid:grant_id>/revoke', TemporaryPermissionRevokeView.as_view(), name='temporary-permission-revoke'),

    # Segregation of duties
    path('segregation-rules', SegregationRuleListView.as_view(), name='segregation-rule-list'),
    path('segregation-rules/create', SegregationRuleCreateView.as_view(), name='segregation-rule-create'),
    path('segregation-rules/<uuid:rule_id>', SegregationRuleDetailView.as_view(), name='segregation-rule-detail'),

    # Change requests
    path('change-requests', ChangeRequestListView.as_view(), name='change-request-list'),
    path('change-requests/create', ChangeRequestCreateView.as_view(), name='change-request-create'),
    path('change-requests/<uuid:request_id>/approve', ChangeRequestApproveView.as_view(), name='change-request-approve'),
    path('change-requests/<uuid:request_id>/reject', ChangeRequestRejectView.as_view(), name='change-request-reject'),

    # Sessions
    path('sessions', SessionListView.as_view(), name='session-list'),
    path('sessions/actions', SessionActionRecordView.as_view(), name='session-action-record'),
    path('sessions/<uuid:session_id>/actions', SessionActionListView.as_view(), name='session-action-list'),
]
