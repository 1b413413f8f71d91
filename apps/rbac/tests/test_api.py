"""
API tests for RBAC endpoints.

Covers authentication through the upstream identity header, permission
enforcement, segregation-of-duties blocking and the main mutation flows.
"""
from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from apps.rbac.models import (
    Permission, Role, PermissionChangeRequest, SessionAction, TemporaryPermission, UserPermissionOverride
)
from apps.rbac.services import ChangeRequestService, PermissionResolver


def client_for(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.mark.django_db
class TestAuthentication:
    """Identity comes from the gateway header."""

    def test_header_identifies_user(self, api_client, doctor):
        response = api_client.get('/v1/users/me/permissions', HTTP_X_AUTHENTICATED_USER_ID=str(doctor.id))

        assert response.status_code == 200
        assert response.data['user']['email'] == doctor.email
        assert 'create-prescriptions' in response.data['permissions']

    def test_missing_header(self, api_client, catalog):
        response = api_client.get('/v1/users/me/permissions')
        assert response.status_code == 401

    def test_malformed_header(self, api_client, catalog):
        response = api_client.get('/v1/users/me/permissions', HTTP_X_AUTHENTICATED_USER_ID='not-a-uuid')
        assert response.status_code == 401

    def test_inactive_user_rejected(self, api_client, make_user, catalog):
        user = make_user('gone@hospital.test', role='Nurse', is_active=False)
        response = api_client.get('/v1/users/me/permissions', HTTP_X_AUTHENTICATED_USER_ID=str(user.id))
        assert response.status_code == 401


@pytest.mark.django_db
class TestPermissionCheck:
    """GET /v1/permissions/check"""

    def test_check_own_permission(self, doctor):
        response = client_for(doctor).get('/v1/permissions/check?permission=create-prescriptions')

        assert response.status_code == 200
        assert response.data['granted'] is True

    def test_denied_check_with_breakdown(self, nurse):
        response = client_for(nurse).get('/v1/permissions/check?permission=create-prescriptions&explain=true')

        assert response.data['granted'] is False
        assert response.data['breakdown']['granted'] is False

    def test_checking_others_requires_view_permissions(self, nurse, doctor):
        response = client_for(nurse).get(
            f'/v1/permissions/check?permission=create-prescriptions&user_id={doctor.id}'
        )
        assert response.status_code == 403

    def test_admin_checks_other_user(self, admin_client, doctor):
        response = admin_client.get(f'/v1/permissions/check?permission=create-prescriptions&user_id={doctor.id}')

        assert response.status_code == 200
        assert response.data['user_id'] == str(doctor.id)
        assert response.data['granted'] is True

    def test_permission_parameter_required(self, doctor):
        response = client_for(doctor).get('/v1/permissions/check')
        assert response.status_code == 400


@pytest.mark.django_db
class TestEnforcement:
    """HasPermissions and EnforceSegregationOfDuties on endpoints."""

    def test_missing_permission_is_forbidden(self, nurse):
        response = client_for(nurse).get('/v1/permissions')
        assert response.status_code == 403

    def test_critical_violation_blocks_mutations(self, hospital_admin):
        for name in ('create-billing', 'approve-billing'):
            UserPermissionOverride.objects.set_override(
                hospital_admin, Permission.objects.by_name(name), allowed=True
            )

        response = client_for(hospital_admin).post(
            '/v1/roles/create', {'name': 'Porter'}, format='json'
        )

        assert response.status_code == 403
        assert Role.objects.by_name('Porter') is None

    def test_high_violation_is_only_logged(self, hospital_admin):
        UserPermissionOverride.objects.set_override(
            hospital_admin, Permission.objects.by_name('request-permission-changes'), allowed=True
        )

        response = client_for(hospital_admin).post('/v1/roles/create', {'name': 'Porter'}, format='json')

        assert response.status_code == 201

    def test_super_admin_passes_everything(self, super_admin):
        response = client_for(super_admin).post(
            '/v1/permissions/create', {'name': 'view-radiology', 'category': 'clinical'}, format='json'
        )
        assert response.status_code == 201


@pytest.mark.django_db
class TestCatalogEndpoints:
    """Permissions, roles and segregation rules."""

    def test_list_permissions_by_category(self, admin_client):
        response = admin_client.get('/v1/permissions?category=billing')

        assert response.status_code == 200
        assert [p['name'] for p in response.data['permissions']] == [
            'approve-billing', 'create-billing', 'view-billing'
        ]

    def test_list_permissions_paginated(self, admin_client):
        response = admin_client.get('/v1/permissions?page=1&page_size=5')

        assert response.status_code == 200
        assert len(response.data['results']) == 5
        assert response.data['count'] == Permission.objects.count()

    def test_delete_referenced_permission_conflicts(self, super_admin):
        permission = Permission.objects.by_name('view-patients')

        response = client_for(super_admin).delete(f'/v1/permissions/{permission.id}')

        assert response.status_code == 409
        assert response.data['code'] == 'CONFLICT'

    def test_create_and_update_role(self, admin_client):
        created = admin_client.post(
            '/v1/roles/create',
            {'name': 'Midwife', 'priority': 60, 'permissions': ['view-patients']},
            format='json',
        )
        assert created.status_code == 201

        updated = admin_client.patch(
            f"/v1/roles/{created.data['id']}",
            {'permissions': ['view-patients', 'view-medical-records']},
            format='json',
        )

        assert updated.status_code == 200
        assert set(Role.objects.by_name('Midwife').get_permissions().values_list('name', flat=True)) == {
            'view-patients', 'view-medical-records'
        }

    def test_super_admin_role_cannot_be_deleted(self, admin_client):
        role = Role.objects.by_name('Super Admin')
        response = admin_client.delete(f'/v1/roles/{role.id}')
        assert response.status_code == 409

    def test_assign_role(self, admin_client, nurse):
        response = admin_client.post(f'/v1/users/{nurse.id}/role', {'role': 'Pharmacist'}, format='json')

        assert response.status_code == 200
        assert response.data['role'] == 'Pharmacist'

    def test_segregation_rule_duplicate(self, admin_client):
        response = admin_client.post(
            '/v1/segregation-rules/create',
            {'permission_a': 'dispense-medication', 'permission_b': 'create-prescriptions', 'severity': 'critical'},
            format='json',
        )
        assert response.status_code == 409

    def test_user_violations(self, admin_client, doctor):
        UserPermissionOverride.objects.set_override(
            doctor, Permission.objects.by_name('dispense-medication'), allowed=True
        )

        response = admin_client.get(f'/v1/users/{doctor.id}/violations')

        assert response.data['count'] == 1
        assert response.data['violations'][0]['severity'] == 'critical'


@pytest.mark.django_db
class TestOverridesAndTemporaryPermissions:
    """Overrides and temporary grants through the API."""

    def test_deny_override(self, admin_client, doctor):
        response = admin_client.post(
            f'/v1/users/{doctor.id}/permissions/manage',
            {'permission': 'create-prescriptions', 'allowed': False, 'reason': 'Suspended'},
            format='json',
        )

        assert response.status_code == 200
        assert not PermissionResolver.has_permission(doctor, 'create-prescriptions')

    def test_remove_override_requires_permission_param(self, admin_client, doctor):
        response = admin_client.delete(f'/v1/users/{doctor.id}/permissions/manage')
        assert response.status_code == 400

    def test_grant_reports_segregation_warnings(self, admin_client, make_user):
        clerk = make_user('clerk@hospital.test', role='Billing Clerk')

        response = admin_client.post(
            '/v1/temporary-permissions/grant',
            {
                'user_id': str(clerk.id),
                'permission': 'approve-billing',
                'expires_at': (timezone.now() + timedelta(hours=2)).isoformat(),
                'reason': 'Month end',
            },
            format='json',
        )

        assert response.status_code == 201
        assert response.data['temporary_permission']['permission'] == 'approve-billing'
        assert [w['severity'] for w in response.data['segregation_warnings']] == ['critical']

    def test_grant_with_past_expiry(self, admin_client, nurse):
        response = admin_client.post(
            '/v1/temporary-permissions/grant',
            {
                'user_id': str(nurse.id),
                'permission': 'view-billing',
                'expires_at': (timezone.now() - timedelta(hours=1)).isoformat(),
            },
            format='json',
        )
        assert response.status_code == 400

    def test_revoke(self, admin_client, nurse, hospital_admin):
        grant = TemporaryPermission.objects.create(
            user=nurse,
            permission=Permission.objects.by_name('view-billing'),
            expires_at=timezone.now() + timedelta(hours=1),
            granted_by=hospital_admin,
        )

        response = admin_client.post(f'/v1/temporary-permissions/{grant.id}/revoke')

        assert response.status_code == 200
        assert response.data['is_active'] is False

    def test_list_requires_user_id(self, admin_client):
        response = admin_client.get('/v1/temporary-permissions')
        assert response.status_code == 400


@pytest.mark.django_db
class TestChangeRequestEndpoints:
    """Change request workflow through the API."""

    def test_create_and_approve(self, doctor, nurse, admin_client):
        created = client_for(doctor).post(
            '/v1/change-requests/create',
            {'user_id': str(nurse.id), 'permissions_to_add': ['Edit-Medical-Records'], 'reason': 'Ward cover'},
            format='json',
        )
        assert created.status_code == 201
        assert created.data['permissions_to_add'] == ['edit-medical-records']

        approved = admin_client.post(f"/v1/change-requests/{created.data['id']}/approve", {}, format='json')

        assert approved.status_code == 200
        assert approved.data['status'] == 'approved'
        assert PermissionResolver.has_permission(nurse, 'edit-medical-records')

    def test_reviewer_who_filed_request_is_forbidden(self, hospital_admin, nurse):
        UserPermissionOverride.objects.set_override(
            hospital_admin, Permission.objects.by_name('request-permission-changes'), allowed=True
        )
        change_request = ChangeRequestService.create(
            nurse, requested_by=hospital_admin, permissions_to_add=['view-billing']
        )

        response = client_for(hospital_admin).post(f'/v1/change-requests/{change_request.id}/approve')

        assert response.status_code == 403
        assert response.data['code'] == 'PERMISSION_DENIED'

    def test_reject_twice_conflicts(self, admin_client, doctor, nurse):
        change_request = ChangeRequestService.create(nurse, requested_by=doctor, permissions_to_add=['view-billing'])

        assert admin_client.post(f'/v1/change-requests/{change_request.id}/reject').status_code == 200
        assert admin_client.post(f'/v1/change-requests/{change_request.id}/reject').status_code == 409

    def test_list_by_status(self, admin_client, doctor, nurse):
        ChangeRequestService.create(nurse, requested_by=doctor, permissions_to_add=['view-billing'])

        response = admin_client.get('/v1/change-requests?status=pending')

        assert response.data['count'] == PermissionChangeRequest.objects.pending().count() == 1


@pytest.mark.django_db
class TestSessionEndpoints:
    """Session audit endpoints."""

    def test_record_action(self, doctor):
        response = client_for(doctor).post(
            '/v1/sessions/actions',
            {'action_type': 'view_patient_chart', 'details': {'patient': 'P-100'}},
            format='json',
        )

        assert response.status_code == 202
        assert response.data['recorded'] is True
        assert SessionAction.objects.get().details == {'patient': 'P-100'}

    def test_list_session_actions(self, admin_client, doctor):
        client_for(doctor).post('/v1/sessions/actions', {'action_type': 'view_patient_chart'}, format='json')
        session_id = admin_client.get(f'/v1/sessions?user_id={doctor.id}').data['sessions'][0]['id']

        response = admin_client.get(f'/v1/sessions/{session_id}/actions')

        assert response.status_code == 200
        assert [a['action_type'] for a in response.data['actions']] == ['view_patient_chart']

    def test_audit_log_requires_permission(self, nurse):
        assert client_for(nurse).get('/v1/sessions').status_code == 403
