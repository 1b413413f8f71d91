"""
Tests for the permission change request workflow.
"""
import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.core.exceptions import Conflict, NotFound, PermissionDeniedError, ValidationError
from apps.rbac.models import PermissionChangeRequest, SessionAction
from apps.rbac.services import ChangeRequestService, PermissionResolver


@pytest.fixture
def pending_request(nurse, doctor):
    return ChangeRequestService.create(
        nurse,
        requested_by=doctor,
        permissions_to_add=['edit-medical-records'],
        permissions_to_remove=['view-lab-results'],
        reason='Charge nurse for ward 3',
    )


@pytest.mark.django_db
class TestCreate:
    """Filing change requests."""

    def test_names_are_canonicalized(self, nurse, doctor):
        change_request = ChangeRequestService.create(
            nurse, requested_by=doctor,
            permissions_to_add=['Edit-Medical-Records', 'edit-medical-records', ' VIEW-BILLING '],
        )

        assert change_request.permissions_to_add == ['edit-medical-records', 'view-billing']
        assert change_request.status == PermissionChangeRequest.STATUS_PENDING

    def test_default_expiry_is_one_week(self, pending_request):
        remaining = pending_request.expires_at - timezone.now()
        assert timedelta(days=6, hours=23) < remaining <= timedelta(days=7)

    def test_unknown_names_rejected(self, nurse, doctor):
        with pytest.raises(ValidationError) as exc_info:
            ChangeRequestService.create(nurse, requested_by=doctor, permissions_to_add=['launch-rockets'])

        assert exc_info.value.details['unknown_permissions'] == ['launch-rockets']

    def test_empty_request_rejected(self, nurse, doctor):
        with pytest.raises(ValidationError):
            ChangeRequestService.create(nurse, requested_by=doctor)

    def test_add_and_remove_same_permission(self, nurse, doctor):
        with pytest.raises(ValidationError):
            ChangeRequestService.create(
                nurse, requested_by=doctor,
                permissions_to_add=['view-billing'], permissions_to_remove=['View-Billing'],
            )

    def test_expiry_in_past_rejected(self, nurse, doctor):
        with pytest.raises(ValidationError):
            ChangeRequestService.create(
                nurse, requested_by=doctor, permissions_to_add=['view-billing'],
                expires_at=timezone.now() - timedelta(seconds=1),
            )

    def test_creation_is_audited(self, pending_request, doctor):
        action = SessionAction.objects.get(action_type='create_change_request')
        assert action.session.user == doctor
        assert action.details['change_request_id'] == str(pending_request.id)


@pytest.mark.django_db
class TestReview:
    """Approving, rejecting and expiring requests."""

    def test_approve_applies_overrides(self, pending_request, nurse, hospital_admin):
        approved = ChangeRequestService.approve(pending_request.id, reviewer=hospital_admin, notes='OK')

        assert approved.status == PermissionChangeRequest.STATUS_APPROVED
        assert approved.reviewed_by == hospital_admin
        assert approved.reviewed_at is not None
        permissions = PermissionResolver.effective_permissions(nurse)
        assert 'edit-medical-records' in permissions
        assert 'view-lab-results' not in permissions

    def test_requester_cannot_approve(self, pending_request, doctor, nurse):
        with pytest.raises(PermissionDeniedError):
            ChangeRequestService.approve(pending_request.id, reviewer=doctor)

        pending_request.refresh_from_db()
        assert pending_request.status == PermissionChangeRequest.STATUS_PENDING
        assert 'edit-medical-records' not in PermissionResolver.effective_permissions(nurse)

    def test_subject_cannot_approve(self, pending_request, nurse):
        with pytest.raises(PermissionDeniedError):
            ChangeRequestService.approve(pending_request.id, reviewer=nurse)

    def test_reject_changes_nothing(self, pending_request, nurse, hospital_admin):
        rejected = ChangeRequestService.reject(pending_request.id, reviewer=hospital_admin, notes='Not needed')

        assert rejected.status == PermissionChangeRequest.STATUS_REJECTED
        assert rejected.review_notes == 'Not needed'
        assert 'edit-medical-records' not in PermissionResolver.effective_permissions(nurse)

    def test_terminal_requests_cannot_be_reviewed_again(self, pending_request, hospital_admin):
        ChangeRequestService.reject(pending_request.id, reviewer=hospital_admin)

        with pytest.raises(Conflict):
            ChangeRequestService.approve(pending_request.id, reviewer=hospital_admin)
        with pytest.raises(Conflict):
            ChangeRequestService.reject(pending_request.id, reviewer=hospital_admin)

    def test_overdue_request_expires_on_review(self, pending_request, hospital_admin):
        PermissionChangeRequest.objects.filter(pk=pending_request.pk).update(
            expires_at=timezone.now() - timedelta(minutes=1)
        )

        with pytest.raises(Conflict) as exc_info:
            ChangeRequestService.approve(pending_request.id, reviewer=hospital_admin)

        assert exc_info.value.details['status'] == PermissionChangeRequest.STATUS_EXPIRED
        pending_request.refresh_from_db()
        assert pending_request.status == PermissionChangeRequest.STATUS_EXPIRED

    def test_unknown_request(self, hospital_admin):
        with pytest.raises(NotFound):
            ChangeRequestService.approve(uuid.uuid4(), reviewer=hospital_admin)

    def test_expire_overdue(self, pending_request, nurse, doctor):
        fresh = ChangeRequestService.create(
            nurse, requested_by=doctor, permissions_to_add=['view-billing'],
            expires_at=timezone.now() + timedelta(days=30),
        )

        expired = ChangeRequestService.expire_overdue(now=timezone.now() + timedelta(days=8))

        assert expired == 1
        pending_request.refresh_from_db()
        fresh.refresh_from_db()
        assert pending_request.status == PermissionChangeRequest.STATUS_EXPIRED
        assert fresh.status == PermissionChangeRequest.STATUS_PENDING

    def test_list_requests_by_status(self, pending_request, hospital_admin, nurse, doctor):
        other = ChangeRequestService.create(nurse, requested_by=doctor, permissions_to_add=['view-billing'])
        ChangeRequestService.reject(other.id, reviewer=hospital_admin)

        pending = ChangeRequestService.list_requests(status='pending')

        assert list(pending) == [pending_request]
