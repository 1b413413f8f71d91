"""
Unit tests for temporary permission grants.
"""
import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.core.exceptions import NotFound, ValidationError, Conflict
from apps.rbac.models import TemporaryPermission, SessionAction
from apps.rbac.services import TemporaryPermissionManager, PermissionResolver


@pytest.mark.django_db
class TestGrant:
    """Granting temporary permissions."""

    def test_grant_makes_permission_effective(self, nurse, hospital_admin):
        grant = TemporaryPermissionManager.grant(
            nurse, 'edit-medical-records',
            granted_by=hospital_admin,
            expires_at=timezone.now() + timedelta(hours=4),
            reason='Covering ward 3',
        )

        assert grant.is_active
        assert grant.granted_by == hospital_admin
        assert grant.permission_name == 'edit-medical-records'
        assert PermissionResolver.has_permission(nurse, 'edit-medical-records')

    def test_grant_records_session_action(self, nurse, hospital_admin):
        TemporaryPermissionManager.grant(
            nurse, 'edit-medical-records',
            granted_by=hospital_admin,
            expires_at=timezone.now() + timedelta(hours=4),
        )

        action = SessionAction.objects.get(action_type='grant_temporary_permission')
        assert action.session.user == hospital_admin
        assert action.details['permission'] == 'edit-medical-records'
        assert action.details['user_id'] == str(nurse.id)

    def test_expiry_must_be_in_future(self, nurse, hospital_admin):
        with pytest.raises(ValidationError):
            TemporaryPermissionManager.grant(
                nurse, 'edit-medical-records',
                granted_by=hospital_admin,
                expires_at=timezone.now() - timedelta(minutes=1),
            )

    def test_unknown_permission(self, nurse, hospital_admin):
        with pytest.raises(NotFound):
            TemporaryPermissionManager.grant(
                nurse, 'fly-helicopter',
                granted_by=hospital_admin,
                expires_at=timezone.now() + timedelta(hours=1),
            )

    def test_duplicate_effective_grant_conflicts(self, nurse, hospital_admin):
        expires_at = timezone.now() + timedelta(hours=1)
        TemporaryPermissionManager.grant(nurse, 'edit-medical-records', hospital_admin, expires_at)

        with pytest.raises(Conflict):
            TemporaryPermissionManager.grant(nurse, 'edit-medical-records', hospital_admin, expires_at)

    def test_unmet_dependency_rejected(self, doctor, hospital_admin):
        """dispense-medication depends on view-pharmacy-inventory, which doctors lack."""
        with pytest.raises(ValidationError) as exc_info:
            TemporaryPermissionManager.grant(
                doctor, 'dispense-medication',
                granted_by=hospital_admin,
                expires_at=timezone.now() + timedelta(hours=1),
            )

        assert exc_info.value.details['unmet_dependencies'] == ['view-pharmacy-inventory']
        assert not TemporaryPermission.objects.filter(user=doctor).exists()

    def test_include_policy_grants_dependencies(self, doctor, hospital_admin, settings):
        settings.RBAC = {**settings.RBAC, 'DEPENDENCY_POLICY': 'include'}
        expires_at = timezone.now() + timedelta(hours=1)

        TemporaryPermissionManager.grant(doctor, 'dispense-medication', hospital_admin, expires_at)

        grants = TemporaryPermission.objects.filter(user=doctor)
        assert {grant.permission_name for grant in grants} == {'dispense-medication', 'view-pharmacy-inventory'}
        assert all(grant.expires_at == expires_at for grant in grants)

    def test_met_dependency_is_not_regranted(self, nurse, hospital_admin):
        """edit-medical-records needs view-medical-records, which nurses hold."""
        TemporaryPermissionManager.grant(
            nurse, 'edit-medical-records', hospital_admin, timezone.now() + timedelta(hours=1)
        )
        assert TemporaryPermission.objects.filter(user=nurse).count() == 1


@pytest.mark.django_db
class TestRevoke:
    """Revoking temporary permissions."""

    def test_revoke_removes_permission(self, nurse, hospital_admin):
        grant = TemporaryPermissionManager.grant(
            nurse, 'edit-medical-records', hospital_admin, timezone.now() + timedelta(hours=1)
        )
        assert PermissionResolver.has_permission(nurse, 'edit-medical-records')

        revoked = TemporaryPermissionManager.revoke(grant.id, revoked_by=hospital_admin)

        assert revoked.is_active is False
        assert revoked.revoked_by == hospital_admin
        assert revoked.revoked_at is not None
        assert not PermissionResolver.has_permission(nurse, 'edit-medical-records')

    def test_revoke_is_idempotent(self, nurse, hospital_admin):
        grant = TemporaryPermissionManager.grant(
            nurse, 'edit-medical-records', hospital_admin, timezone.now() + timedelta(hours=1)
        )
        first = TemporaryPermissionManager.revoke(grant.id, revoked_by=hospital_admin)
        second = TemporaryPermissionManager.revoke(grant.id, revoked_by=hospital_admin)

        assert second.revoked_at == first.revoked_at
        assert SessionAction.objects.filter(action_type='revoke_temporary_permission').count() == 1

    def test_revoke_unknown_grant(self, hospital_admin):
        with pytest.raises(NotFound):
            TemporaryPermissionManager.revoke(uuid.uuid4(), revoked_by=hospital_admin)


@pytest.mark.django_db
class TestListingAndSweep:
    """Listing, checks and the expiry sweep."""

    def test_list_for_user_hides_inactive_by_default(self, nurse, hospital_admin):
        now = timezone.now()
        live = TemporaryPermissionManager.grant(nurse, 'edit-medical-records', hospital_admin, now + timedelta(hours=1))
        revoked = TemporaryPermissionManager.grant(nurse, 'view-billing', hospital_admin, now + timedelta(hours=1))
        TemporaryPermissionManager.revoke(revoked.id, revoked_by=hospital_admin)

        assert list(TemporaryPermissionManager.list_for_user(nurse)) == [live]
        assert set(TemporaryPermissionManager.list_for_user(nurse, include_inactive=True)) == {live, revoked}

    def test_check(self, nurse, hospital_admin):
        TemporaryPermissionManager.grant(
            nurse, 'edit-medical-records', hospital_admin, timezone.now() + timedelta(hours=1)
        )
        assert TemporaryPermissionManager.check(nurse, 'edit-medical-records') is True
        assert TemporaryPermissionManager.check(nurse, 'view-billing') is False

    def test_sweep_deactivates_only_expired(self, nurse, hospital_admin):
        now = timezone.now()
        live = TemporaryPermissionManager.grant(nurse, 'edit-medical-records', hospital_admin, now + timedelta(hours=1))
        stale = TemporaryPermissionManager.grant(nurse, 'view-billing', hospital_admin, now + timedelta(minutes=5))

        swept = TemporaryPermissionManager.sweep_expired(now=now + timedelta(minutes=10))

        assert swept == 1
        stale.refresh_from_db()
        live.refresh_from_db()
        assert stale.is_active is False
        assert live.is_active is True
