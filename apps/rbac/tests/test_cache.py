"""
Tests for the permission cache and its invalidation contract.
"""
from datetime import timedelta
from unittest import mock

import pytest
from django.utils import timezone

from apps.rbac.models import Permission, RolePermission, Role, TemporaryPermission
from apps.rbac.services import PermissionCache, PermissionResolver, CatalogService


@pytest.mark.django_db
class TestPermissionCache:
    """Versioned cache entries and hit/miss counters."""

    def test_set_then_get(self, doctor):
        PermissionCache.set(doctor.id, {'view-patients', 'edit-patients'})

        cached = PermissionCache.get(doctor.id)

        assert cached.permissions == frozenset({'view-patients', 'edit-patients'})
        assert cached.resolved_at <= timezone.now()

    def test_invalidate_drops_entry(self, doctor):
        PermissionCache.set(doctor.id, {'view-patients'})
        PermissionCache.invalidate(doctor.id)

        assert PermissionCache.get(doctor.id) is None

    def test_invalidate_is_per_user(self, doctor, nurse):
        PermissionCache.set(doctor.id, {'view-patients'})
        PermissionCache.set(nurse.id, {'view-patients'})

        PermissionCache.invalidate(doctor.id)

        assert PermissionCache.get(doctor.id) is None
        assert PermissionCache.get(nurse.id) is not None

    def test_invalidate_all(self, doctor, nurse):
        PermissionCache.set(doctor.id, {'view-patients'})
        PermissionCache.set(nurse.id, {'view-patients'})

        PermissionCache.invalidate_all()

        assert PermissionCache.get(doctor.id) is None
        assert PermissionCache.get(nurse.id) is None

    def test_write_with_stale_token_is_never_read(self, doctor):
        """A resolution that started before an invalidation cannot repopulate the cache."""
        token = PermissionCache.version_token(doctor.id)
        PermissionCache.invalidate(doctor.id)

        PermissionCache.set(doctor.id, {'stale-permission'}, token=token)

        assert PermissionCache.get(doctor.id) is None

    def test_stats_count_hits_and_misses(self, doctor):
        PermissionCache.get(doctor.id)
        PermissionCache.set(doctor.id, {'view-patients'})
        PermissionCache.get(doctor.id)
        PermissionCache.get(doctor.id)

        stats = PermissionCache.stats()

        assert stats['hits'] == 2
        assert stats['misses'] == 1
        assert stats['total_requests'] == 3
        assert stats['hit_rate'] == pytest.approx(2 / 3)

    def test_stats_without_requests(self, db):
        assert PermissionCache.stats()['hit_rate'] == 1.0

    def test_reset_stats(self, doctor):
        PermissionCache.get(doctor.id)
        PermissionCache.reset_stats()
        assert PermissionCache.stats()['total_requests'] == 0


@pytest.mark.django_db
class TestInvalidationOnMutation:
    """Every mutation that changes a user's set drops their cached set."""

    def test_role_permission_change_reaches_role_users(self, doctor, hospital_admin):
        assert 'view-billing' not in PermissionResolver.effective_permissions(doctor)

        doctor_role = Role.objects.by_name('Doctor')
        current = [p.name for p in doctor_role.get_permissions()]
        CatalogService.update_role(doctor_role, actor=hospital_admin, permissions=current + ['view-billing'])

        assert 'view-billing' in PermissionResolver.effective_permissions(doctor)

    def test_direct_role_mapping_signal(self, doctor):
        PermissionResolver.effective_permissions(doctor)

        RolePermission.objects.grant_permission(
            Role.objects.by_name('Doctor'), Permission.objects.by_name('view-billing')
        )

        assert 'view-billing' in PermissionResolver.effective_permissions(doctor)

    def test_temporary_grant_signal(self, nurse):
        PermissionResolver.effective_permissions(nurse)

        TemporaryPermission.objects.create(
            user=nurse,
            permission=Permission.objects.by_name('view-billing'),
            expires_at=timezone.now() + timedelta(hours=1),
        )

        assert 'view-billing' in PermissionResolver.effective_permissions(nurse)

    def test_role_assignment(self, nurse, hospital_admin):
        PermissionResolver.effective_permissions(nurse)

        CatalogService.assign_role(nurse, 'Billing Clerk', actor=hospital_admin)

        permissions = PermissionResolver.effective_permissions(nurse)
        assert 'create-billing' in permissions
        assert 'view-medical-records' not in permissions

    def test_permission_rename_invalidates_everyone(self, doctor, hospital_admin, permission):
        unused = permission('view-rota')
        PermissionResolver.effective_permissions(doctor)
        token_before = PermissionCache.version_token(doctor.id)

        CatalogService.update_permission(unused, actor=hospital_admin, name='view-duty-rota')

        assert PermissionCache.version_token(doctor.id) != token_before


@pytest.mark.django_db
class TestGrantExpiryBoundsEntries:
    """A cached set never outlives the first temporary grant folded into it."""

    def grant(self, user, name, expires_at):
        return TemporaryPermission.objects.create(
            user=user,
            permission=Permission.objects.by_name(name),
            expires_at=expires_at,
        )

    def test_expired_grant_stops_authorizing_despite_warm_cache(self, nurse):
        started = timezone.now()
        self.grant(nurse, 'view-billing', started + timedelta(seconds=30))
        assert PermissionResolver.has_permission(nurse, 'view-billing') is True

        with mock.patch('django.utils.timezone.now', return_value=started + timedelta(seconds=90)):
            assert PermissionResolver.has_permission(nurse, 'view-billing') is False

    def test_entry_records_earliest_expiry(self, nurse):
        now = timezone.now()
        soon = now + timedelta(minutes=2)
        self.grant(nurse, 'view-billing', soon)
        self.grant(nurse, 'create-billing', now + timedelta(hours=1))

        PermissionResolver.effective_permissions(nurse)

        assert PermissionCache.get(nurse.id).valid_until == soon

    def test_entry_without_grants_has_no_expiry(self, nurse):
        PermissionResolver.effective_permissions(nurse)
        assert PermissionCache.get(nurse.id).valid_until is None

    def test_get_misses_at_valid_until(self, nurse):
        valid_until = timezone.now() + timedelta(seconds=60)
        PermissionCache.set(nurse.id, {'view-billing'}, valid_until=valid_until)

        with mock.patch('django.utils.timezone.now', return_value=valid_until):
            assert PermissionCache.get(nurse.id) is None

    def test_set_skips_entries_already_expired(self, nurse):
        stored = PermissionCache.set(nurse.id, {'view-billing'}, valid_until=timezone.now() - timedelta(seconds=1))

        assert stored is False
        assert PermissionCache.get(nurse.id) is None
