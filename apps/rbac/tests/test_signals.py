"""
Tests for RBAC signals.

Writes that bypass the service layer still drop cached permission sets.
"""
import pytest

from apps.rbac.models import LegacyRolePermission, Permission, Role, RolePermission, UserPermissionOverride
from apps.rbac.services import PermissionCache, PermissionResolver


def cached(user):
    return PermissionCache.get(user.id) is not None


@pytest.mark.django_db
class TestCacheInvalidationSignals:
    """Direct model writes invalidate the affected users."""

    def test_override_save_and_delete(self, nurse):
        PermissionResolver.effective_permissions(nurse)
        assert cached(nurse)

        override, _ = UserPermissionOverride.objects.set_override(
            nurse, Permission.objects.by_name('view-billing'), allowed=True
        )
        assert not cached(nurse)

        PermissionResolver.effective_permissions(nurse)
        override.hard_delete()
        assert not cached(nurse)

    def test_role_mapping_reaches_legacy_and_normalized_users(self, catalog, make_user):
        modern = make_user('modern@hospital.test', role='Receptionist', legacy_role='')
        legacy = make_user('legacy@hospital.test', legacy_role='Receptionist')
        for user in (modern, legacy):
            PermissionResolver.effective_permissions(user)

        RolePermission.objects.grant_permission(
            Role.objects.by_name('Receptionist'), Permission.objects.by_name('view-billing')
        )

        assert not cached(modern)
        assert not cached(legacy)

    def test_legacy_mapping(self, catalog, make_user):
        legacy = make_user('legacy@hospital.test', legacy_role='Porter')
        PermissionResolver.effective_permissions(legacy)

        LegacyRolePermission.objects.create(role_name='Porter', permission=Permission.objects.by_name('view-patients'))

        assert not cached(legacy)
        assert 'view-patients' in PermissionResolver.effective_permissions(legacy)

    def test_user_update_but_not_creation(self, catalog, make_user, nurse):
        PermissionResolver.effective_permissions(nurse)
        make_user('someone@hospital.test')
        assert cached(nurse)

        nurse.role = 'Doctor'
        nurse.save()

        assert not cached(nurse)

    def test_unrelated_users_keep_their_entries(self, doctor, nurse):
        PermissionResolver.effective_permissions(doctor)
        PermissionResolver.effective_permissions(nurse)

        UserPermissionOverride.objects.set_override(nurse, Permission.objects.by_name('view-billing'), allowed=True)

        assert cached(doctor)
