"""
Tests for MaintenanceService and the permission_maintenance command.
"""
from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.utils import timezone

from apps.monitoring.models import PermissionHealthCheck, PermissionMonitoringLog
from apps.monitoring.services import MaintenanceService
from apps.rbac.models import Permission, PermissionChangeRequest, TemporaryPermission


@pytest.mark.django_db
class TestCleanup:
    """MaintenanceService.cleanup"""

    def test_cleanup_counts(self, nurse, doctor):
        now = timezone.now()
        TemporaryPermission.objects.create(
            user=nurse,
            permission=Permission.objects.by_name('view-billing'),
            granted_at=now - timedelta(hours=3),
            expires_at=now - timedelta(hours=1),
        )
        PermissionChangeRequest.objects.create(
            user=nurse, requested_by=doctor, permissions_to_add=['view-billing'],
            expires_at=now - timedelta(days=1),
        )
        PermissionMonitoringLog.objects.create(metric_type='x', logged_at=now - timedelta(days=31))

        results = MaintenanceService.cleanup(now)

        assert results['expired_grants_deactivated'] == 1
        assert results['change_requests_expired'] == 1
        assert results['metrics_purged'] == 1
        assert results['health_checks_purged'] == 0
        assert results['alerts_deleted'] == 0
        assert set(results['sessions']) == {'sessions_ended', 'actions_purged', 'sessions_deleted'}
        assert not TemporaryPermission.objects.filter(is_active=True).exists()
        assert PermissionChangeRequest.objects.get().status == PermissionChangeRequest.STATUS_EXPIRED

    def test_cleanup_is_repeatable(self, catalog):
        now = timezone.now()
        MaintenanceService.cleanup(now)

        results = MaintenanceService.cleanup(now)

        assert results['expired_grants_deactivated'] == 0
        assert results['change_requests_expired'] == 0


@pytest.mark.django_db
class TestHealthCheck:
    """MaintenanceService.health_check"""

    def test_statuses(self):
        assert MaintenanceService.health_check() == {
            'database': 'healthy', 'cache': 'healthy', 'queue': 'healthy'
        }
        assert PermissionHealthCheck.objects.count() == 3

    def test_run_selects_steps(self):
        assert set(MaintenanceService.run(cleanup=False, health_check=True)) == {'health'}
        assert set(MaintenanceService.run()) == {'cleanup'}


@pytest.mark.django_db
class TestPermissionMaintenanceCommand:
    """manage.py permission_maintenance"""

    def test_all(self, catalog):
        out = StringIO()
        call_command('permission_maintenance', '--all', stdout=out)

        output = out.getvalue()
        assert 'Cleanup complete' in output
        assert 'sessions.sessions_ended' in output
        assert 'Health checks' in output
        assert PermissionHealthCheck.objects.count() == 3

    def test_health_check_only(self):
        out = StringIO()
        call_command('permission_maintenance', '--health-check', stdout=out)

        assert 'Cleanup complete' not in out.getvalue()
        assert 'database' in out.getvalue()

    def test_requires_a_step(self):
        with pytest.raises(CommandError):
            call_command('permission_maintenance', stdout=StringIO())
