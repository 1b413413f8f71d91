"""
Tests for metric logging, threshold alerts and health checks.
"""
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from apps.core.exceptions import ValidationError
from apps.monitoring.models import PermissionAlert, PermissionHealthCheck, PermissionMonitoringLog
from apps.monitoring.services import MonitoringService
from apps.monitoring.services.monitoring_service import (
    METRIC_CACHE_HIT_RATE, METRIC_FAILED_ATTEMPT, METRIC_RESPONSE_TIME
)


@pytest.fixture
def monitoring_disabled(settings):
    settings.PERMISSION_MONITORING = {**settings.PERMISSION_MONITORING, 'ENABLED': False}


@pytest.mark.django_db
class TestMetrics:
    """Metric samples and the alerts they raise."""

    def test_log_metric(self):
        sample = MonitoringService.log_metric('custom_metric', 3.5, {'source': 'test'})

        assert sample.metric_type == 'custom_metric'
        assert sample.value == 3.5
        assert sample.metadata == {'source': 'test'}

    def test_disabled_monitoring_stores_nothing(self, monitoring_disabled):
        assert MonitoringService.log_metric('custom_metric', 1) is None
        assert MonitoringService.log_failed_attempt({'permission': 'view-patients'}) is None
        assert PermissionMonitoringLog.objects.count() == 0

    def test_slow_permission_check_alerts(self):
        MonitoringService.log_permission_check_time(750.0, {'permission': 'view-patients'})

        alert = PermissionAlert.objects.get()
        assert alert.severity == 'high'
        assert alert.title == 'Slow Permission Check'
        assert alert.metadata['response_time'] == 750.0
        assert alert.metadata['fingerprint'] == 'slow_permission_check'

    def test_check_within_threshold_does_not_alert(self):
        MonitoringService.log_permission_check_time(120.0)

        assert PermissionMonitoringLog.objects.filter(metric_type=METRIC_RESPONSE_TIME).count() == 1
        assert PermissionAlert.objects.count() == 0

    def test_low_cache_hit_rate_alerts_once(self):
        metrics = {'hits': 5, 'misses': 5, 'total_requests': 10, 'hit_rate': 0.5}

        MonitoringService.log_cache_metrics(metrics)
        MonitoringService.log_cache_metrics(metrics)

        assert PermissionMonitoringLog.objects.filter(metric_type=METRIC_CACHE_HIT_RATE).count() == 2
        alert = PermissionAlert.objects.get()
        assert alert.severity == 'medium'
        assert alert.title == 'Low Cache Hit Rate'

    def test_healthy_cache_hit_rate(self):
        MonitoringService.log_cache_metrics({'hit_rate': 0.95, 'total_requests': 100})
        assert PermissionAlert.objects.count() == 0

    def test_failed_attempts_alert_at_threshold(self):
        for _ in range(9):
            MonitoringService.log_failed_attempt({'permission': 'view-billing'})
        assert PermissionAlert.objects.count() == 0

        MonitoringService.log_failed_attempt({'permission': 'view-billing'})

        alert = PermissionAlert.objects.get()
        assert alert.title == 'High Failed Permission Attempts'
        assert alert.metadata['recent_failures'] == 10
        assert alert.metadata['category'] == 'security'

    def test_recent_failures_window(self):
        PermissionMonitoringLog.objects.create(
            metric_type=METRIC_FAILED_ATTEMPT, value=1, logged_at=timezone.now() - timedelta(minutes=5)
        )
        MonitoringService.log_failed_attempt()

        assert MonitoringService.get_recent_failures(minutes=1) == 1
        assert MonitoringService.get_recent_failures(minutes=10) == 2

    def test_statistics(self):
        MonitoringService.log_permission_check_time(600.0)
        MonitoringService.log_permission_check_time(800.0)
        MonitoringService.log_cache_metrics({'hit_rate': 0.9})
        MonitoringService.log_failed_attempt()
        MonitoringService.log_failed_login({'email': 'someone@hospital.test'})

        stats = MonitoringService.get_statistics()

        assert stats['response_times'] == {'average_ms': 700.0, 'slow_checks': 2}
        assert stats['cache_performance']['average_hit_rate'] == pytest.approx(0.9)
        assert stats['failed_attempts'] == 1
        assert stats['failed_logins'] == 1
        assert set(stats['health_status']) == {'database', 'cache', 'queue'}
        assert 'hit_rate' in stats['permission_cache']

    def test_statistics_period(self):
        old = timezone.now() - timedelta(days=10)
        PermissionMonitoringLog.objects.create(metric_type=METRIC_FAILED_ATTEMPT, value=1, logged_at=old)

        assert MonitoringService.get_statistics()['failed_attempts'] == 0
        assert MonitoringService.get_statistics(start_date=old - timedelta(days=1))['failed_attempts'] == 1


@pytest.mark.django_db
class TestHealthChecks:
    """Database, cache and queue health checks."""

    def test_all_checks_healthy(self):
        results = MonitoringService.run_health_checks()

        assert set(results) == {'database', 'cache', 'queue'}
        assert {result.status for result in results.values()} == {PermissionHealthCheck.STATUS_HEALTHY}
        assert results['queue'].details == {'eager': True}
        assert results['database'].response_time_ms >= 0

    def test_failing_check_is_critical(self):
        with patch.object(MonitoringService, '_check_cache', side_effect=RuntimeError('connection refused')):
            result = MonitoringService.perform_health_check('cache')

        assert result.status == PermissionHealthCheck.STATUS_CRITICAL
        assert result.details == {'error': 'connection refused'}

    def test_slow_database_is_warning(self, settings):
        settings.PERMISSION_MONITORING = {
            **settings.PERMISSION_MONITORING,
            'THRESHOLDS': {**settings.PERMISSION_MONITORING['THRESHOLDS'], 'DATABASE_WARNING_MS': -1},
        }

        result = MonitoringService.perform_health_check('database')

        assert result.status == PermissionHealthCheck.STATUS_WARNING

    def test_unknown_check_type(self):
        with pytest.raises(ValidationError):
            MonitoringService.perform_health_check('disk')

    def test_health_status(self):
        assert MonitoringService.get_health_status()['database'] is None

        MonitoringService.perform_health_check('database')
        PermissionHealthCheck.objects.create(
            check_type='cache',
            status=PermissionHealthCheck.STATUS_HEALTHY,
            checked_at=timezone.now() - timedelta(hours=2),
        )

        status = MonitoringService.get_health_status()

        assert status['database']['status'] == 'healthy'
        assert status['database']['stale'] is False
        assert status['cache']['stale'] is True
        assert status['queue'] is None


@pytest.mark.django_db
class TestRetention:
    """Metric and health check purges."""

    def test_cleanup_old_metrics(self):
        now = timezone.now()
        PermissionMonitoringLog.objects.create(metric_type='x', logged_at=now - timedelta(days=31))
        kept = PermissionMonitoringLog.objects.create(metric_type='x', logged_at=now - timedelta(days=29))

        assert MonitoringService.cleanup_old_metrics(now) == 1
        assert list(PermissionMonitoringLog.objects.all()) == [kept]

    def test_cleanup_old_health_checks(self):
        now = timezone.now()
        PermissionHealthCheck.objects.create(check_type='database', status='healthy', checked_at=now - timedelta(days=40))

        assert MonitoringService.cleanup_old_health_checks(now) == 1
        assert PermissionHealthCheck.objects.count() == 0
