"""
Permission monitoring service.

Records metric samples, raises threshold alerts and runs health checks for
the database, the cache and the task queue. Callers on the authorization
path wrap these calls so a monitoring failure never changes a decision.
"""
import logging
import time
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from django.core.cache import cache
from django.db import connection
from django.db.models import Avg, Count, Sum
from django.utils import timezone

from apps.core.cache import CacheKeys
from apps.core.exceptions import ValidationError
from apps.core.platform_settings import PlatformSettings
from apps.monitoring.models import PermissionMonitoringLog, PermissionHealthCheck

logger = logging.getLogger(__name__)

METRIC_RESPONSE_TIME = 'permission_check_response_time'
METRIC_CACHE_HIT_RATE = 'cache_hit_rate'
METRIC_FAILED_ATTEMPT = 'failed_permission_attempt'
METRIC_FAILED_LOGIN = 'failed_login_attempt'

HEALTH_CHECK_TYPES = ('database', 'cache', 'queue')


class MonitoringService:
    """
    Metrics, thresholds and health checks for the permission system.
    """

    @classmethod
    def log_metric(cls, metric_type: str, value: Optional[float] = None,
                   metadata: Optional[Dict[str, Any]] = None) -> Optional[PermissionMonitoringLog]:
        """
        Append one metric sample.

        Returns:
            The stored sample, or None when monitoring is disabled
        """
        if not PlatformSettings.is_monitoring_enabled():
            return None

        return PermissionMonitoringLog.objects.create(
            metric_type=metric_type,
            value=value,
            metadata=metadata or {},
        )

    @classmethod
    def log_permission_check_time(cls, response_time_ms: float, context: Optional[Dict[str, Any]] = None):
        """Record a permission check duration; alert when it exceeds the threshold."""
        sample = cls.log_metric(METRIC_RESPONSE_TIME, response_time_ms, context)
        if sample is None:
            return None

        threshold = PlatformSettings.get_threshold('RESPONSE_TIME_MS')
        if response_time_ms > threshold:
            from apps.monitoring.services.alert_service import AlertService
            AlertService.create_alert(
                severity='high',
                title='Slow Permission Check',
                message=f"Permission check took {response_time_ms:.1f}ms, exceeding threshold of {threshold}ms.",
                metadata={
                    'response_time': response_time_ms,
                    'threshold_ms': threshold,
                    'context': context or {},
                    'category': 'performance',
                },
                fingerprint='slow_permission_check',
            )
        return sample

    @classmethod
    def log_cache_metrics(cls, metrics: Dict[str, Any]):
        """
        Record a cache hit-rate sample from PermissionCache.stats().

        Alerts when the hit rate is below the configured minimum.
        """
        hit_rate = float(metrics.get('hit_rate', 1.0))
        sample = cls.log_metric(METRIC_CACHE_HIT_RATE, hit_rate, metrics)
        if sample is None:
            return None

        minimum = PlatformSettings.get_threshold('CACHE_HIT_RATE_MIN')
        if hit_rate < minimum:
            from apps.monitoring.services.alert_service import AlertService
            AlertService.create_alert(
                severity='medium',
                title='Low Cache Hit Rate',
                message=f"Cache hit rate is {hit_rate:.2f}, below minimum threshold of {minimum}.",
                metadata={**metrics, 'category': 'performance'},
                fingerprint='low_cache_hit_rate',
            )
        return sample

    @classmethod
    def log_failed_attempt(cls, context: Optional[Dict[str, Any]] = None):
        """
        Record a denied permission check.

        Alerts when the failures in the last minute reach the threshold.
        """
        sample = cls.log_metric(METRIC_FAILED_ATTEMPT, 1, context)
        if sample is None:
            return None

        threshold = PlatformSettings.get_threshold('FAILED_ATTEMPTS_PER_MINUTE')
        recent_failures = cls.get_recent_failures(minutes=1)
        if recent_failures >= threshold:
            from apps.monitoring.services.alert_service import AlertService
            AlertService.create_alert(
                severity='high',
                title='High Failed Permission Attempts',
                message=f"Detected {recent_failures} failed permission attempts in the last minute.",
                metadata={
                    'recent_failures': recent_failures,
                    'threshold': threshold,
                    'context': context or {},
                    'category': 'security',
                },
                fingerprint='failed_permission_attempts',
            )
        return sample

    @classmethod
    def log_failed_login(cls, context: Optional[Dict[str, Any]] = None):
        """Record a failed authentication seen by the identity layer."""
        return cls.log_metric(METRIC_FAILED_LOGIN, 1, context)

    @classmethod
    def get_recent_failures(cls, minutes: int = 1) -> int:
        """Number of denied permission checks in the last `minutes`."""
        since = timezone.now() - timedelta(minutes=minutes)
        return PermissionMonitoringLog.objects.filter(
            metric_type=METRIC_FAILED_ATTEMPT,
            logged_at__gte=since,
        ).count()

    @classmethod
    def count_metric(cls, metric_type: str, since, until=None) -> int:
        queryset = PermissionMonitoringLog.objects.filter(metric_type=metric_type, logged_at__gte=since)
        if until is not None:
            queryset = queryset.filter(logged_at__lte=until)
        return queryset.count()

    @classmethod
    def get_statistics(cls, start_date=None, end_date=None) -> Dict[str, Any]:
        """
        Aggregate metrics over a period (default: the last 7 days).

        Returns:
            Dictionary with response_times, cache_performance,
            failed_attempts, failed_logins, health_status and the live
            permission cache counters
        """
        from apps.rbac.services.cache import PermissionCache

        end_date = end_date or timezone.now()
        start_date = start_date or end_date - timedelta(days=7)
        logs = PermissionMonitoringLog.objects.filter(logged_at__gte=start_date, logged_at__lte=end_date)

        response_times = logs.filter(metric_type=METRIC_RESPONSE_TIME).aggregate(
            average=Avg('value'),
            samples=Count('id'),
        )
        cache_performance = logs.filter(metric_type=METRIC_CACHE_HIT_RATE).aggregate(
            average_hit_rate=Avg('value'),
            samples=Count('id'),
        )
        failed_attempts = logs.filter(metric_type=METRIC_FAILED_ATTEMPT).aggregate(total=Sum('value'))['total']
        failed_logins = logs.filter(metric_type=METRIC_FAILED_LOGIN).aggregate(total=Sum('value'))['total']

        return {
            'period': {
                'start': start_date.isoformat(),
                'end': end_date.isoformat(),
            },
            'response_times': {
                'average_ms': response_times['average'],
                'slow_checks': response_times['samples'],
            },
            'cache_performance': cache_performance,
            'failed_attempts': int(failed_attempts or 0),
            'failed_logins': int(failed_logins or 0),
            'health_status': cls.get_health_status(),
            'permission_cache': PermissionCache.stats(),
        }

    # ===== HEALTH CHECKS =====

    @classmethod
    def perform_health_check(cls, check_type: str) -> PermissionHealthCheck:
        """
        Run and persist one health check.

        A check that raises is persisted as critical with the error text.

        Raises:
            ValidationError: If check_type is not database, cache or queue
        """
        if check_type not in HEALTH_CHECK_TYPES:
            raise ValidationError(
                f"Unknown health check type '{check_type}'",
                details={'check_type': check_type, 'allowed': list(HEALTH_CHECK_TYPES)}
            )

        check = getattr(cls, f'_check_{check_type}')
        started = time.perf_counter()
        try:
            status, details = check()
        except Exception as e:
            logger.error(
                f"Health check '{check_type}' failed",
                extra={'check_type': check_type, 'error': str(e)},
                exc_info=True
            )
            status, details = PermissionHealthCheck.STATUS_CRITICAL, {'error': str(e)}
        elapsed_ms = (time.perf_counter() - started) * 1000

        result = PermissionHealthCheck.objects.create(
            check_type=check_type,
            status=status,
            response_time_ms=round(elapsed_ms, 3),
            details=details,
        )
        if status != PermissionHealthCheck.STATUS_HEALTHY:
            logger.warning(
                f"Health check '{check_type}' reported {status}",
                extra={'check_type': check_type, 'status': status, 'details': details}
            )
        return result

    @classmethod
    def run_health_checks(cls) -> Dict[str, PermissionHealthCheck]:
        """Run every health check type."""
        return {check_type: cls.perform_health_check(check_type) for check_type in HEALTH_CHECK_TYPES}

    @classmethod
    def _check_database(cls):
        started = time.perf_counter()
        with connection.cursor() as cursor:
            cursor.execute('SELECT 1')
            cursor.fetchone()
        elapsed_ms = (time.perf_counter() - started) * 1000

        warning_ms = PlatformSettings.get_threshold('DATABASE_WARNING_MS')
        status = PermissionHealthCheck.STATUS_WARNING if elapsed_ms > warning_ms else PermissionHealthCheck.STATUS_HEALTHY
        return status, {'query_time_ms': round(elapsed_ms, 3), 'warning_ms': warning_ms}

    @classmethod
    def _check_cache(cls):
        # Uses the cache directly; CacheService would turn backend errors into misses
        token = uuid.uuid4().hex
        key = CacheKeys.format(CacheKeys.HEALTH_CHECK, token=token)
        cache.set(key, token, 10)
        value = cache.get(key)
        cache.delete(key)
        if value == token:
            return PermissionHealthCheck.STATUS_HEALTHY, {'round_trip': True}
        return PermissionHealthCheck.STATUS_WARNING, {'round_trip': False}

    @classmethod
    def _check_queue(cls):
        from config.celery import app

        if app.conf.task_always_eager:
            return PermissionHealthCheck.STATUS_HEALTHY, {'eager': True}

        with app.connection_for_write() as conn:
            conn.ensure_connection(max_retries=1, timeout=2)
            transport = conn.transport_cls
        return PermissionHealthCheck.STATUS_HEALTHY, {'transport': str(transport)}

    @classmethod
    def get_health_status(cls) -> Dict[str, Any]:
        """
        Latest result per check type (None for types never checked).

        Results older than twice the health check interval are flagged stale.
        """
        interval = PlatformSettings.get_monitoring_config()['HEALTH_CHECK_INTERVAL_MINUTES']
        stale_before = timezone.now() - timedelta(minutes=2 * interval)

        status = {}
        for check_type in HEALTH_CHECK_TYPES:
            latest = PermissionHealthCheck.objects.filter(check_type=check_type).order_by('-checked_at').first()
            status[check_type] = None if latest is None else {
                'status': latest.status,
                'response_time_ms': latest.response_time_ms,
                'details': latest.details,
                'checked_at': latest.checked_at.isoformat(),
                'stale': latest.checked_at < stale_before,
            }
        return status

    # ===== RETENTION =====

    @classmethod
    def cleanup_old_metrics(cls, now=None) -> int:
        now = now or timezone.now()
        cutoff = now - timedelta(days=PlatformSettings.get_retention_days('MONITORING_LOGS'))
        deleted = PermissionMonitoringLog.objects.purge_older_than(cutoff, field='logged_at')
        logger.info(f"Purged {deleted} monitoring samples older than {cutoff.isoformat()}")
        return deleted

    @classmethod
    def cleanup_old_health_checks(cls, now=None) -> int:
        now = now or timezone.now()
        cutoff = now - timedelta(days=PlatformSettings.get_retention_days('HEALTH_CHECKS'))
        deleted = PermissionHealthCheck.objects.purge_older_than(cutoff, field='checked_at')
        logger.info(f"Purged {deleted} health checks older than {cutoff.isoformat()}")
        return deleted
