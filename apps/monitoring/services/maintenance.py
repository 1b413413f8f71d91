"""
Permission system maintenance: retention cleanup and scheduled health checks.
"""
import logging
from typing import Any, Dict

from django.utils import timezone

from apps.monitoring.services.alert_service import AlertService
from apps.monitoring.services.monitoring_service import MonitoringService
from apps.rbac.services import ChangeRequestService, SessionAuditService, TemporaryPermissionManager

logger = logging.getLogger(__name__)


class MaintenanceService:
    """
    Periodic upkeep run by the permission_maintenance command and Celery beat.
    """

    @classmethod
    def cleanup(cls, now=None) -> Dict[str, Any]:
        """
        Apply every retention window.

        Returns:
            Counts per cleanup step
        """
        now = now or timezone.now()
        results = {
            'expired_grants_deactivated': TemporaryPermissionManager.sweep_expired(now),
            'change_requests_expired': ChangeRequestService.expire_overdue(now),
            'sessions': SessionAuditService.cleanup(now),
            'metrics_purged': MonitoringService.cleanup_old_metrics(now),
            'health_checks_purged': MonitoringService.cleanup_old_health_checks(now),
            'alerts_deleted': AlertService.cleanup_old_alerts(now),
        }
        logger.info("Permission maintenance cleanup finished", extra={'results': results})
        return results

    @classmethod
    def health_check(cls) -> Dict[str, str]:
        """Run all health checks; returns check type -> status."""
        return {
            check_type: result.status
            for check_type, result in MonitoringService.run_health_checks().items()
        }

    @classmethod
    def run(cls, cleanup: bool = True, health_check: bool = False, now=None) -> Dict[str, Any]:
        results = {}
        if cleanup:
            results['cleanup'] = cls.cleanup(now)
        if health_check:
            results['health'] = cls.health_check()
        return results
