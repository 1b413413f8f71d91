"""
Alert service.

Creates alerts and routes them by severity using the ALERT_LEVELS table:

- notify_immediately: security log at error level and a Sentry message
- email_alert: e-mail notification task, enqueued on commit
- auto_escalate: escalated_at is set and an escalation e-mail is enqueued

Every alert is also logged at a level matching its severity.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from django.db import transaction
from django.db.models import Count
from django.utils import timezone

from apps.core.exceptions import NotFound, Conflict, ValidationError
from apps.core.logging import SecurityLogger
from apps.core.platform_settings import PlatformSettings, SEVERITIES
from apps.monitoring.models import PermissionAlert

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    'critical': logging.CRITICAL,
    'high': logging.ERROR,
    'medium': logging.WARNING,
    'low': logging.INFO,
}


class AlertService:
    """
    Alert creation, routing and lifecycle.
    """

    # Unresolved alerts with the same fingerprint inside this window are reused
    DEDUPE_WINDOW = timedelta(hours=1)

    @classmethod
    def create_alert(cls, severity: str, title: str, message: str,
                     metadata: Optional[Dict[str, Any]] = None, user=None,
                     fingerprint: Optional[str] = None) -> Optional[PermissionAlert]:
        """
        Create and route an alert.

        Args:
            severity: critical, high, medium or low
            title: Short title
            message: Human readable message
            metadata: Structured context stored with the alert
            user: User (or user id) the alert is about
            fingerprint: Identifies repeats of the same condition; a repeat
                while an earlier alert is unresolved returns that alert

        Returns:
            The alert, or None when monitoring is disabled

        Raises:
            ValidationError: If severity is unknown
        """
        if not PlatformSettings.is_monitoring_enabled():
            return None

        if severity not in SEVERITIES:
            raise ValidationError(
                f"Unknown alert severity '{severity}'",
                details={'severity': severity, 'allowed': list(SEVERITIES)}
            )

        metadata = dict(metadata or {})
        if fingerprint:
            metadata['fingerprint'] = fingerprint
            existing = PermissionAlert.objects.unresolved().with_fingerprint(fingerprint).filter(
                created_at__gte=timezone.now() - cls.DEDUPE_WINDOW
            ).first()
            if existing is not None:
                logger.debug(f"Alert '{title}' suppressed; {existing.id} is still open")
                return existing

        with transaction.atomic():
            alert = PermissionAlert.objects.create(
                severity=severity,
                title=title,
                message=message,
                metadata=metadata,
                user_id=getattr(user, 'pk', user),
            )
            cls._route(alert)
        return alert

    @classmethod
    def _route(cls, alert: PermissionAlert):
        from apps.monitoring.tasks import send_alert_notification

        routing = PlatformSettings.get_alert_level(alert.severity)
        alert_id = str(alert.id)

        logger.log(
            LOG_LEVELS.get(alert.severity, logging.INFO),
            f"Permission alert [{alert.severity}]: {alert.title}",
            extra={
                'alert_id': alert_id,
                'severity': alert.severity,
                'alert_message': alert.message,
                'user_id': str(alert.user_id) if alert.user_id else None,
            }
        )

        if routing['notify_immediately']:
            SecurityLogger.log_event(
                'alert_notify_immediately',
                level='error',
                alert_id=alert_id,
                severity=alert.severity,
                title=alert.title,
                alert_message=alert.message,
            )

        if routing['email_alert']:
            transaction.on_commit(lambda: send_alert_notification.delay(alert_id, 'alert'))

        if routing['auto_escalate']:
            alert.escalated_at = timezone.now()
            alert.save(update_fields=['escalated_at', 'updated_at'])
            transaction.on_commit(lambda: send_alert_notification.delay(alert_id, 'escalation'))
            logger.warning(f"Alert {alert_id} auto-escalated", extra={'alert_id': alert_id})

    @classmethod
    def get_alert(cls, alert_id) -> PermissionAlert:
        alert = PermissionAlert.objects.filter(pk=alert_id).first()
        if alert is None:
            raise NotFound(f"Alert '{alert_id}' does not exist", details={'alert_id': str(alert_id)})
        return alert

    @classmethod
    def acknowledge_alert(cls, alert_id, user) -> PermissionAlert:
        """
        Acknowledge an alert. Acknowledging twice keeps the first acknowledgement.

        Raises:
            NotFound: If the alert does not exist
            Conflict: If the alert is already resolved
        """
        with transaction.atomic():
            alert = PermissionAlert.objects.select_for_update().filter(pk=alert_id).first()
            if alert is None:
                raise NotFound(f"Alert '{alert_id}' does not exist", details={'alert_id': str(alert_id)})
            if alert.is_resolved:
                raise Conflict("Alert is already resolved", details={'alert_id': str(alert.id)})
            if alert.status == PermissionAlert.STATUS_ACKNOWLEDGED:
                return alert

            alert.status = PermissionAlert.STATUS_ACKNOWLEDGED
            alert.acknowledged_by = user
            alert.acknowledged_at = timezone.now()
            alert.save(update_fields=['status', 'acknowledged_by', 'acknowledged_at', 'updated_at'])

        logger.info(
            f"Alert {alert.id} acknowledged",
            extra={'alert_id': str(alert.id), 'user_id': str(getattr(user, 'pk', user))}
        )
        return alert

    @classmethod
    def resolve_alert(cls, alert_id, user) -> PermissionAlert:
        """
        Resolve an alert.

        Raises:
            NotFound: If the alert does not exist
            Conflict: If the alert is already resolved
        """
        with transaction.atomic():
            alert = PermissionAlert.objects.select_for_update().filter(pk=alert_id).first()
            if alert is None:
                raise NotFound(f"Alert '{alert_id}' does not exist", details={'alert_id': str(alert_id)})
            if alert.is_resolved:
                raise Conflict("Alert is already resolved", details={'alert_id': str(alert.id)})

            alert.status = PermissionAlert.STATUS_RESOLVED
            alert.resolved_by = user
            alert.resolved_at = timezone.now()
            alert.save(update_fields=['status', 'resolved_by', 'resolved_at', 'updated_at'])

        logger.info(
            f"Alert {alert.id} resolved",
            extra={'alert_id': str(alert.id), 'user_id': str(getattr(user, 'pk', user))}
        )
        return alert

    @classmethod
    def get_active_alerts(cls, severity: Optional[str] = None, include_acknowledged: bool = False):
        """Active alerts, newest first, optionally for one severity."""
        queryset = PermissionAlert.objects.unresolved() if include_acknowledged else PermissionAlert.objects.active()
        if severity:
            queryset = queryset.by_severity(severity)
        return queryset.select_related('user').order_by('-created_at')

    @classmethod
    def get_alert_statistics(cls, start_date=None, end_date=None) -> Dict[str, Any]:
        """
        Alert counts over a period (default: the last 30 days).
        """
        end_date = end_date or timezone.now()
        start_date = start_date or end_date - timedelta(days=30)
        alerts = PermissionAlert.objects.filter(created_at__gte=start_date, created_at__lte=end_date)

        by_severity = {severity: 0 for severity in SEVERITIES}
        for row in alerts.values('severity').annotate(count=Count('id')):
            by_severity[row['severity']] = row['count']

        by_status = {status: 0 for status, _ in PermissionAlert.STATUS_CHOICES}
        for row in alerts.values('status').annotate(count=Count('id')):
            by_status[row['status']] = row['count']

        return {
            'period': {
                'start': start_date.isoformat(),
                'end': end_date.isoformat(),
            },
            'total_alerts': alerts.count(),
            'by_severity': by_severity,
            'by_status': by_status,
            'active_alerts': PermissionAlert.objects.active().count(),
            'unresolved_critical': PermissionAlert.objects.unresolved().by_severity('critical').count(),
        }

    @classmethod
    def cleanup_old_alerts(cls, now=None) -> int:
        """Permanently delete resolved alerts older than the retention window."""
        now = now or timezone.now()
        cutoff = now - timedelta(days=PlatformSettings.get_retention_days('RESOLVED_ALERTS'))
        deleted, _ = PermissionAlert.objects_with_deleted.filter(
            status=PermissionAlert.STATUS_RESOLVED,
            created_at__lt=cutoff,
        ).hard_delete()
        logger.info(f"Deleted {deleted} resolved alerts older than {cutoff.isoformat()}")
        return deleted
