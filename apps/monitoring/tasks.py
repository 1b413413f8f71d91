"""
Celery tasks for permission monitoring.

Scheduled by beat (see config/celery.py): anomaly scans, health checks,
cache metrics and maintenance. Alert e-mails are dispatched from
send_alert_notification, which is enqueued when an alert commits.
"""
import logging
from celery import shared_task
from apps.core.tasks import LoggedTask
from apps.core.platform_settings import PlatformSettings
from apps.core.services.email_service import EmailService, EmailServiceError

logger = logging.getLogger(__name__)


def _alert_email(alert, kind):
    prefix = 'ESCALATION' if kind == 'escalation' else 'ALERT'
    subject = f"[{prefix}][{alert.severity.upper()}] {alert.title}"
    lines = [
        alert.message,
        '',
        f"Severity: {alert.severity}",
        f"Status: {alert.status}",
        f"Raised at: {alert.created_at.isoformat()}",
        f"Alert ID: {alert.id}",
    ]
    if alert.user_id:
        lines.append(f"User: {alert.user_id}")
    if alert.escalated_at:
        lines.append(f"Escalated at: {alert.escalated_at.isoformat()}")
    return subject, '\n'.join(lines)


@shared_task(bind=True, base=LoggedTask, max_retries=3)
def send_alert_notification(self, alert_id, kind='alert'):
    """
    E-mail an alert to ALERT_RECIPIENTS, or ESCALATION_RECIPIENTS for kind='escalation'.

    Retries with exponential backoff. The final failure is logged and not raised.

    Args:
        alert_id: UUID of the PermissionAlert
        kind: 'alert' or 'escalation'

    Returns:
        dict: {'sent': bool, ...}
    """
    from apps.monitoring.models import PermissionAlert

    alert = PermissionAlert.objects.filter(pk=alert_id).first()
    if alert is None:
        logger.warning(f"Alert {alert_id} no longer exists, notification skipped")
        return {'sent': False, 'reason': 'alert_not_found'}

    config = PlatformSettings.get_monitoring_config()
    recipients = config['ESCALATION_RECIPIENTS'] if kind == 'escalation' else config['ALERT_RECIPIENTS']
    if kind == 'escalation' and not recipients:
        recipients = config['ALERT_RECIPIENTS']
    if not recipients:
        logger.warning(f"No recipients configured for {kind} notifications, alert {alert_id} not e-mailed")
        return {'sent': False, 'reason': 'no_recipients'}

    subject, body = _alert_email(alert, kind)
    try:
        sent = EmailService.send_email(to_emails=recipients, subject=subject, body=body)
    except EmailServiceError as e:
        if self.request.retries < self.max_retries:
            raise self.retry(exc=e, countdown=self.retry_countdown())
        logger.error(
            f"Giving up on {kind} notification for alert {alert_id}",
            extra={'alert_id': str(alert_id), 'retries': self.request.retries, 'error': str(e)}
        )
        return {'sent': False, 'reason': 'delivery_failed', 'error': str(e)}

    return {'sent': sent, 'alert_id': str(alert_id), 'kind': kind, 'recipient_count': len(recipients)}


@shared_task(bind=True, base=LoggedTask)
def run_anomaly_scan(self):
    """Detect anomalies, log them and alert on high/critical findings."""
    from apps.monitoring.services.anomaly_detector import AnomalyDetector

    anomalies = AnomalyDetector.run_anomaly_scan()
    return {
        'anomalies': len(anomalies),
        'failed_checks': [failure['check'] for failure in anomalies.failed_checks],
    }


@shared_task(bind=True, base=LoggedTask)
def run_health_checks(self):
    """Run the database, cache and queue health checks."""
    from apps.monitoring.services.maintenance import MaintenanceService

    return MaintenanceService.health_check()


@shared_task(bind=True, base=LoggedTask)
def log_cache_metrics(self):
    """
    Persist the permission cache hit rate since the previous run.

    Counters are reset after each sample so every sample covers one interval.
    """
    from apps.rbac.services.cache import PermissionCache
    from apps.monitoring.services.monitoring_service import MonitoringService

    stats = PermissionCache.stats()
    if stats['total_requests'] == 0:
        return {'logged': False, 'reason': 'no_requests'}

    MonitoringService.log_cache_metrics(stats)
    PermissionCache.reset_stats()
    return {'logged': True, **stats}


@shared_task(bind=True, base=LoggedTask)
def run_permission_maintenance(self):
    """Expire grants and change requests and apply retention windows."""
    from apps.monitoring.services.maintenance import MaintenanceService

    return MaintenanceService.run(cleanup=True, health_check=False)
