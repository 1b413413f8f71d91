"""
Celery configuration for the authorization engine.
"""
import os
from celery import Celery
from celery.signals import task_failure, task_retry
import logging

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('authz')

# Load configuration from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all installed apps
app.autodiscover_tasks()

logger = logging.getLogger(__name__)


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, args=None, kwargs=None, traceback=None, einfo=None, **extra):
    """Log task failure and send to Sentry."""
    logger.error(
        f"Task failed: {sender.name}",
        extra={
            'task_id': task_id,
            'task_name': sender.name,
            'exception': str(exception)[:500] if exception else None,
            'task_args': str(args)[:200] if args else None,
        },
        exc_info=einfo.exc_info if einfo else None
    )

    from apps.core.sentry_utils import capture_exception
    capture_exception(
        exception,
        task={
            'task_id': task_id,
            'task_name': sender.name,
        }
    )


@task_retry.connect
def task_retry_handler(sender=None, request=None, reason=None, einfo=None, **extra):
    """Log task retry."""
    logger.warning(
        f"Task retry: {sender.name}",
        extra={
            'task_id': getattr(request, 'id', None),
            'task_name': sender.name,
            'reason': str(reason)[:200] if reason else None,
            'retry_count': getattr(request, 'retries', 0),
        }
    )


# Celery Beat Schedule for Periodic Tasks
app.conf.beat_schedule = {
    # Scan temporary grants, session actions and change requests for anomalies
    'permission-anomaly-scan': {
        'task': 'apps.monitoring.tasks.run_anomaly_scan',
        'schedule': 300.0,  # Every 5 minutes
    },

    # Database, cache and queue health checks
    'permission-health-checks': {
        'task': 'apps.monitoring.tasks.run_health_checks',
        'schedule': 900.0,  # Every 15 minutes
    },

    # Persist permission cache hit rate
    'permission-cache-metrics': {
        'task': 'apps.monitoring.tasks.log_cache_metrics',
        'schedule': 300.0,  # Every 5 minutes
    },

    # Expire temporary grants and apply retention windows
    'permission-maintenance': {
        'task': 'apps.monitoring.tasks.run_permission_maintenance',
        'schedule': 86400.0,  # Every 24 hours
    },
}

app.conf.timezone = 'UTC'
