"""
Monitoring models.

- PermissionAlert: alert raised by thresholds or anomaly scans, with an
  active -> acknowledged -> resolved lifecycle
- PermissionMonitoringLog: append-only metric samples
- PermissionHealthCheck: append-only health check results
"""
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone
from apps.core.models import BaseModel, BaseModelManager, BaseModelQuerySet, AppendOnlyModel
from apps.rbac.models import SEVERITY_CHOICES


class PermissionAlertQuerySet(BaseModelQuerySet):

    def active(self):
        return self.filter(status=PermissionAlert.STATUS_ACTIVE)

    def unresolved(self):
        return self.exclude(status=PermissionAlert.STATUS_RESOLVED)

    def by_severity(self, severity):
        return self.filter(severity=severity)

    def with_fingerprint(self, fingerprint):
        return self.filter(metadata__fingerprint=fingerprint)


class PermissionAlert(BaseModel):
    """
    Alert about permission system behaviour.

    Routing (log, Sentry, e-mail, escalation) happens once at creation based
    on severity. Acknowledging and resolving only change lifecycle fields.
    """

    STATUS_ACTIVE = 'active'
    STATUS_ACKNOWLEDGED = 'acknowledged'
    STATUS_RESOLVED = 'resolved'

    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_ACKNOWLEDGED, 'Acknowledged'),
        (STATUS_RESOLVED, 'Resolved'),
    ]

    severity = models.CharField(
        max_length=20,
        choices=SEVERITY_CHOICES,
        db_index=True,
        help_text="Alert severity; selects the routing flags"
    )
    title = models.CharField(
        max_length=255,
        help_text="Short alert title"
    )
    message = models.TextField(
        help_text="Alert message"
    )
    metadata = models.JSONField(
        default=dict,
        encoder=DjangoJSONEncoder,
        blank=True,
        help_text="Structured context (metric values, anomaly data, fingerprint)"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True,
        help_text="Lifecycle status"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_alerts',
        help_text="User the alert is about, if any"
    )
    escalated_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Set when the alert was auto-escalated"
    )
    acknowledged_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_alerts_acknowledged',
        help_text="User who acknowledged the alert"
    )
    acknowledged_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the alert was acknowledged"
    )
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_alerts_resolved',
        help_text="User who resolved the alert"
    )
    resolved_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the alert was resolved"
    )

    objects = BaseModelManager.from_queryset(PermissionAlertQuerySet)()

    class Meta:
        db_table = 'permission_alerts'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'severity']),
            models.Index(fields=['severity', 'created_at']),
        ]

    def __str__(self):
        return f"[{self.severity}] {self.title} ({self.status})"

    @property
    def is_resolved(self):
        return self.status == self.STATUS_RESOLVED


class PermissionMonitoringLog(AppendOnlyModel):
    """
    One metric sample, e.g. a slow permission check or the cache hit rate.
    """

    metric_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Metric name (e.g., 'permission_check_response_time')"
    )
    value = models.FloatField(
        null=True,
        blank=True,
        help_text="Numeric sample"
    )
    metadata = models.JSONField(
        default=dict,
        encoder=DjangoJSONEncoder,
        blank=True,
        help_text="Sample context"
    )
    logged_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the sample was taken"
    )

    class Meta:
        db_table = 'permission_monitoring_logs'
        ordering = ['-logged_at']
        indexes = [
            models.Index(fields=['metric_type', 'logged_at']),
        ]

    def __str__(self):
        return f"{self.metric_type}={self.value} @ {self.logged_at.isoformat()}"


class PermissionHealthCheck(AppendOnlyModel):
    """
    Result of one database, cache or queue health check.
    """

    STATUS_HEALTHY = 'healthy'
    STATUS_WARNING = 'warning'
    STATUS_CRITICAL = 'critical'

    STATUS_CHOICES = [
        (STATUS_HEALTHY, 'Healthy'),
        (STATUS_WARNING, 'Warning'),
        (STATUS_CRITICAL, 'Critical'),
    ]

    check_type = models.CharField(
        max_length=50,
        db_index=True,
        help_text="database, cache or queue"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        db_index=True,
        help_text="Check outcome"
    )
    response_time_ms = models.FloatField(
        null=True,
        blank=True,
        help_text="Measured latency in milliseconds"
    )
    details = models.JSONField(
        default=dict,
        encoder=DjangoJSONEncoder,
        blank=True,
        help_text="Check details or error text"
    )
    checked_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the check ran"
    )

    class Meta:
        db_table = 'permission_health_checks'
        ordering = ['-checked_at']
        indexes = [
            models.Index(fields=['check_type', 'checked_at']),
        ]

    def __str__(self):
        return f"{self.check_type}: {self.status}"
