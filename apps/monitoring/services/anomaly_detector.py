"""
Permission anomaly detection.

Time-windowed scans over temporary grants, session actions and pending
change requests. Detection is read-only and idempotent; each check runs in
isolation so one failing query does not hide the others' findings.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from django.utils import timezone

from apps.core.logging import SecurityLogger
from apps.core.platform_settings import PlatformSettings
from apps.monitoring.services.monitoring_service import METRIC_FAILED_LOGIN, MonitoringService
from apps.rbac.models import (
    Permission, TemporaryPermission, SessionAction, PermissionChangeRequest, PERMISSION_CHANGE_ACTIONS
)

logger = logging.getLogger(__name__)

ALERT_SEVERITIES = ('high', 'critical')


@dataclass
class Anomaly:
    type: str
    severity: str
    user_id: Optional[str]
    description: str
    detected_at: datetime
    data: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'severity': self.severity,
            'user_id': self.user_id,
            'description': self.description,
            'detected_at': self.detected_at.isoformat(),
            'data': self.data,
        }

    @property
    def fingerprint(self) -> str:
        if 'change_request_id' in self.data:
            return f"anomaly:{self.type}:{self.data['change_request_id']}:{self.data['permission_name']}"
        return f"anomaly:{self.type}:{self.user_id}"


class AnomalyResult(list):
    """List of anomalies plus the names and errors of checks that failed."""

    def __init__(self, anomalies=(), failed_checks=()):
        super().__init__(anomalies)
        self.failed_checks = list(failed_checks)


def _matching_pattern(name: str, patterns: List[str]) -> Optional[str]:
    lowered = name.lower()
    for pattern in patterns:
        if pattern in lowered:
            return pattern
    return None


def _in_unusual_hours(hour: int, start: int, end: int) -> bool:
    if start <= end:
        return start <= hour < end
    # Window wraps past midnight, e.g. 22 -> 6
    return hour >= start or hour < end


class AnomalyDetector:
    """
    Detects anomalous permission usage.

    Checks and their defaults (see PERMISSION_MONITORING['ANOMALY_DETECTION']):
    - bulk_permission_grants: 5+ effective grants to one user in 60 minutes
    - high_risk_permission_grants: 2+ high-risk grants to one user in 60 minutes
    - rapid_permission_changes: 10+ permission changes by one user in 30 minutes
    - unusual_hours_activity: session actions between 00:00 and 06:00
    - permission_escalation_attempt: pending request for a high-risk permission
    """

    CHECKS = (
        'bulk_permission_grants',
        'high_risk_permission_grants',
        'rapid_permission_changes',
        'unusual_hours_activity',
        'permission_escalation_attempt',
    )

    @classmethod
    def detect_anomalies(cls, now=None) -> AnomalyResult:
        """
        Run every check.

        Returns:
            AnomalyResult; checks that raised are listed in failed_checks
        """
        now = now or timezone.now()
        config = PlatformSettings.get_anomaly_config()
        result = AnomalyResult()

        for name in cls.CHECKS:
            check = getattr(cls, f'_check_{name}')
            try:
                result.extend(check(now, config))
            except Exception as e:
                logger.exception(f"Anomaly check '{name}' failed")
                result.failed_checks.append({'check': name, 'error': str(e)})

        return result

    # ===== QUERY HELPERS =====

    @staticmethod
    def _recent_grants(now, window_minutes):
        """(user_id, permission name) of effective grants made inside the window."""
        since = now - timedelta(minutes=window_minutes)
        return list(
            TemporaryPermission.objects.effective(now)
            .with_live_permission()
            .filter(granted_at__gte=since, granted_at__lte=now)
            .values_list('user_id', 'permission__name')
        )

    @classmethod
    def _recent_high_risk_grants(cls, now, window_minutes):
        patterns = PlatformSettings.get_high_risk_permissions()
        return [
            (user_id, name) for user_id, name in cls._recent_grants(now, window_minutes)
            if _matching_pattern(name, patterns)
        ]

    @staticmethod
    def _unusual_hour_actions(now, config):
        """(user_id, local hour) of session actions inside the unusual-hours window."""
        since = now - timedelta(hours=config['UNUSUAL_HOURS_LOOKBACK_HOURS'])
        start, end = int(config['UNUSUAL_HOURS_START']), int(config['UNUSUAL_HOURS_END'])
        rows = SessionAction.objects.filter(
            performed_at__gte=since,
            performed_at__lte=now,
        ).values_list('session__user_id', 'performed_at')

        matches = []
        for user_id, performed_at in rows:
            hour = timezone.localtime(performed_at).hour
            if _in_unusual_hours(hour, start, end):
                matches.append((user_id, hour))
        return matches

    # ===== CHECKS =====

    @classmethod
    def _check_bulk_permission_grants(cls, now, config) -> List[Anomaly]:
        window = config['BULK_GRANT_WINDOW_MINUTES']
        threshold = config['BULK_GRANT_THRESHOLD']

        by_user = defaultdict(list)
        for user_id, name in cls._recent_grants(now, window):
            by_user[user_id].append(name)

        return [
            Anomaly(
                type='bulk_permission_grants',
                severity='medium',
                user_id=str(user_id),
                description=f"User received {len(names)} permission grants within {window} minutes",
                detected_at=now,
                data={
                    'grant_count': len(names),
                    'time_window_minutes': window,
                    'permissions': sorted(names),
                },
            )
            for user_id, names in by_user.items()
            if len(names) >= threshold
        ]

    @classmethod
    def _check_high_risk_permission_grants(cls, now, config) -> List[Anomaly]:
        window = config['HIGH_RISK_WINDOW_MINUTES']
        threshold = config['HIGH_RISK_THRESHOLD']

        by_user = defaultdict(list)
        for user_id, name in cls._recent_high_risk_grants(now, window):
            by_user[user_id].append(name)

        return [
            Anomaly(
                type='high_risk_permission_grants',
                severity='high',
                user_id=str(user_id),
                description=f"User received {len(names)} high-risk permissions within {window} minutes",
                detected_at=now,
                data={
                    'high_risk_permissions': len(names),
                    'permissions': sorted(names),
                    'time_window_minutes': window,
                },
            )
            for user_id, names in by_user.items()
            if len(names) >= threshold
        ]

    @classmethod
    def _check_rapid_permission_changes(cls, now, config) -> List[Anomaly]:
        window = config['RAPID_CHANGE_WINDOW_MINUTES']
        threshold = config['RAPID_CHANGE_THRESHOLD']
        since = now - timedelta(minutes=window)

        rows = SessionAction.objects.filter(
            action_type__in=PERMISSION_CHANGE_ACTIONS,
            performed_at__gte=since,
            performed_at__lte=now,
        ).values_list('session__user_id', 'action_type')

        by_user = defaultdict(list)
        for user_id, action_type in rows:
            by_user[user_id].append(action_type)

        return [
            Anomaly(
                type='rapid_permission_changes',
                severity='high',
                user_id=str(user_id),
                description=f"User made {len(actions)} permission changes within {window} minutes",
                detected_at=now,
                data={
                    'change_count': len(actions),
                    'action_types': sorted(set(actions)),
                    'time_window_minutes': window,
                },
            )
            for user_id, actions in by_user.items()
            if len(actions) >= threshold
        ]

    @classmethod
    def _check_unusual_hours_activity(cls, now, config) -> List[Anomaly]:
        by_user = defaultdict(list)
        for user_id, hour in cls._unusual_hour_actions(now, config):
            by_user[user_id].append(hour)

        start, end = config['UNUSUAL_HOURS_START'], config['UNUSUAL_HOURS_END']
        return [
            Anomaly(
                type='unusual_hours_activity',
                severity='medium',
                user_id=str(user_id),
                description=f"{len(hours)} actions between {start:02d}:00 and {end:02d}:00",
                detected_at=now,
                data={
                    'hours': sorted(set(hours)),
                    'activity_count': len(hours),
                },
            )
            for user_id, hours in by_user.items()
        ]

    @classmethod
    def _check_permission_escalation_attempt(cls, now, config) -> List[Anomaly]:
        patterns = PlatformSettings.get_high_risk_permissions()
        anomalies = []

        requests = PermissionChangeRequest.objects.pending().filter(expires_at__gt=now)
        for change_request in requests:
            for name in change_request.permissions_to_add or []:
                pattern = _matching_pattern(str(name), patterns)
                if pattern is None:
                    continue
                catalog_entry = Permission.objects.by_name_ci(str(name))
                anomalies.append(Anomaly(
                    type='permission_escalation_attempt',
                    severity='high',
                    user_id=str(change_request.user_id),
                    description=f"Pending change request asks for high-risk permission '{name}'",
                    detected_at=now,
                    data={
                        'requested_permission': catalog_entry.name if catalog_entry else str(name).lower(),
                        'matched_pattern': pattern,
                        'permission_name': name,
                        'change_request_id': str(change_request.id),
                        'requested_by': str(change_request.requested_by_id) if change_request.requested_by_id else None,
                    },
                ))
        return anomalies

    # ===== STATISTICS AND SCANS =====

    @classmethod
    def get_anomaly_stats(cls, now=None) -> Dict[str, int]:
        """
        Counters for the monitoring dashboard.
        """
        now = now or timezone.now()
        config = PlatformSettings.get_anomaly_config()
        today = timezone.localtime(now).replace(hour=0, minute=0, second=0, microsecond=0)

        anomalies = cls.detect_anomalies(now)
        return {
            'total_anomalies_today': len(anomalies),
            'high_severity_count': sum(1 for anomaly in anomalies if anomaly.severity in ALERT_SEVERITIES),
            'recent_high_risk_grants': len(cls._recent_high_risk_grants(now, 24 * 60)),
            'failed_login_attempts': MonitoringService.count_metric(METRIC_FAILED_LOGIN, since=today, until=now),
            'unusual_hour_activities': len(cls._unusual_hour_actions(now, config)),
        }

    @classmethod
    def run_anomaly_scan(cls, now=None) -> AnomalyResult:
        """
        Detect anomalies, log each one and alert on high/critical findings.

        Logging and alerting failures are logged and never raised.
        """
        from apps.monitoring.services.alert_service import AlertService

        anomalies = cls.detect_anomalies(now)
        for anomaly in anomalies:
            try:
                SecurityLogger.log_anomaly(
                    anomaly_type=anomaly.type,
                    severity=anomaly.severity,
                    user_id=anomaly.user_id,
                    description=anomaly.description,
                    data=anomaly.data,
                )
                if anomaly.severity in ALERT_SEVERITIES:
                    AlertService.create_alert(
                        severity=anomaly.severity,
                        title=f"Permission anomaly: {anomaly.type.replace('_', ' ')}",
                        message=anomaly.description,
                        metadata={'anomaly': anomaly.as_dict(), 'category': 'anomaly'},
                        user=anomaly.user_id,
                        fingerprint=anomaly.fingerprint,
                    )
            except Exception:
                logger.exception(f"Failed to record anomaly {anomaly.type} for user {anomaly.user_id}")

        logger.info(
            f"Anomaly scan found {len(anomalies)} anomalies",
            extra={
                'anomaly_count': len(anomalies),
                'failed_checks': [failure['check'] for failure in anomalies.failed_checks],
            }
        )
        return anomalies
