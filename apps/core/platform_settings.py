"""
Authorization engine settings access.

Values come from the RBAC and PERMISSION_MONITORING dictionaries in Django
settings (environment driven, see config/settings.py) merged over the
defaults below, so partial overrides keep the remaining defaults. Settings
are read on every call so runtime overrides take effect immediately.
"""
import copy
from django.conf import settings
from typing import Dict, Any, List
import logging

logger = logging.getLogger(__name__)

SEVERITIES = ('critical', 'high', 'medium', 'low')


RBAC_DEFAULTS = {
    'SUPER_ADMIN_ROLE': 'Super Admin',
    'PERMISSION_CACHE_TTL': 600,
    'DEPENDENCY_POLICY': 'reject',
    'PERMISSION_SOURCES': [
        'apps.rbac.services.sources.NormalizedRoleSource',
        'apps.rbac.services.sources.LegacyRoleSource',
    ],
    'IDENTITY_HEADER': 'HTTP_X_AUTHENTICATED_USER_ID',
}

MONITORING_DEFAULTS = {
    'ENABLED': True,
    'THRESHOLDS': {
        'RESPONSE_TIME_MS': 500,
        'CACHE_HIT_RATE_MIN': 0.8,
        'FAILED_ATTEMPTS_PER_MINUTE': 10,
        'DATABASE_WARNING_MS': 1000,
    },
    'ALERT_LEVELS': {
        'critical': {'notify_immediately': True, 'email_alert': True, 'auto_escalate': True},
        'high': {'notify_immediately': True, 'email_alert': False, 'auto_escalate': False},
        'medium': {'notify_immediately': False, 'email_alert': False, 'auto_escalate': False},
        'low': {'notify_immediately': False, 'email_alert': False, 'auto_escalate': False},
    },
    'ALERT_RECIPIENTS': [],
    'ESCALATION_RECIPIENTS': [],
    'RETENTION_DAYS': {
        'MONITORING_LOGS': 30,
        'HEALTH_CHECKS': 30,
        'SESSION_ACTIONS': 90,
        'RESOLVED_ALERTS': 90,
        'INACTIVE_SESSIONS': 7,
    },
    'HEALTH_CHECK_INTERVAL_MINUTES': 15,
    'ANOMALY_DETECTION': {
        'BULK_GRANT_WINDOW_MINUTES': 60,
        'BULK_GRANT_THRESHOLD': 5,
        'HIGH_RISK_WINDOW_MINUTES': 60,
        'HIGH_RISK_THRESHOLD': 2,
        'HIGH_RISK_PERMISSIONS': ['delete-users', 'manage-roles', 'system-admin'],
        'RAPID_CHANGE_WINDOW_MINUTES': 30,
        'RAPID_CHANGE_THRESHOLD': 10,
        'UNUSUAL_HOURS_START': 0,
        'UNUSUAL_HOURS_END': 6,
        'UNUSUAL_HOURS_LOOKBACK_HOURS': 24,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class PlatformSettings:
    """
    Centralized access to authorization engine configuration.
    """

    @classmethod
    def get_rbac_config(cls) -> Dict[str, Any]:
        """RBAC settings merged over defaults."""
        return _deep_merge(RBAC_DEFAULTS, getattr(settings, 'RBAC', {}))

    @classmethod
    def get_monitoring_config(cls) -> Dict[str, Any]:
        """PERMISSION_MONITORING settings merged over defaults."""
        return _deep_merge(MONITORING_DEFAULTS, getattr(settings, 'PERMISSION_MONITORING', {}))

    @classmethod
    def get_super_admin_role(cls) -> str:
        return cls.get_rbac_config()['SUPER_ADMIN_ROLE']

    @classmethod
    def get_permission_cache_ttl(cls) -> int:
        return int(cls.get_rbac_config()['PERMISSION_CACHE_TTL'])

    @classmethod
    def get_dependency_policy(cls) -> str:
        return cls.get_rbac_config()['DEPENDENCY_POLICY']

    @classmethod
    def is_monitoring_enabled(cls) -> bool:
        return bool(cls.get_monitoring_config()['ENABLED'])

    @classmethod
    def get_threshold(cls, name: str):
        return cls.get_monitoring_config()['THRESHOLDS'][name]

    @classmethod
    def get_anomaly_config(cls) -> Dict[str, Any]:
        return cls.get_monitoring_config()['ANOMALY_DETECTION']

    @classmethod
    def get_high_risk_permissions(cls) -> List[str]:
        """High-risk name patterns, lowercased for case-insensitive matching."""
        return [name.lower() for name in cls.get_anomaly_config()['HIGH_RISK_PERMISSIONS']]

    @classmethod
    def get_alert_level(cls, severity: str) -> Dict[str, bool]:
        """
        Routing flags for an alert severity.

        Unknown severities are routed like 'low' (logged only).
        """
        levels = cls.get_monitoring_config()['ALERT_LEVELS']
        level = levels.get(severity)
        if level is None:
            logger.warning(f"No alert routing configured for severity '{severity}', using 'low'")
            level = levels.get('low', {})
        return {
            'notify_immediately': bool(level.get('notify_immediately', False)),
            'email_alert': bool(level.get('email_alert', False)),
            'auto_escalate': bool(level.get('auto_escalate', False)),
        }

    @classmethod
    def get_retention_days(cls, name: str) -> int:
        return int(cls.get_monitoring_config()['RETENTION_DAYS'][name])

    @classmethod
    def validate(cls) -> List[str]:
        """
        Check configuration consistency.

        Returns:
            List of problems found (empty when the configuration is usable)
        """
        problems = []
        rbac = cls.get_rbac_config()
        monitoring = cls.get_monitoring_config()

        ttl = rbac['PERMISSION_CACHE_TTL']
        if not isinstance(ttl, int) or ttl <= 0 or ttl >= 20 * 60:
            problems.append(f"RBAC PERMISSION_CACHE_TTL must be between 1 and 1199 seconds, got {ttl!r}")

        if rbac['DEPENDENCY_POLICY'] not in ('reject', 'include'):
            problems.append(
                f"RBAC DEPENDENCY_POLICY must be 'reject' or 'include', got {rbac['DEPENDENCY_POLICY']!r}"
            )

        if not rbac['PERMISSION_SOURCES']:
            problems.append("RBAC PERMISSION_SOURCES must name at least one source")

        for severity in SEVERITIES:
            if severity not in monitoring['ALERT_LEVELS']:
                problems.append(f"PERMISSION_MONITORING ALERT_LEVELS is missing '{severity}'")

        rate = monitoring['THRESHOLDS']['CACHE_HIT_RATE_MIN']
        if not 0 <= float(rate) <= 1:
            problems.append(f"CACHE_HIT_RATE_MIN must be within [0, 1], got {rate!r}")

        anomaly = monitoring['ANOMALY_DETECTION']
        for key in ('UNUSUAL_HOURS_START', 'UNUSUAL_HOURS_END'):
            if not 0 <= int(anomaly[key]) <= 24:
                problems.append(f"{key} must be an hour between 0 and 24, got {anomaly[key]!r}")

        return problems
