"""
Python interface consumed by hospital domain modules.

Domain code (patients, pharmacy, billing, ...) talks to the authorization
engine only through these functions.
"""
from typing import List

from apps.rbac.services.resolver import PermissionResolver
from apps.rbac.services.segregation import SegregationChecker
from apps.rbac.services.sessions import SessionAuditService
from apps.rbac.services.temporary import TemporaryPermissionManager


def has_permission(user, permission_name: str) -> bool:
    """Whether `user` holds `permission_name`. Denies on storage errors."""
    return PermissionResolver.has_permission(user, permission_name)


def record_session_action(session, action_type: str, details: dict = None) -> None:
    """Append an audit action. Failures are logged, never raised."""
    SessionAuditService.record_session_action(session, action_type, details)


def grant_temporary_permission(user, permission, granted_by, expires_at, reason: str = ''):
    return TemporaryPermissionManager.grant(user, permission, granted_by, expires_at, reason)


def revoke_temporary_permission(temporary_permission_id, revoked_by):
    return TemporaryPermissionManager.revoke(temporary_permission_id, revoked_by)


def check_segregation_violations(user) -> List[dict]:
    return [violation.as_dict() for violation in SegregationChecker.check_violations(user)]


def run_anomaly_scan() -> List[dict]:
    """Detect anomalies now, log them and alert on high severity findings."""
    from apps.monitoring.services.anomaly_detector import AnomalyDetector
    return [anomaly.as_dict() for anomaly in AnomalyDetector.run_anomaly_scan()]


def get_anomaly_stats() -> dict:
    from apps.monitoring.services.anomaly_detector import AnomalyDetector
    return AnomalyDetector.get_anomaly_stats()
