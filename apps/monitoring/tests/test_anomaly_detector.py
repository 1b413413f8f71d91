"""
Tests for permission anomaly detection.

Every test passes an explicit `now` so detection windows do not depend on
the wall clock.
"""
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from apps.monitoring.models import PermissionAlert
from apps.monitoring.services import AnomalyDetector, AlertService, MonitoringService
from apps.rbac.models import Permission, PermissionChangeRequest, TemporaryPermission
from apps.rbac.services import SessionAuditService

GRANTABLE = [
    'view-billing', 'create-billing', 'view-lab-results', 'edit-lab-results',
    'view-pharmacy-inventory', 'manage-appointments', 'view-appointments',
]


def of_type(anomalies, anomaly_type):
    return [anomaly for anomaly in anomalies if anomaly.type == anomaly_type]


def grant(user, name, now, minutes_ago=10, hours_valid=4):
    return TemporaryPermission.objects.create(
        user=user,
        permission=Permission.objects.by_name(name),
        granted_at=now - timedelta(minutes=minutes_ago),
        expires_at=now + timedelta(hours=hours_valid),
    )


@pytest.fixture
def now():
    """Mid-morning local time, outside the unusual-hours window."""
    return timezone.localtime(timezone.now()).replace(hour=10, minute=0, second=0, microsecond=0)


@pytest.mark.django_db
class TestBulkGrants:
    """bulk_permission_grants"""

    def test_six_grants_in_window(self, make_user, catalog, now):
        user = make_user('porter@hospital.test')
        for name in GRANTABLE[:6]:
            grant(user, name, now)

        anomalies = of_type(AnomalyDetector.detect_anomalies(now), 'bulk_permission_grants')

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.severity == 'medium'
        assert anomaly.user_id == str(user.id)
        assert anomaly.data['grant_count'] == 6
        assert anomaly.data['time_window_minutes'] == 60
        assert anomaly.data['permissions'] == sorted(GRANTABLE[:6])

    def test_below_threshold(self, make_user, catalog, now):
        user = make_user('porter@hospital.test')
        for name in GRANTABLE[:4]:
            grant(user, name, now)

        assert of_type(AnomalyDetector.detect_anomalies(now), 'bulk_permission_grants') == []

    def test_old_and_revoked_grants_are_ignored(self, make_user, catalog, now):
        user = make_user('porter@hospital.test')
        for name in GRANTABLE[:3]:
            grant(user, name, now)
        grant(user, GRANTABLE[3], now, minutes_ago=90)
        revoked = grant(user, GRANTABLE[4], now)
        revoked.is_active = False
        revoked.save()

        assert of_type(AnomalyDetector.detect_anomalies(now), 'bulk_permission_grants') == []


@pytest.mark.django_db
class TestHighRiskGrants:
    """high_risk_permission_grants"""

    def test_three_high_risk_grants(self, make_user, catalog, now):
        user = make_user('intern@hospital.test')
        for name in ('manage-roles', 'system-admin', 'delete-users'):
            grant(user, name, now)

        anomalies = of_type(AnomalyDetector.detect_anomalies(now), 'high_risk_permission_grants')

        assert len(anomalies) == 1
        assert anomalies[0].severity == 'high'
        assert anomalies[0].data['high_risk_permissions'] == 3
        assert anomalies[0].data['permissions'] == ['delete-users', 'manage-roles', 'system-admin']

    def test_single_high_risk_grant(self, make_user, catalog, now):
        grant(make_user('intern@hospital.test'), 'system-admin', now)
        assert of_type(AnomalyDetector.detect_anomalies(now), 'high_risk_permission_grants') == []

    def test_revoked_high_risk_grant_is_ignored(self, make_user, catalog, now):
        user = make_user('intern@hospital.test')
        grant(user, 'system-admin', now)
        revoked = grant(user, 'manage-roles', now)
        revoked.is_active = False
        revoked.save()

        assert of_type(AnomalyDetector.detect_anomalies(now), 'high_risk_permission_grants') == []

    def test_grant_for_deleted_permission_is_skipped(self, make_user, catalog, permission, now):
        user = make_user('intern@hospital.test')
        grant(user, 'system-admin', now)
        grant(user, permission('archive-delete-users', category='administration').name, now)
        Permission.objects.get(name='archive-delete-users').hard_delete()

        result = AnomalyDetector.detect_anomalies(now)

        assert result.failed_checks == []
        assert of_type(result, 'high_risk_permission_grants') == []
        assert AnomalyDetector.get_anomaly_stats(now)['recent_high_risk_grants'] == 1


@pytest.mark.django_db
class TestRapidChanges:
    """rapid_permission_changes"""

    def test_eleven_changes_in_25_minutes(self, hospital_admin, now):
        session = SessionAuditService.open_session(hospital_admin)
        for i in range(11):
            SessionAuditService.append_action(
                session, 'update_user_permissions', performed_at=now - timedelta(minutes=25) + timedelta(minutes=i * 2)
            )

        anomalies = of_type(AnomalyDetector.detect_anomalies(now), 'rapid_permission_changes')

        assert len(anomalies) == 1
        assert anomalies[0].user_id == str(hospital_admin.id)
        assert anomalies[0].data['change_count'] == 11
        assert anomalies[0].data['action_types'] == ['update_user_permissions']

    @pytest.mark.parametrize('changes,expected', [(9, 0), (10, 1)])
    def test_threshold_boundary(self, hospital_admin, now, changes, expected):
        session = SessionAuditService.open_session(hospital_admin)
        for i in range(changes):
            SessionAuditService.append_action(
                session, 'update_user_permissions', performed_at=now - timedelta(minutes=29) + timedelta(minutes=i * 3)
            )

        assert len(of_type(AnomalyDetector.detect_anomalies(now), 'rapid_permission_changes')) == expected

    def test_other_action_types_do_not_count(self, hospital_admin, now):
        session = SessionAuditService.open_session(hospital_admin)
        for i in range(12):
            SessionAuditService.append_action(session, 'view_patient_chart', performed_at=now - timedelta(minutes=i))

        assert of_type(AnomalyDetector.detect_anomalies(now), 'rapid_permission_changes') == []


@pytest.mark.django_db
class TestUnusualHours:
    """unusual_hours_activity"""

    def test_action_at_three_am(self, doctor, now):
        session = SessionAuditService.open_session(doctor)
        SessionAuditService.append_action(session, 'view_patient_chart', performed_at=now.replace(hour=3))
        SessionAuditService.append_action(session, 'view_patient_chart', performed_at=now.replace(hour=3, minute=30))
        SessionAuditService.append_action(session, 'view_patient_chart', performed_at=now.replace(hour=9))

        anomalies = of_type(AnomalyDetector.detect_anomalies(now), 'unusual_hours_activity')

        assert len(anomalies) == 1
        assert anomalies[0].severity == 'medium'
        assert anomalies[0].data == {'hours': [3], 'activity_count': 2}

    def test_window_wrapping_midnight(self, doctor, now, settings):
        settings.PERMISSION_MONITORING = {
            **settings.PERMISSION_MONITORING,
            'ANOMALY_DETECTION': {
                **settings.PERMISSION_MONITORING['ANOMALY_DETECTION'],
                'UNUSUAL_HOURS_START': 22,
                'UNUSUAL_HOURS_END': 6,
            },
        }
        session = SessionAuditService.open_session(doctor)
        SessionAuditService.append_action(session, 'view_patient_chart', performed_at=now - timedelta(hours=11))

        anomalies = of_type(AnomalyDetector.detect_anomalies(now), 'unusual_hours_activity')

        assert anomalies[0].data['hours'] == [23]


@pytest.mark.django_db
class TestEscalationAttempts:
    """permission_escalation_attempt"""

    def test_pending_request_for_high_risk_permission(self, nurse, doctor, now):
        change_request = PermissionChangeRequest.objects.create(
            user=nurse,
            requested_by=doctor,
            permissions_to_add=['SYSTEM-ADMIN', 'view-billing'],
            expires_at=now + timedelta(days=7),
        )

        anomalies = of_type(AnomalyDetector.detect_anomalies(now), 'permission_escalation_attempt')

        assert len(anomalies) == 1
        data = anomalies[0].data
        assert data['requested_permission'] == 'system-admin'
        assert data['matched_pattern'] == 'system-admin'
        assert data['permission_name'] == 'SYSTEM-ADMIN'
        assert data['change_request_id'] == str(change_request.id)
        assert data['requested_by'] == str(doctor.id)
        assert anomalies[0].user_id == str(nurse.id)

    def test_reports_catalog_name_for_substring_match(self, nurse, doctor, permission, now):
        permission('bulk-delete-users', category='administration')
        PermissionChangeRequest.objects.create(
            user=nurse,
            requested_by=doctor,
            permissions_to_add=['Bulk-Delete-Users'],
            expires_at=now + timedelta(days=7),
        )

        anomalies = of_type(AnomalyDetector.detect_anomalies(now), 'permission_escalation_attempt')

        assert len(anomalies) == 1
        assert anomalies[0].data['requested_permission'] == 'bulk-delete-users'
        assert anomalies[0].data['matched_pattern'] == 'delete-users'
        assert anomalies[0].data['permission_name'] == 'Bulk-Delete-Users'

    def test_expired_and_reviewed_requests_are_ignored(self, nurse, doctor, now):
        PermissionChangeRequest.objects.create(
            user=nurse, requested_by=doctor, permissions_to_add=['system-admin'],
            expires_at=now - timedelta(minutes=1),
        )
        PermissionChangeRequest.objects.create(
            user=nurse, requested_by=doctor, permissions_to_add=['manage-roles'],
            expires_at=now + timedelta(days=1), status=PermissionChangeRequest.STATUS_REJECTED,
        )

        assert of_type(AnomalyDetector.detect_anomalies(now), 'permission_escalation_attempt') == []


@pytest.mark.django_db
class TestDetection:
    """Check isolation, statistics and scans."""

    def test_failing_check_does_not_hide_others(self, make_user, catalog, now):
        user = make_user('intern@hospital.test')
        for name in ('manage-roles', 'system-admin'):
            grant(user, name, now)

        with patch.object(AnomalyDetector, '_check_bulk_permission_grants', side_effect=RuntimeError('boom')):
            result = AnomalyDetector.detect_anomalies(now)

        assert result.failed_checks == [{'check': 'bulk_permission_grants', 'error': 'boom'}]
        assert len(of_type(result, 'high_risk_permission_grants')) == 1

    def test_detection_is_idempotent(self, make_user, catalog, now):
        user = make_user('intern@hospital.test')
        for name in GRANTABLE[:5]:
            grant(user, name, now)

        first = [a.as_dict() for a in AnomalyDetector.detect_anomalies(now)]
        second = [a.as_dict() for a in AnomalyDetector.detect_anomalies(now)]

        assert first == second

    def test_stats(self, make_user, catalog, now):
        user = make_user('intern@hospital.test')
        for name in ('manage-roles', 'system-admin'):
            grant(user, name, now)
        MonitoringService.log_failed_login({'email': 'intern@hospital.test'})

        stats = AnomalyDetector.get_anomaly_stats(now)

        assert stats['total_anomalies_today'] == 1
        assert stats['high_severity_count'] == 1
        assert stats['recent_high_risk_grants'] == 2
        assert stats['unusual_hour_activities'] == 0
        assert 'failed_login_attempts' in stats

    def test_scan_alerts_on_high_findings(self, make_user, catalog, now):
        user = make_user('intern@hospital.test')
        for name in ('manage-roles', 'system-admin'):
            grant(user, name, now)

        AnomalyDetector.run_anomaly_scan(now)
        AnomalyDetector.run_anomaly_scan(now)

        alert = PermissionAlert.objects.get()
        assert alert.severity == 'high'
        assert alert.user == user
        assert alert.metadata['category'] == 'anomaly'
        assert alert.metadata['anomaly']['type'] == 'high_risk_permission_grants'

    def test_scan_does_not_alert_on_medium_findings(self, make_user, catalog, now):
        user = make_user('porter@hospital.test')
        for name in GRANTABLE[:5]:
            grant(user, name, now)

        anomalies = AnomalyDetector.run_anomaly_scan(now)

        assert len(of_type(anomalies, 'bulk_permission_grants')) == 1
        assert PermissionAlert.objects.count() == 0

    def test_scan_survives_alert_failures(self, make_user, catalog, now):
        user = make_user('intern@hospital.test')
        for name in ('manage-roles', 'system-admin'):
            grant(user, name, now)

        with patch.object(AlertService, 'create_alert', side_effect=RuntimeError('database locked')):
            anomalies = AnomalyDetector.run_anomaly_scan(now)

        assert len(anomalies) == 1
