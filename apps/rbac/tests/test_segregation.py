"""
Tests for segregation-of-duties checks.
"""
import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.core.exceptions import NotFound
from apps.rbac.models import Permission, SegregationRule, UserPermissionOverride, TemporaryPermission
from apps.rbac.services import SegregationChecker, CatalogService


def allow(user, name):
    UserPermissionOverride.objects.set_override(user, Permission.objects.by_name(name), allowed=True)


@pytest.mark.django_db
class TestCheckViolations:
    """One violation per rule whose two permissions are both held."""

    def test_no_violation_for_seeded_roles(self, doctor, nurse):
        assert SegregationChecker.check_violations(doctor) == []
        assert SegregationChecker.check_violations(nurse) == []

    def test_prescriber_who_can_dispense(self, doctor):
        allow(doctor, 'dispense-medication')

        violations = SegregationChecker.check_violations(doctor)

        assert len(violations) == 1
        violation = violations[0]
        assert {violation.permission_a, violation.permission_b} == {'create-prescriptions', 'dispense-medication'}
        assert violation.severity == 'critical'
        assert violation.description

    def test_violation_through_temporary_grant(self, make_user, catalog):
        clerk = make_user('clerk@hospital.test', role='Billing Clerk')
        TemporaryPermission.objects.create(
            user=clerk,
            permission=Permission.objects.by_name('approve-billing'),
            expires_at=timezone.now() + timedelta(hours=1),
        )

        violations = SegregationChecker.check_violations(clerk)

        assert [v.severity for v in violations] == ['critical']

    def test_violations_sorted_by_severity(self, make_user, catalog):
        tech = make_user('tech@hospital.test', role='Lab Technician')
        allow(tech, 'approve-permission-changes')
        allow(tech, 'verify-lab-results')

        violations = SegregationChecker.check_violations(tech)

        assert [v.severity for v in violations] == ['high', 'high']
        allow(tech, 'create-prescriptions')
        allow(tech, 'dispense-medication')
        assert SegregationChecker.check_violations(tech)[0].severity == 'critical'

    def test_inactive_rule_is_ignored(self, doctor):
        allow(doctor, 'dispense-medication')
        SegregationRule.objects.update(is_active=False)

        assert SegregationChecker.check_violations(doctor) == []

    def test_super_admin_is_exempt(self, super_admin):
        assert SegregationChecker.check_violations(super_admin) == []

    def test_super_admin_is_exempt_by_id(self, super_admin):
        assert SegregationChecker.check_violations(super_admin.id) == []
        assert SegregationChecker.would_violate(super_admin.id, ['dispense-medication']) == []

    def test_unknown_user_id(self, catalog):
        with pytest.raises(NotFound):
            SegregationChecker.check_violations(uuid.uuid4())

    def test_rule_order_does_not_matter(self, make_user, permission):
        triage = permission('perform-triage')
        audit = permission('audit-triage')
        CatalogService.create_segregation_rule(audit, triage, severity='medium')
        user = make_user('triage@hospital.test')
        UserPermissionOverride.objects.set_override(user, triage, allowed=True)
        UserPermissionOverride.objects.set_override(user, audit, allowed=True)

        assert len(SegregationChecker.check_violations(user)) == 1


@pytest.mark.django_db
class TestWouldViolate:
    """Previewing the effect of a grant."""

    def test_new_conflict_is_reported(self, doctor):
        warnings = SegregationChecker.would_violate(doctor, ['dispense-medication'])

        assert len(warnings) == 1
        assert warnings[0].severity == 'critical'

    def test_existing_conflicts_are_not_repeated(self, doctor):
        allow(doctor, 'dispense-medication')
        assert SegregationChecker.would_violate(doctor, ['dispense-medication']) == []

    def test_harmless_grant(self, doctor):
        assert SegregationChecker.would_violate(doctor, ['view-billing']) == []
