"""
Segregation-of-duties checks over resolved permission sets.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Iterable, List

from apps.rbac.models import SegregationRule
from apps.rbac.services.resolver import PermissionResolver

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {'critical': 0, 'high': 1, 'medium': 2, 'low': 3}


@dataclass(frozen=True)
class Violation:
    rule_id: str
    permission_a: str
    permission_b: str
    severity: str
    description: str

    def as_dict(self):
        return asdict(self)


class SegregationChecker:
    """
    Detects conflicting permission pairs held by one user.

    Enforcement is the caller's decision; see EnforceSegregationOfDuties.
    """

    @classmethod
    def _active_rules(cls):
        return SegregationRule.objects.active().filter(
            permission_a__deleted_at__isnull=True,
            permission_b__deleted_at__isnull=True,
        ).select_related('permission_a', 'permission_b')

    @classmethod
    def violations_for(cls, permissions: Iterable[str]) -> List[Violation]:
        """One violation per active rule whose two permissions are both in the set."""
        held = set(permissions)
        violations = []
        for rule in cls._active_rules():
            if rule.permission_a.name in held and rule.permission_b.name in held:
                violations.append(Violation(
                    rule_id=str(rule.id),
                    permission_a=rule.permission_a.name,
                    permission_b=rule.permission_b.name,
                    severity=rule.severity,
                    description=rule.description,
                ))
        violations.sort(key=lambda v: (SEVERITY_ORDER.get(v.severity, 99), v.permission_a, v.permission_b))
        return violations

    @classmethod
    def check_violations(cls, user) -> List[Violation]:
        """Violations in the user's effective set. Super Admins are exempt."""
        user = PermissionResolver._load_user(user)
        if user.is_super_admin:
            return []
        return cls.violations_for(PermissionResolver.effective_permissions(user))

    @classmethod
    def would_violate(cls, user, permission_names: Iterable[str]) -> List[Violation]:
        """
        Violations that adding `permission_names` to the user's set would introduce.
        """
        user = PermissionResolver._load_user(user)
        if user.is_super_admin:
            return []
        current = PermissionResolver.effective_permissions(user)
        existing = {v.rule_id for v in cls.violations_for(current)}
        proposed = set(current) | set(permission_names)
        return [v for v in cls.violations_for(proposed) if v.rule_id not in existing]
