"""
Management command to inspect a user's effective permissions.
"""
import json
from django.core.management.base import BaseCommand, CommandError
from apps.rbac.models import User
from apps.rbac.services import PermissionResolver, SegregationChecker, TemporaryPermissionManager


class Command(BaseCommand):
    help = "Show a user's effective permissions, or explain one permission check"

    def add_arguments(self, parser):
        parser.add_argument('email', help='Email of the user to inspect')
        parser.add_argument(
            '--permission',
            help='Explain the check for this permission instead of listing the set'
        )
        parser.add_argument(
            '--format',
            choices=['table', 'json'],
            default='table',
            help='Output format (default: table)'
        )

    def handle(self, *args, **options):
        user = User.objects.by_email(options['email'])
        if user is None:
            raise CommandError(f"No user with email {options['email']}")

        if options['permission']:
            breakdown = PermissionResolver.explain(user, options['permission'])
            if options['format'] == 'json':
                self.stdout.write(json.dumps(breakdown, indent=2))
                return
            self._display_breakdown(breakdown)
            return

        permissions = sorted(PermissionResolver.resolve(user))
        violations = SegregationChecker.check_violations(user)
        temporary = TemporaryPermissionManager.list_for_user(user)

        if options['format'] == 'json':
            self.stdout.write(json.dumps({
                'user': user.email,
                'roles': user.role_names,
                'super_admin': user.is_super_admin,
                'permissions': permissions,
                'temporary_permissions': [
                    {'permission': grant.permission_name, 'expires_at': grant.expires_at.isoformat()}
                    for grant in temporary
                ],
                'violations': [violation.as_dict() for violation in violations],
            }, indent=2))
            return

        self.stdout.write(self.style.SUCCESS(f'Permissions for {user.email}'))
        self.stdout.write('=' * 50)
        self.stdout.write(f"  Roles: {', '.join(user.role_names) or '-'}")
        if user.is_super_admin:
            self.stdout.write(self.style.WARNING('  Super Admin: bypasses all checks'))

        self.stdout.write(f'\nEffective permissions ({len(permissions)}):')
        for name in permissions:
            self.stdout.write(f'  • {name}')

        if temporary:
            self.stdout.write('\nTemporary permissions:')
            for grant in temporary:
                self.stdout.write(f'  • {grant.permission_name:<30} until {grant.expires_at.isoformat()}')

        if violations:
            self.stdout.write(self.style.ERROR('\nSegregation violations:'))
            for violation in violations:
                self.stdout.write(
                    f'  ✗ [{violation.severity}] {violation.permission_a} + {violation.permission_b}'
                )

    def _display_breakdown(self, breakdown):
        granted = breakdown['granted']
        style = self.style.SUCCESS if granted else self.style.ERROR
        self.stdout.write(style(f"{breakdown['permission']}: {'granted' if granted else 'denied'}"))
        for key, value in breakdown.items():
            if key in ('permission', 'granted'):
                continue
            self.stdout.write(f'  {key:<20} {value}')
