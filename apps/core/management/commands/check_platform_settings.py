"""
Management command to check authorization engine configuration.
"""
from django.core.management.base import BaseCommand, CommandError
from django.conf import settings
from apps.core.platform_settings import PlatformSettings, SEVERITIES
import json


class Command(BaseCommand):
    help = 'Check authorization engine settings (RBAC and PERMISSION_MONITORING)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--format',
            choices=['table', 'json'],
            default='table',
            help='Output format (default: table)'
        )

    def handle(self, *args, **options):
        """Check and display the effective settings."""
        problems = PlatformSettings.validate()

        if options['format'] == 'json':
            self.stdout.write(json.dumps({
                'rbac': PlatformSettings.get_rbac_config(),
                'monitoring': PlatformSettings.get_monitoring_config(),
                'problems': problems,
            }, indent=2))
        else:
            self.stdout.write(self.style.SUCCESS('🔧 Authorization Engine Settings Check'))
            self.stdout.write('=' * 50)
            self._display_rbac_settings()
            self._display_monitoring_settings()
            self._display_security_settings()
            self.stdout.write('\n' + '=' * 50)

        if problems:
            for problem in problems:
                self.stderr.write(self.style.ERROR(f'  ❌ {problem}'))
            raise CommandError(f'{len(problems)} configuration problem(s) found')

        if options['format'] == 'table':
            self.stdout.write(self.style.SUCCESS('✅ Settings check complete'))

    def _display_rbac_settings(self):
        rbac = PlatformSettings.get_rbac_config()
        self.stdout.write('\n🔑 RBAC:')
        self.stdout.write(f"  Super Admin role: {rbac['SUPER_ADMIN_ROLE']}")
        self.stdout.write(f"  Permission cache TTL: {rbac['PERMISSION_CACHE_TTL']}s")
        self.stdout.write(f"  Dependency policy: {rbac['DEPENDENCY_POLICY']}")
        self.stdout.write(f"  Identity header: {rbac['IDENTITY_HEADER']}")
        for source in rbac['PERMISSION_SOURCES']:
            self.stdout.write(f"  Source: {source}")

    def _display_monitoring_settings(self):
        monitoring = PlatformSettings.get_monitoring_config()
        self.stdout.write('\n📈 Monitoring:')
        if not monitoring['ENABLED']:
            self.stdout.write(self.style.WARNING('  ⚠️  Monitoring disabled'))
            return

        for name, value in monitoring['THRESHOLDS'].items():
            self.stdout.write(f"  {name}: {value}")
        for severity in SEVERITIES:
            level = PlatformSettings.get_alert_level(severity)
            routes = [flag for flag, enabled in level.items() if enabled] or ['log only']
            self.stdout.write(f"  Alerts [{severity}]: {', '.join(routes)}")

        recipients = monitoring['ALERT_RECIPIENTS']
        status = f'✅ {len(recipients)} configured' if recipients else '❌ None (alert e-mails skipped)'
        self.stdout.write(f"  Alert recipients: {status}")

    def _display_security_settings(self):
        self.stdout.write('\n🔒 Security Settings:')
        secret_key_status = '✅ Configured' if getattr(settings, 'SECRET_KEY', '') else '❌ Missing'
        self.stdout.write(f"  Django SECRET_KEY: {secret_key_status}")

        if getattr(settings, 'DEBUG', False):
            self.stdout.write(self.style.WARNING("  ⚠️  DEBUG=True (disable for production)"))
        else:
            self.stdout.write("  ✅ DEBUG=False (production ready)")
