"""
Management command for permission system maintenance.

Usage:
    python manage.py permission_maintenance --cleanup
    python manage.py permission_maintenance --health-check
    python manage.py permission_maintenance --all
"""
from django.core.management.base import BaseCommand, CommandError
from apps.monitoring.services.maintenance import MaintenanceService


class Command(BaseCommand):
    help = 'Expire temporary grants and change requests, apply retention windows and run health checks'

    def add_arguments(self, parser):
        parser.add_argument(
            '--cleanup',
            action='store_true',
            help='Sweep expired grants and requests and purge old audit, metric and alert data'
        )
        parser.add_argument(
            '--health-check',
            action='store_true',
            help='Run the database, cache and queue health checks'
        )
        parser.add_argument(
            '--all',
            action='store_true',
            help='Run cleanup and health checks'
        )

    def handle(self, *args, **options):
        cleanup = options['cleanup'] or options['all']
        health_check = options['health_check'] or options['all']
        if not (cleanup or health_check):
            raise CommandError('Specify --cleanup, --health-check or --all')

        results = MaintenanceService.run(cleanup=cleanup, health_check=health_check)

        if 'cleanup' in results:
            self.stdout.write(self.style.SUCCESS('Cleanup complete:'))
            for step, value in results['cleanup'].items():
                if isinstance(value, dict):
                    for key, count in value.items():
                        self.stdout.write(f'  • {step}.{key:<25} {count}')
                else:
                    self.stdout.write(f'  • {step:<33} {value}')

        if 'health' in results:
            self.stdout.write(self.style.SUCCESS('\nHealth checks:'))
            for check_type, status in results['health'].items():
                style = self.style.SUCCESS if status == 'healthy' else (
                    self.style.WARNING if status == 'warning' else self.style.ERROR
                )
                self.stdout.write(f'  {check_type:<10} ' + style(status))
