"""
Management command to seed the hospital permission catalog.

Creates the canonical Permission records, the default roles with their
permission sets, the legacy role mappings, permission dependencies and
segregation rules. This command is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand
from django.db import transaction
from apps.rbac.models import (
    Permission, Role, RolePermission, LegacyRolePermission,
    PermissionDependency, SegregationRule
)
from apps.rbac.services.cache import PermissionCache


class Command(BaseCommand):
    help = 'Seed the permission catalog, default roles and segregation rules (idempotent)'

    # (name, resource, action, category, description)
    CANONICAL_PERMISSIONS = [
        # Clinical
        ('view-patients', 'patients', 'view', 'clinical', 'View patient demographics and records'),
        ('edit-patients', 'patients', 'edit', 'clinical', 'Create and update patient records'),
        ('view-medical-records', 'medical-records', 'view', 'clinical', 'Read clinical notes and history'),
        ('edit-medical-records', 'medical-records', 'edit', 'clinical', 'Write clinical notes and diagnoses'),
        ('create-prescriptions', 'prescriptions', 'create', 'clinical', 'Prescribe medication'),
        ('view-appointments', 'appointments', 'view', 'clinical', 'View appointment schedules'),
        ('manage-appointments', 'appointments', 'manage', 'clinical', 'Book, move and cancel appointments'),

        # Pharmacy
        ('view-pharmacy-inventory', 'pharmacy-inventory', 'view', 'pharmacy', 'View medication stock'),
        ('dispense-medication', 'prescriptions', 'dispense', 'pharmacy', 'Dispense prescribed medication'),
        ('manage-pharmacy-inventory', 'pharmacy-inventory', 'manage', 'pharmacy', 'Receive and adjust stock'),

        # Laboratory
        ('view-lab-results', 'lab-results', 'view', 'laboratory', 'View laboratory results'),
        ('edit-lab-results', 'lab-results', 'edit', 'laboratory', 'Enter laboratory results'),
        ('verify-lab-results', 'lab-results', 'verify', 'laboratory', 'Verify and release laboratory results'),

        # Billing
        ('view-billing', 'billing', 'view', 'billing', 'View invoices and payments'),
        ('create-billing', 'billing', 'create', 'billing', 'Raise invoices'),
        ('approve-billing', 'billing', 'approve', 'billing', 'Approve invoices and refunds'),

        # Administration
        ('view-permissions', 'permissions', 'view', 'administration', 'View the permission catalog and grants'),
        ('manage-permissions', 'permissions', 'manage', 'administration', 'Create, edit and delete permissions'),
        ('manage-roles', 'roles', 'manage', 'administration', 'Create, edit, delete and assign roles'),
        ('manage-user-permissions', 'user-permissions', 'manage', 'administration',
         'Set and remove per-user permission overrides'),
        ('grant-temporary-permissions', 'temporary-permissions', 'grant', 'administration',
         'Grant and revoke temporary permissions'),
        ('manage-segregation-rules', 'segregation-rules', 'manage', 'administration',
         'Declare conflicting permission pairs and dependencies'),
        ('request-permission-changes', 'change-requests', 'create', 'administration',
         'File permission change requests'),
        ('approve-permission-changes', 'change-requests', 'approve', 'administration',
         'Approve or reject permission change requests'),
        ('view-audit-log', 'audit-log', 'view', 'administration', 'View permission sessions and actions'),
        ('manage-users', 'users', 'manage', 'administration', 'Create and deactivate staff accounts'),
        ('delete-users', 'users', 'delete', 'administration', 'Permanently remove staff accounts'),
        ('system-admin', 'system', 'admin', 'administration', 'Unrestricted system configuration'),

        # Monitoring
        ('view-monitoring', 'monitoring', 'view', 'monitoring', 'View metrics, health checks and anomalies'),
        ('manage-alerts', 'alerts', 'manage', 'monitoring', 'Acknowledge and resolve alerts'),
        ('run-anomaly-scan', 'anomalies', 'scan', 'monitoring', 'Trigger anomaly scans and health checks'),
    ]

    # name -> (priority, description, permissions); 'ALL' means the full catalog
    DEFAULT_ROLES = {
        'Super Admin': (100, 'Unrestricted access; bypasses all checks', 'ALL'),
        'Hospital Admin': (90, 'Hospital administration and access control', [
            'view-patients', 'view-appointments', 'manage-appointments', 'view-billing',
            'view-permissions', 'manage-roles', 'manage-user-permissions',
            'grant-temporary-permissions', 'manage-segregation-rules',
            'approve-permission-changes', 'view-audit-log', 'manage-users',
            'view-monitoring', 'manage-alerts', 'run-anomaly-scan',
        ]),
        'Doctor': (70, 'Physician', [
            'view-patients', 'edit-patients', 'view-medical-records', 'edit-medical-records',
            'create-prescriptions', 'view-appointments', 'view-lab-results',
            'request-permission-changes',
        ]),
        'Nurse': (60, 'Nursing staff', [
            'view-patients', 'view-medical-records', 'view-appointments', 'view-lab-results',
            'request-permission-changes',
        ]),
        'Pharmacist': (50, 'Pharmacy staff', [
            'view-patients', 'view-pharmacy-inventory', 'dispense-medication',
            'manage-pharmacy-inventory', 'request-permission-changes',
        ]),
        'Lab Supervisor': (55, 'Verifies and releases laboratory results', [
            'view-patients', 'view-lab-results', 'verify-lab-results', 'request-permission-changes',
        ]),
        'Lab Technician': (50, 'Laboratory staff', [
            'view-patients', 'view-lab-results', 'edit-lab-results', 'request-permission-changes',
        ]),
        'Billing Clerk': (40, 'Billing office', [
            'view-patients', 'view-billing', 'create-billing', 'request-permission-changes',
        ]),
        'Receptionist': (30, 'Front desk', [
            'view-patients', 'view-appointments', 'manage-appointments',
        ]),
    }

    # (permission, depends_on)
    DEPENDENCIES = [
        ('edit-patients', 'view-patients'),
        ('edit-medical-records', 'view-medical-records'),
        ('create-prescriptions', 'view-medical-records'),
        ('dispense-medication', 'view-pharmacy-inventory'),
        ('edit-lab-results', 'view-lab-results'),
        ('verify-lab-results', 'view-lab-results'),
        ('approve-billing', 'view-billing'),
        ('manage-permissions', 'view-permissions'),
        ('manage-user-permissions', 'view-permissions'),
        ('grant-temporary-permissions', 'view-permissions'),
    ]

    # (permission_a, permission_b, severity, description)
    SEGREGATION_RULES = [
        ('create-prescriptions', 'dispense-medication', 'critical',
         'The prescriber of a medication must not dispense it'),
        ('create-billing', 'approve-billing', 'critical',
         'Invoices must be approved by someone other than their author'),
        ('edit-lab-results', 'verify-lab-results', 'high',
         'Laboratory results must be verified independently'),
        ('request-permission-changes', 'approve-permission-changes', 'high',
         'Permission change requests need an independent approver'),
    ]

    def add_arguments(self, parser):
        parser.add_argument(
            '--skip-roles',
            action='store_true',
            help='Only seed permissions, dependencies and segregation rules'
        )

    def handle(self, *args, **options):
        """Create or update the catalog."""
        self.stdout.write('Seeding permission catalog...\n')

        with transaction.atomic():
            created, updated = self._seed_permissions()
            dependencies = self._seed_dependencies()
            rules = self._seed_segregation_rules()
            roles = 0 if options['skip_roles'] else self._seed_roles()
            PermissionCache.invalidate_all()

        unchanged = len(self.CANONICAL_PERMISSIONS) - created - updated
        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {created} created, {updated} updated, {unchanged} unchanged; '
                f'{dependencies} dependencies, {rules} segregation rules, {roles} roles created'
            )
        )

        self.stdout.write('\n' + '=' * 70)
        self.stdout.write('Permissions Summary by Category:')
        self.stdout.write('=' * 70)

        categories = Permission.objects.values_list('category', flat=True).distinct().order_by('category')
        for category in categories:
            self.stdout.write(f'\n{category.upper()}:')
            for permission in Permission.objects.filter(category=category).order_by('name'):
                self.stdout.write(f'  • {permission.name:<30} {permission.description}')

        self.stdout.write(f'\nTotal permissions: {Permission.objects.count()}')

    def _seed_permissions(self):
        created_count = 0
        updated_count = 0
        for name, resource, action, category, description in self.CANONICAL_PERMISSIONS:
            defaults = {
                'resource': resource,
                'action': action,
                'category': category,
                'description': description,
            }
            permission = Permission.objects_with_deleted.filter(name=name).first()
            if permission is None:
                Permission.objects.create(name=name, **defaults)
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f'✓ Created: {name}'))
                continue

            changed = [field for field, value in defaults.items() if getattr(permission, field) != value]
            if changed or permission.is_deleted:
                for field in changed:
                    setattr(permission, field, defaults[field])
                permission.deleted_at = None
                permission.save()
                updated_count += 1
                self.stdout.write(self.style.WARNING(f'↻ Updated: {name}'))
            else:
                self.stdout.write(self.style.HTTP_INFO(f'  Exists: {name}'))
        return created_count, updated_count

    def _seed_dependencies(self):
        created_count = 0
        for name, depends_on in self.DEPENDENCIES:
            _, created = PermissionDependency.objects.get_or_create(
                permission=Permission.objects.get(name=name),
                depends_on=Permission.objects.get(name=depends_on),
            )
            created_count += int(created)
        return created_count

    def _seed_segregation_rules(self):
        created_count = 0
        for name_a, name_b, severity, description in self.SEGREGATION_RULES:
            permission_a = Permission.objects.get(name=name_a)
            permission_b = Permission.objects.get(name=name_b)
            if SegregationRule.objects.for_pair(permission_a, permission_b).exists():
                continue
            SegregationRule.objects.create(
                permission_a=permission_a,
                permission_b=permission_b,
                severity=severity,
                description=description,
            )
            created_count += 1
        return created_count

    def _seed_roles(self):
        created_count = 0
        all_permissions = list(Permission.objects.all())
        for role_name, (priority, description, names) in self.DEFAULT_ROLES.items():
            role, created = Role.objects.get_or_create(
                name=role_name,
                defaults={
                    'display_name': role_name,
                    'description': description,
                    'priority': priority,
                    'is_system': True,
                }
            )
            created_count += int(created)

            permissions = all_permissions if names == 'ALL' else list(Permission.objects.filter(name__in=names))
            for permission in permissions:
                RolePermission.objects.grant_permission(role, permission)
                LegacyRolePermission.objects.get_or_create(role_name=role_name, permission=permission)

            if created:
                self.stdout.write(self.style.SUCCESS(f'✓ Created role: {role_name} ({len(permissions)} permissions)'))
        return created_count
