"""
Pytest configuration and fixtures.
"""
from io import StringIO

import pytest
from django.conf import settings
import django
from django.core.cache import cache
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'authz-tests',
        }
    }
    settings.CELERY_TASK_ALWAYS_EAGER = True
    # The test client speaks plain HTTP; production HTTPS redirects would 301 every request
    settings.SECURE_SSL_REDIRECT = False
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Permission cache entries and counters must not leak between tests."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def catalog(db):
    """Seed the canonical permission catalog, default roles and segregation rules."""
    call_command('seed_permissions', stdout=StringIO())


@pytest.fixture
def make_user(db):
    """
    Factory for users.

    Usage:
        doctor = make_user('doctor@example.com', role='Doctor')
    """
    from apps.rbac.models import User, Role

    def _make_user(email, role=None, legacy_role=None, **extra):
        role_model = Role.objects.by_name(role) if role else None
        return User.objects.create_user(
            email=email,
            name=email.split('@')[0].title(),
            role=legacy_role if legacy_role is not None else (role or ''),
            role_model=role_model,
            **extra
        )

    return _make_user


@pytest.fixture
def permission(db):
    """Factory for catalog permissions."""
    from apps.rbac.models import Permission

    def _permission(name, category='clinical'):
        resource, _, action = name.partition('-')
        return Permission.objects.get_or_create(
            name=name,
            defaults={'resource': resource, 'action': action, 'category': category}
        )[0]

    return _permission


@pytest.fixture
def doctor(catalog, make_user):
    return make_user('doctor@hospital.test', role='Doctor')


@pytest.fixture
def nurse(catalog, make_user):
    return make_user('nurse@hospital.test', role='Nurse')


@pytest.fixture
def hospital_admin(catalog, make_user):
    return make_user('admin@hospital.test', role='Hospital Admin')


@pytest.fixture
def super_admin(catalog, make_user):
    return make_user('root@hospital.test', role='Super Admin')


@pytest.fixture
def admin_client(api_client, hospital_admin):
    """API client authenticated as a Hospital Admin."""
    api_client.force_authenticate(user=hospital_admin)
    return api_client
