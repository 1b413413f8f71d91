"""
Django settings for the hospital authorization engine.
"""
import os
from pathlib import Path
import environ
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration
from sentry_sdk.integrations.celery import CeleryIntegration
from kombu import Queue, Exchange

# Build paths inside the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Initialize environment variables
env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, ['localhost', '127.0.0.1']),
    DB_CONN_MAX_AGE=(int, 600),
    JSON_LOGS=(bool, False),
    LOG_LEVEL=(str, 'INFO'),
)

# Read .env file if it exists
environ.Env.read_env(os.path.join(BASE_DIR, '.env'))

# SECURITY WARNING: keep the secret key used in production secret!
# The default is rejected at startup when DEBUG is off (see CoreConfig.ready).
SECRET_KEY = env('SECRET_KEY', default='django-insecure-local-development-key-change-me')

DEBUG = env('DEBUG')

ALLOWED_HOSTS = env('ALLOWED_HOSTS')

USE_X_FORWARDED_HOST = True
SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')

# Application definition
INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',

    # Third-party apps
    'rest_framework',
    'drf_spectacular',

    # Authorization engine apps
    'apps.core',
    'apps.rbac',
    'apps.monitoring',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
    'apps.core.middleware.RequestIDMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# Database
DATABASES = {
    'default': env.db('DATABASE_URL', default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}
DATABASES['default']['CONN_MAX_AGE'] = env('DB_CONN_MAX_AGE')

# Bounded connect timeout so an unreachable database surfaces as a failed
# health check instead of a hung request
if 'postgresql' in DATABASES['default']['ENGINE']:
    DATABASES['default']['OPTIONS'] = {
        'connect_timeout': env.int('DB_CONNECT_TIMEOUT', default=5),
    }

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = env('TIME_ZONE', default='UTC')
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Custom User Model
# Identity is authenticated upstream; this model only carries role assignments
AUTH_USER_MODEL = 'rbac.User'

# REST Framework
REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 50,
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
    ],
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'apps.core.authentication.UpstreamIdentityAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'EXCEPTION_HANDLER': 'apps.core.exceptions.custom_exception_handler',
}

# DRF Spectacular (OpenAPI)
SPECTACULAR_SETTINGS = {
    'TITLE': 'Hospital Authorization Engine API',
    'DESCRIPTION': '''
Role-based access control for the hospital management system.

## Authentication
Requests are authenticated by the upstream gateway. The gateway forwards the
authenticated user id in the `X-Authenticated-User-Id` header.

## Authorization
A user's effective permission set is resolved from:
1. The normalized role assigned to the user
2. The legacy role-name permission table
3. Active, unexpired temporary permissions
4. Per-user overrides (allow adds, deny removes; deny always wins)

Users holding the **Super Admin** role receive the full permission catalog.

## Segregation of Duties
Conflicting permission pairs are declared as segregation rules. Requests made
by a user holding both sides of a `critical` rule are rejected with 403.

## Monitoring
Permission check latency, cache hit rate and failed attempts are recorded as
metrics. Threshold breaches raise alerts which are routed by severity.
    ''',
    'VERSION': '1.0.0',
    'SERVE_INCLUDE_SCHEMA': False,
    'COMPONENT_SPLIT_REQUEST': True,
    'SCHEMA_PATH_PREFIX': r'/v1/',
    'TAGS': [
        {'name': 'RBAC - Permissions', 'description': 'Permission catalog and permission checks'},
        {'name': 'RBAC - Roles', 'description': 'Role management and permission assignments'},
        {'name': 'RBAC - Overrides', 'description': 'Per-user allow/deny overrides'},
        {'name': 'RBAC - Temporary Permissions', 'description': 'Time-bounded grants'},
        {'name': 'RBAC - Segregation of Duties', 'description': 'Conflicting permission rules and violations'},
        {'name': 'RBAC - Change Requests', 'description': 'Permission change request workflow'},
        {'name': 'RBAC - Sessions', 'description': 'Permission session and action audit log'},
        {'name': 'Monitoring', 'description': 'Metrics, health checks and statistics'},
        {'name': 'Monitoring - Alerts', 'description': 'Alert listing and lifecycle'},
        {'name': 'Monitoring - Anomalies', 'description': 'Anomaly scans and statistics'},
    ],
}

# ============================================================================
# SECURITY SETTINGS
# ============================================================================

if not DEBUG:
    SECURE_SSL_REDIRECT = env.bool('SECURE_SSL_REDIRECT', default=True)
    SECURE_HSTS_SECONDS = 31536000  # 1 year
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
else:
    SECURE_SSL_REDIRECT = False
    SECURE_HSTS_SECONDS = 0

SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = 'DENY'

# Cache
# Redis in deployed environments; local memory when REDIS_URL is not set
REDIS_URL = env('REDIS_URL', default=None)

if REDIS_URL:
    CACHES = {
        'default': {
            'BACKEND': 'django_redis.cache.RedisCache',
            'LOCATION': REDIS_URL,
            'OPTIONS': {
                'CLIENT_CLASS': 'django_redis.client.DefaultClient',
                'SOCKET_CONNECT_TIMEOUT': 5,
                'SOCKET_TIMEOUT': 5,
                'CONNECTION_POOL_KWARGS': {
                    'max_connections': 50,
                    'retry_on_timeout': True,
                },
            },
            'KEY_PREFIX': 'authz',
            'TIMEOUT': 300,
        }
    }
else:
    CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'authz-default',
            'KEY_PREFIX': 'authz',
            'TIMEOUT': 300,
        }
    }

# Celery Configuration
CELERY_BROKER_URL = env('CELERY_BROKER_URL', default='memory://')
CELERY_RESULT_BACKEND = env('CELERY_RESULT_BACKEND', default='cache+memory://')

CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'

CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 5 * 60        # 5 minutes
CELERY_TASK_SOFT_TIME_LIMIT = 4 * 60   # 4 minutes
CELERY_TASK_ALWAYS_EAGER = env.bool('CELERY_TASK_ALWAYS_EAGER', default=False)

CELERY_TASK_DEFAULT_QUEUE = 'default'
CELERY_TASK_DEFAULT_EXCHANGE = 'default'
CELERY_TASK_DEFAULT_ROUTING_KEY = 'default'

CELERY_QUEUES = (
    Queue('default', Exchange('default'), routing_key='default'),
    Queue('monitoring', Exchange('monitoring'), routing_key='monitoring'),
    Queue('notifications', Exchange('notifications'), routing_key='notifications'),
)

CELERY_TASK_ROUTES = {
    'apps.monitoring.tasks.send_alert_notification': {'queue': 'notifications'},
    'apps.monitoring.tasks.*': {'queue': 'monitoring'},
}

CELERY_WORKER_PREFETCH_MULTIPLIER = 1
CELERY_ACKS_LATE = True

# ============================================================================
# AUTHORIZATION ENGINE
# ============================================================================

RBAC = {
    # Role name that bypasses every authorization and segregation check
    'SUPER_ADMIN_ROLE': env('RBAC_SUPER_ADMIN_ROLE', default='Super Admin'),
    # Seconds a resolved permission set stays cached (must stay below 20 minutes)
    'PERMISSION_CACHE_TTL': env.int('RBAC_PERMISSION_CACHE_TTL', default=600),
    # 'reject' refuses grants with unmet dependencies, 'include' grants them too
    'DEPENDENCY_POLICY': env('RBAC_DEPENDENCY_POLICY', default='reject'),
    'PERMISSION_SOURCES': env.list('RBAC_PERMISSION_SOURCES', default=[
        'apps.rbac.services.sources.NormalizedRoleSource',
        'apps.rbac.services.sources.LegacyRoleSource',
    ]),
    # WSGI META key carrying the user id set by the authentication gateway
    'IDENTITY_HEADER': env('RBAC_IDENTITY_HEADER', default='HTTP_X_AUTHENTICATED_USER_ID'),
}

PERMISSION_MONITORING = {
    'ENABLED': env.bool('PERMISSION_MONITORING_ENABLED', default=True),
    'THRESHOLDS': {
        'RESPONSE_TIME_MS': env.int('PERMISSION_RESPONSE_TIME_THRESHOLD_MS', default=500),
        'CACHE_HIT_RATE_MIN': env.float('PERMISSION_CACHE_HIT_RATE_MIN', default=0.8),
        'FAILED_ATTEMPTS_PER_MINUTE': env.int('PERMISSION_FAILED_ATTEMPTS_THRESHOLD', default=10),
        'DATABASE_WARNING_MS': env.int('PERMISSION_DATABASE_WARNING_MS', default=1000),
    },
    'ALERT_LEVELS': env.json('PERMISSION_ALERT_LEVELS', default={
        'critical': {'notify_immediately': True, 'email_alert': True, 'auto_escalate': True},
        'high': {'notify_immediately': True, 'email_alert': False, 'auto_escalate': False},
        'medium': {'notify_immediately': False, 'email_alert': False, 'auto_escalate': False},
        'low': {'notify_immediately': False, 'email_alert': False, 'auto_escalate': False},
    }),
    'ALERT_RECIPIENTS': env.list('PERMISSION_ALERT_RECIPIENTS', default=[]),
    'ESCALATION_RECIPIENTS': env.list('PERMISSION_ESCALATION_RECIPIENTS', default=[]),
    'RETENTION_DAYS': {
        'MONITORING_LOGS': env.int('PERMISSION_METRICS_RETENTION_DAYS', default=30),
        'HEALTH_CHECKS': env.int('PERMISSION_HEALTH_RETENTION_DAYS', default=30),
        'SESSION_ACTIONS': env.int('PERMISSION_AUDIT_RETENTION_DAYS', default=90),
        'RESOLVED_ALERTS': env.int('PERMISSION_ALERT_RETENTION_DAYS', default=90),
        'INACTIVE_SESSIONS': env.int('PERMISSION_SESSION_RETENTION_DAYS', default=7),
    },
    # Health status older than twice this interval is reported as stale
    'HEALTH_CHECK_INTERVAL_MINUTES': env.int('PERMISSION_HEALTH_CHECK_INTERVAL', default=15),
    'ANOMALY_DETECTION': {
        'BULK_GRANT_WINDOW_MINUTES': env.int('ANOMALY_BULK_GRANT_WINDOW', default=60),
        'BULK_GRANT_THRESHOLD': env.int('ANOMALY_BULK_GRANT_THRESHOLD', default=5),
        'HIGH_RISK_WINDOW_MINUTES': env.int('ANOMALY_HIGH_RISK_WINDOW', default=60),
        'HIGH_RISK_THRESHOLD': env.int('ANOMALY_HIGH_RISK_THRESHOLD', default=2),
        'HIGH_RISK_PERMISSIONS': env.list('ANOMALY_HIGH_RISK_PERMISSIONS', default=[
            'delete-users', 'manage-roles', 'system-admin',
        ]),
        'RAPID_CHANGE_WINDOW_MINUTES': env.int('ANOMALY_RAPID_CHANGE_WINDOW', default=30),
        'RAPID_CHANGE_THRESHOLD': env.int('ANOMALY_RAPID_CHANGE_THRESHOLD', default=10),
        'UNUSUAL_HOURS_START': env.int('ANOMALY_UNUSUAL_HOURS_START', default=0),
        'UNUSUAL_HOURS_END': env.int('ANOMALY_UNUSUAL_HOURS_END', default=6),
        'UNUSUAL_HOURS_LOOKBACK_HOURS': env.int('ANOMALY_UNUSUAL_HOURS_LOOKBACK', default=24),
    },
}

# Logging Configuration
LOG_LEVEL = env('LOG_LEVEL')
JSON_LOGS = env('JSON_LOGS')
# File handlers are only attached when a log directory is configured
LOG_DIR = env('LOG_DIR', default=None)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'json': {
            '()': 'apps.core.logging.JSONFormatter',
        },
        'verbose': {
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
            'style': '{',
        },
    },
    'filters': {
        'request_context': {
            '()': 'apps.core.middleware.LoggingFilter',
        },
    },
    'handlers': {
        'console': {
            'level': LOG_LEVEL,
            'class': 'logging.StreamHandler',
            'formatter': 'json' if JSON_LOGS else 'verbose',
            'filters': ['request_context'],
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'celery': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'apps': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'security': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}

if LOG_DIR:
    LOGGING['handlers']['file'] = {
        'level': 'INFO',
        'class': 'logging.handlers.RotatingFileHandler',
        'filename': os.path.join(LOG_DIR, 'authz.log'),
        'maxBytes': 1024 * 1024 * 10,  # 10 MB
        'backupCount': 5,
        'formatter': 'json' if JSON_LOGS else 'verbose',
        'filters': ['request_context'],
    }
    LOGGING['handlers']['security_file'] = {
        'level': 'INFO',
        'class': 'logging.handlers.RotatingFileHandler',
        'filename': os.path.join(LOG_DIR, 'security.log'),
        'maxBytes': 1024 * 1024 * 10,  # 10 MB
        'backupCount': 10,
        'formatter': 'json' if JSON_LOGS else 'verbose',
        'filters': ['request_context'],
    }
    for logger_name in ('celery', 'apps'):
        LOGGING['loggers'][logger_name]['handlers'].append('file')
    LOGGING['loggers']['security']['handlers'].append('security_file')

# Sentry Configuration
SENTRY_DSN = env('SENTRY_DSN', default=None)
SENTRY_ENVIRONMENT = env('SENTRY_ENVIRONMENT', default='development')
SENTRY_RELEASE = env('SENTRY_RELEASE', default=None)

if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[
            DjangoIntegration(),
            CeleryIntegration(),
        ],
        environment=SENTRY_ENVIRONMENT,
        release=SENTRY_RELEASE,
        traces_sample_rate=0.1 if not DEBUG else 1.0,
        send_default_pii=False,
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )

# Email Configuration
EMAIL_BACKEND = env('EMAIL_BACKEND', default='django.core.mail.backends.console.EmailBackend')
EMAIL_HOST = env('EMAIL_HOST', default='localhost')
EMAIL_PORT = env.int('EMAIL_PORT', default=587)
EMAIL_USE_TLS = env.bool('EMAIL_USE_TLS', default=True)
EMAIL_HOST_USER = env('EMAIL_HOST_USER', default='')
EMAIL_HOST_PASSWORD = env('EMAIL_HOST_PASSWORD', default='')
EMAIL_TIMEOUT = env.int('EMAIL_TIMEOUT', default=10)
DEFAULT_FROM_EMAIL = env('DEFAULT_FROM_EMAIL', default='security@hospital.local')
