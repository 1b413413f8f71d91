from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging
import sys

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate authorization engine configuration at startup.

        Misconfigured cache TTLs, dependency policies or alert routing tables
        stop the process before it serves requests.
        """
        from apps.core.platform_settings import PlatformSettings

        problems = PlatformSettings.validate()
        if problems:
            raise ImproperlyConfigured(
                "Invalid authorization engine configuration: " + "; ".join(problems)
            )

        if self._is_serving():
            self._validate_security_settings()

    @staticmethod
    def _is_serving():
        argv0 = sys.argv[0] if sys.argv else ''
        return 'gunicorn' in argv0 or 'uvicorn' in argv0 or 'runserver' in sys.argv

    def _validate_security_settings(self):
        """Reject development secrets when DEBUG is off."""
        if settings.DEBUG:
            return

        secret_key = settings.SECRET_KEY or ''
        if 'insecure' in secret_key.lower() or len(secret_key) < 50:
            raise ImproperlyConfigured(
                "SECRET_KEY appears to be a development or weak value. "
                "Generate a strong key with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(50))\""
            )

        if not getattr(settings, 'SECURE_SSL_REDIRECT', False):
            logger.warning(
                "SECURE_SSL_REDIRECT is not enabled in production. "
                "HTTPS should be enforced for security."
            )

        logger.info("Security settings validated")
