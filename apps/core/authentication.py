"""
Custom DRF authentication classes.
"""
import logging
import uuid
from django.contrib.auth import get_user_model
from rest_framework.authentication import BaseAuthentication
from rest_framework import exceptions

from apps.core.platform_settings import PlatformSettings
from apps.core.sentry_utils import set_user_context

logger = logging.getLogger(__name__)


class UpstreamIdentityAuthentication(BaseAuthentication):
    """
    DRF authentication class that trusts the identity asserted by the gateway.

    Credentials are verified upstream; the gateway forwards the user id in a
    header (RBAC['IDENTITY_HEADER'], X-Authenticated-User-Id by default).
    This class loads the matching active user.
    """

    def authenticate(self, request):
        """
        Return the user named by the identity header.

        Returns:
            tuple: (user, None) if the header names an active user, None if
            the header is absent
        """
        header = PlatformSettings.get_rbac_config()['IDENTITY_HEADER']
        raw_user_id = request.META.get(header)
        if not raw_user_id:
            return None

        try:
            user_id = uuid.UUID(str(raw_user_id))
        except ValueError:
            raise exceptions.AuthenticationFailed('Malformed user identity')

        User = get_user_model()
        user = User.objects.filter(id=user_id, is_active=True).first()
        if user is None:
            logger.warning(
                "Upstream identity does not match an active user",
                extra={
                    'user_id': str(user_id),
                    'request_id': getattr(request._request, 'request_id', None),
                }
            )
            raise exceptions.AuthenticationFailed('Unknown or inactive user')

        set_user_context(user)
        return (user, None)

    def authenticate_header(self, request):
        return 'Upstream'
