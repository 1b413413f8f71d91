"""
Exception hierarchy for the authorization engine and the DRF handler that
renders it.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)


class AuthzException(Exception):
    """Base exception for authorization engine errors."""
    status_code = 500
    code = 'AUTHZ_ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFound(AuthzException):
    """Raised when a user, permission, role or grant reference does not exist."""
    status_code = 404
    code = 'NOT_FOUND'


class ValidationError(AuthzException):
    """Raised when input validation fails before any write."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class Conflict(AuthzException):
    """Raised when a request contradicts current state (protected role, terminal request, duplicate grant)."""
    status_code = 409
    code = 'CONFLICT'


class StorageUnavailable(AuthzException):
    """Raised when the database or cache cannot be reached."""
    status_code = 503
    code = 'STORAGE_UNAVAILABLE'


class PermissionDeniedError(AuthzException):
    """Raised when user lacks required permissions."""
    status_code = 403
    code = 'PERMISSION_DENIED'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.

    AuthzException subclasses are rendered as
    {error, code, details, request_id} with their own status code.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, AuthzException):
        log_method = logger.error if exc.status_code >= 500 else logger.warning
        log_method(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'exception': exc.message,
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            }
        )
        return Response(
            {
                'error': exc.message,
                'code': exc.code,
                'details': exc.details,
                'request_id': request_id,
            },
            status=exc.status_code
        )

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    logger.error(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        },
        exc_info=response is None
    )

    # If DRF didn't handle it, return a generic 500 error
    if response is None:
        return Response(
            {
                'error': 'Internal server error',
                'code': 'INTERNAL_ERROR',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    # Add request_id to all error responses
    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
