"""
Core API views.
"""
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from django.db import connection
from django.core.cache import cache
from drf_spectacular.utils import extend_schema
import logging

logger = logging.getLogger(__name__)


class HealthCheckView(APIView):
    """
    Liveness endpoint for load balancers.

    GET /v1/health/

    Returns 200 if the database and cache respond, 503 otherwise. Persisted
    health checks with latency live under /v1/monitoring/health.
    """
    authentication_classes = []
    permission_classes = []

    @extend_schema(
        tags=['Monitoring'],
        summary="Liveness check",
        description="Check that the database and cache respond",
        responses={
            200: {
                'type': 'object',
                'properties': {
                    'status': {'type': 'string'},
                    'database': {'type': 'string'},
                    'cache': {'type': 'string'},
                }
            },
            503: {
                'type': 'object',
                'properties': {
                    'status': {'type': 'string'},
                    'database': {'type': 'string'},
                    'cache': {'type': 'string'},
                    'errors': {'type': 'array', 'items': {'type': 'string'}},
                }
            }
        }
    )
    def get(self, request):
        health_status = {
            'status': 'healthy',
            'database': 'unknown',
            'cache': 'unknown',
        }
        errors = []

        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1")
            health_status['database'] = 'healthy'
        except Exception as e:
            health_status['database'] = 'unhealthy'
            errors.append(f"Database: {str(e)}")
            logger.error("Database liveness check failed", exc_info=True)

        try:
            cache.set('liveness_check', 'ok', timeout=10)
            if cache.get('liveness_check') == 'ok':
                health_status['cache'] = 'healthy'
            else:
                health_status['cache'] = 'unhealthy'
                errors.append("Cache: Unable to read test key")
        except Exception as e:
            health_status['cache'] = 'unhealthy'
            errors.append(f"Cache: {str(e)}")
            logger.error("Cache liveness check failed", exc_info=True)

        if errors:
            health_status['status'] = 'unhealthy'
            health_status['errors'] = errors
            return Response(health_status, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(health_status, status=status.HTTP_200_OK)
