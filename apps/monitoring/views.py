"""
Monitoring REST API views.

Implements endpoints for:
- Monitoring dashboard and metric statistics
- Alerts (list, acknowledge, resolve, statistics)
- Health status and on-demand health checks
- Anomaly detection, scans and statistics
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from apps.core.pagination import paginated_response
from apps.core.permissions import HasPermissions, requires_permissions
from apps.monitoring.services import MonitoringService, AlertService, AnomalyDetector
from apps.monitoring.serializers import (
    PermissionAlertSerializer, AlertFilterSerializer,
    PermissionHealthCheckSerializer, HealthCheckTriggerSerializer,
    StatisticsPeriodSerializer
)


def _period(request):
    serializer = StatisticsPeriodSerializer(data=request.query_params)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data.get('start_date'), serializer.validated_data.get('end_date')


# ===== DASHBOARD AND STATISTICS =====

@extend_schema_view(
    get=extend_schema(
        tags=['Monitoring'],
        summary='Monitoring dashboard',
        description='''
Everything the monitoring dashboard shows in one response: metric
statistics for the last 7 days, alert statistics for the last 30 days,
anomaly counters and the latest health check per type.

**Required permission:** `view-monitoring`
        ''',
        responses={200: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('view-monitoring')
class MonitoringDashboardView(APIView):
    """
    GET /v1/monitoring/dashboard
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        return Response({
            'metrics': MonitoringService.get_statistics(),
            'alerts': AlertService.get_alert_statistics(),
            'anomalies': AnomalyDetector.get_anomaly_stats(),
            'health': MonitoringService.get_health_status(),
        })


@extend_schema_view(
    get=extend_schema(
        tags=['Monitoring'],
        summary='Metric statistics',
        description='''
Response times of slow checks, cache hit rate, failed permission attempts
and failed logins over a period (default: the last 7 days).

**Required permission:** `view-monitoring`
        ''',
        parameters=[
            OpenApiParameter('start_date', OpenApiTypes.DATETIME, required=False),
            OpenApiParameter('end_date', OpenApiTypes.DATETIME, required=False),
        ],
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('view-monitoring')
class MonitoringStatisticsView(APIView):
    """
    GET /v1/monitoring/statistics
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        start_date, end_date = _period(request)
        return Response(MonitoringService.get_statistics(start_date, end_date))


# ===== ALERTS =====

@extend_schema_view(
    get=extend_schema(
        tags=['Monitoring - Alerts'],
        summary='List active alerts',
        description='''
Active alerts, newest first. Pass `include_acknowledged=true` to also list
acknowledged alerts that are not resolved yet.

**Required permission:** `view-monitoring`
        ''',
        parameters=[
            OpenApiParameter('severity', OpenApiTypes.STR, required=False, enum=['critical', 'high', 'medium', 'low']),
            OpenApiParameter('include_acknowledged', OpenApiTypes.BOOL, required=False),
            OpenApiParameter('page', OpenApiTypes.INT, required=False),
            OpenApiParameter('page_size', OpenApiTypes.INT, required=False),
        ],
        responses={200: PermissionAlertSerializer(many=True)}
    )
)
@requires_permissions('view-monitoring')
class AlertListView(APIView):
    """
    GET /v1/monitoring/alerts
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        filters = AlertFilterSerializer(data=request.query_params)
        filters.is_valid(raise_exception=True)
        alerts = AlertService.get_active_alerts(
            severity=filters.validated_data.get('severity'),
            include_acknowledged=filters.validated_data['include_acknowledged'],
        )
        return paginated_response(request, alerts, PermissionAlertSerializer, 'alerts')


@extend_schema_view(
    get=extend_schema(
        tags=['Monitoring - Alerts'],
        summary='Alert statistics',
        description='''
Alert counts by severity and status over a period (default: the last 30
days), plus the current number of active alerts and unresolved critical
alerts.

**Required permission:** `view-monitoring`
        ''',
        parameters=[
            OpenApiParameter('start_date', OpenApiTypes.DATETIME, required=False),
            OpenApiParameter('end_date', OpenApiTypes.DATETIME, required=False),
        ],
        responses={200: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('view-monitoring')
class AlertStatisticsView(APIView):
    """
    GET /v1/monitoring/alerts/statistics
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        start_date, end_date = _period(request)
        return Response(AlertService.get_alert_statistics(start_date, end_date))


@extend_schema_view(
    post=extend_schema(
        tags=['Monitoring - Alerts'],
        summary='Acknowledge alert',
        description='Acknowledging an acknowledged alert returns it unchanged. Resolved alerts return 409.',
        request=None,
        responses={200: PermissionAlertSerializer, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('manage-alerts')
class AlertAcknowledgeView(APIView):
    """
    POST /v1/monitoring/alerts/{alert_id}/acknowledge
    """

    permission_classes = [HasPermissions]

    def post(self, request, alert_id):
        alert = AlertService.acknowledge_alert(alert_id, request.user)
        return Response(PermissionAlertSerializer(alert).data)


@extend_schema_view(
    post=extend_schema(
        tags=['Monitoring - Alerts'],
        summary='Resolve alert',
        description='Resolving an already resolved alert returns 409.',
        request=None,
        responses={200: PermissionAlertSerializer, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('manage-alerts')
class AlertResolveView(APIView):
    """
    POST /v1/monitoring/alerts/{alert_id}/resolve
    """

    permission_classes = [HasPermissions]

    def post(self, request, alert_id):
        alert = AlertService.resolve_alert(alert_id, request.user)
        return Response(PermissionAlertSerializer(alert).data)


# ===== HEALTH =====

@extend_schema_view(
    get=extend_schema(
        tags=['Monitoring'],
        summary='Health status',
        description='''
Latest persisted result for each health check type (`null` when a type has
never been checked).

**Required permission:** `view-monitoring`
        ''',
        responses={200: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('view-monitoring')
class HealthStatusView(APIView):
    """
    GET /v1/monitoring/health
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        return Response(MonitoringService.get_health_status())


@extend_schema_view(
    post=extend_schema(
        tags=['Monitoring'],
        summary='Run health checks',
        description='''
Run one health check (`database`, `cache` or `queue`) or all of them when
`check_type` is omitted. Results are persisted.

**Required permission:** `run-anomaly-scan`
        ''',
        request=HealthCheckTriggerSerializer,
        responses={201: PermissionHealthCheckSerializer(many=True), 400: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('run-anomaly-scan')
class HealthCheckTriggerView(APIView):
    """
    POST /v1/monitoring/health/check
    """

    permission_classes = [HasPermissions]

    def post(self, request):
        serializer = HealthCheckTriggerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        check_type = serializer.validated_data.get('check_type')

        if check_type:
            results = [MonitoringService.perform_health_check(check_type)]
        else:
            results = list(MonitoringService.run_health_checks().values())
        return Response(
            {'health_checks': PermissionHealthCheckSerializer(results, many=True).data},
            status=status.HTTP_201_CREATED
        )


# ===== ANOMALIES =====

@extend_schema_view(
    get=extend_schema(
        tags=['Monitoring - Anomalies'],
        summary='Detect anomalies',
        description='''
Run detection without logging or alerting. Checks that failed are listed in
`failed_checks`.

**Required permission:** `view-monitoring`
        ''',
        responses={200: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('view-monitoring')
class AnomalyListView(APIView):
    """
    GET /v1/monitoring/anomalies
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        anomalies = AnomalyDetector.detect_anomalies()
        return Response({
            'count': len(anomalies),
            'anomalies': [anomaly.as_dict() for anomaly in anomalies],
            'failed_checks': anomalies.failed_checks,
        })


@extend_schema_view(
    post=extend_schema(
        tags=['Monitoring - Anomalies'],
        summary='Run anomaly scan',
        description='''
Detect anomalies, write each to the security log and raise an alert for
every high or critical finding.

**Required permission:** `run-anomaly-scan`
        ''',
        request=None,
        responses={200: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('run-anomaly-scan')
class AnomalyScanView(APIView):
    """
    POST /v1/monitoring/anomalies/scan
    """

    permission_classes = [HasPermissions]

    def post(self, request):
        anomalies = AnomalyDetector.run_anomaly_scan()
        return Response({
            'count': len(anomalies),
            'anomalies': [anomaly.as_dict() for anomaly in anomalies],
            'failed_checks': anomalies.failed_checks,
        })


@extend_schema_view(
    get=extend_schema(
        tags=['Monitoring - Anomalies'],
        summary='Anomaly statistics',
        description='''
Anomalies detected now, high severity findings, high-risk grants in the
last 24 hours, failed logins today and unusual-hour actions.

**Required permission:** `view-monitoring`
        ''',
        responses={200: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('view-monitoring')
class AnomalyStatsView(APIView):
    """
    GET /v1/monitoring/anomalies/stats
    """

    permission_classes = [HasPermissions]

    def get(self, request):
        return Response(AnomalyDetector.get_anomaly_stats())
