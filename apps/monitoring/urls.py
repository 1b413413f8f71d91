"""
Monitoring API URLs.

Provides endpoints for:
- Dashboard and metric statistics
- Alerts
- Health checks
- Anomaly detection
"""
from django.urls import path
from apps.monitoring.views import (
    MonitoringDashboardView,
    MonitoringStatisticsView,
    AlertListView,
    AlertStatisticsView,
    AlertAcknowledgeView,
    AlertResolveView,
    HealthStatusView,
    HealthCheckTriggerView,
    AnomalyListView,
    AnomalyScanView,
    AnomalyStatsView,
)

app_name = 'monitoring'

urlpatterns = [
    path('dashboard', MonitoringDashboardView.as_view(), name='dashboard'),
    path('statistics', MonitoringStatisticsView.as_view(), name='statistics'),

    # Alerts
    path('alerts', AlertListView.as_view(), name='alert-list'),
    path('alerts/statistics', AlertStatisticsView.as_view(), name='alert-statistics'),
    path('alerts/<uuid:alert_id>/acknowledge', AlertAcknowledgeView.as_view(), name='alert-acknowledge'),
    path('alerts/<uuid:alert_id>/resolve', AlertResolveView.as_view(), name='alert-resolve'),

    # Health
    path('health', HealthStatusView.as_view(), name='health-status'),
    path('health/check', HealthCheckTriggerView.as_view(), name='health-check-trigger'),

    # Anomalies
    path('anomalies', AnomalyListView.as_view(), name='anomaly-list'),
    path('anomalies/scan', AnomalyScanView.as_view(), name='anomaly-scan'),
    path('anomalies/stats', AnomalyStatsView.as_view(), name='anomaly-stats'),
]
