"""
Monitoring services.
"""
from apps.monitoring.services.monitoring_service import MonitoringService
from apps.monitoring.services.alert_service import AlertService
from apps.monitoring.services.anomaly_detector import Anomaly, AnomalyResult, AnomalyDetector
from apps.monitoring.services.maintenance import MaintenanceService

__all__ = [
    'MonitoringService',
    'AlertService',
    'Anomaly',
    'AnomalyResult',
    'AnomalyDetector',
    'MaintenanceService',
]
