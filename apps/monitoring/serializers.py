"""
Monitoring serializers for REST API endpoints.
"""
from rest_framework import serializers
from apps.core.platform_settings import SEVERITIES
from apps.monitoring.models import PermissionAlert, PermissionHealthCheck
from apps.monitoring.services.monitoring_service import HEALTH_CHECK_TYPES


class PermissionAlertSerializer(serializers.ModelSerializer):
    """Serializer for PermissionAlert model."""

    user_id = serializers.UUIDField(read_only=True, allow_null=True)
    acknowledged_by_id = serializers.UUIDField(read_only=True, allow_null=True)
    resolved_by_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = PermissionAlert
        fields = [
            'id', 'severity', 'title', 'message', 'metadata', 'status', 'user_id',
            'escalated_at', 'acknowledged_by_id', 'acknowledged_at',
            'resolved_by_id', 'resolved_at', 'created_at'
        ]
        read_only_fields = fields


class AlertFilterSerializer(serializers.Serializer):
    """Query parameters for the alert list."""

    severity = serializers.ChoiceField(choices=SEVERITIES, required=False)
    include_acknowledged = serializers.BooleanField(required=False, default=False)


class PermissionHealthCheckSerializer(serializers.ModelSerializer):
    """Serializer for PermissionHealthCheck model."""

    class Meta:
        model = PermissionHealthCheck
        fields = ['id', 'check_type', 'status', 'response_time_ms', 'details', 'checked_at']
        read_only_fields = fields


class HealthCheckTriggerSerializer(serializers.Serializer):
    """Serializer for triggering health checks; omit check_type to run all."""

    check_type = serializers.ChoiceField(choices=HEALTH_CHECK_TYPES, required=False)


class StatisticsPeriodSerializer(serializers.Serializer):
    """Optional reporting period."""

    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)

    def validate(self, data):
        start, end = data.get('start_date'), data.get('end_date')
        if start and end and start > end:
            raise serializers.ValidationError("start_date must be before end_date")
        return data
