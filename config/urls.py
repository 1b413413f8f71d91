"""
URL configuration for the authorization engine.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # API v1
    path('v1/', include('apps.core.urls')),

    # RBAC endpoints
    path('v1/', include('apps.rbac.urls')),  # Permissions, roles, overrides, temporary grants, SoD, change requests, sessions

    # Monitoring endpoints
    path('v1/monitoring/', include('apps.monitoring.urls')),  # Dashboard, alerts, health, anomalies
]
