"""
Permission monitoring: metrics, health checks, alerts and anomaly detection.
"""
