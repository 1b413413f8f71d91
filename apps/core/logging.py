"""
Custom logging formatters for structured JSON logging, and the security
event logger used by the authorization engine.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.
    """

    # Patterns for sensitive data
    PHONE_PATTERN = re.compile(r'\+?\d{10,15}')
    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b')
    API_KEY_PATTERN = re.compile(r'(api[_-]?key|token|secret|password|auth)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE)
    MRN_PATTERN = re.compile(r'\bMRN[-:\s]?\d{5,}\b', re.IGNORECASE)

    # Sensitive field names that should be masked
    SENSITIVE_FIELDS = {
        'phone', 'phone_number', 'mobile',
        'email', 'email_address',
        'password', 'passwd',
        'api_key', 'access_token', 'refresh_token', 'bearer_token',
        'secret', 'secret_key',
        'patient_name', 'date_of_birth', 'medical_record_number', 'national_id',
        'diagnosis',
    }

    @classmethod
    def mask_phone(cls, text):
        """Mask phone numbers in text."""
        if not isinstance(text, str):
            return text
        return cls.PHONE_PATTERN.sub(lambda m: m.group(0)[:3] + '*' * (len(m.group(0)) - 3), text)

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            masked_username = username[0] + '*' * (len(username) - 1) if len(username) > 1 else username
            return f"{masked_username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_api_keys(cls, text):
        """Mask API keys, tokens, and secrets in text."""
        if not isinstance(text, str):
            return text
        return cls.API_KEY_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_record_numbers(cls, text):
        """Mask medical record numbers in text."""
        if not isinstance(text, str):
            return text
        return cls.MRN_PATTERN.sub('MRN-********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        text = cls.mask_record_numbers(text)
        text = cls.mask_phone(text)
        text = cls.mask_email(text)
        text = cls.mask_api_keys(text)
        return text

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if any(sensitive in key.lower() for sensitive in cls.SENSITIVE_FIELDS):
                if value and not isinstance(value, (dict, list)):
                    masked[key] = '********'
                else:
                    masked[key] = value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict)
                    else cls.mask_text(item) if isinstance(item, str)
                    else item
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value

        return masked


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id and task_id from extra fields if available.
    Automatically masks sensitive PII data.
    """

    RESERVED_ATTRS = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
        'pathname', 'process', 'processName', 'relativeCreated',
        'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
        'taskName', 'request_id', 'task_id', 'task_name',
    }

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if hasattr(record, 'request_id'):
            log_data['request_id'] = record.request_id

        # Celery task context
        if hasattr(record, 'task_id'):
            log_data['task_id'] = record.task_id
        if hasattr(record, 'task_name'):
            log_data['task_name'] = record.task_name

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        # Add any extra fields
        for key, value in record.__dict__.items():
            if key in self.RESERVED_ATTRS or key.startswith('_'):
                continue
            try:
                if isinstance(value, dict):
                    masked_value = PIIMasker.mask_dict(value)
                elif isinstance(value, str):
                    masked_value = PIIMasker.mask_text(value)
                else:
                    masked_value = value

                json.dumps(masked_value)  # Test if serializable
                log_data[key] = masked_value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized security event logging for authorization events.

    Every event is written to the 'security' logger with structured data:
    event type, timestamp, the user involved and additional context.
    Critical events are also sent to Sentry for real-time alerting.
    """

    # Event types that always alert via Sentry
    CRITICAL_EVENTS = {
        'segregation_violation_blocked',
        'authorization_fail_closed',
        'alert_notify_immediately',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'permission_denied', 'anomaly_detected')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (user_id, permission, ip_address, etc.)

        Example:
            >>> SecurityLogger.log_event(
            ...     'permission_denied',
            ...     user_id='6d1c...',
            ...     permission='view-patients'
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(
            f"Security event: {event_type}",
            extra=log_data
        )

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
                extras=log_data
            )

    @staticmethod
    def log_permission_denied(user_id: str, permission: str, breakdown: dict = None,
                              ip_address: str = None, path: str = None):
        """
        Log a permission denial with the per-source breakdown used to diagnose it.

        Args:
            user_id: User that was denied
            permission: Permission name that was checked
            breakdown: Result of PermissionResolver.explain()
            ip_address: IP address of the request
            path: Request path, when the check came from an HTTP request
        """
        SecurityLogger.log_event(
            'permission_denied',
            level='warning',
            user_id=user_id,
            permission=permission,
            breakdown=breakdown or {},
            ip_address=ip_address,
            path=path,
        )

    @staticmethod
    def log_fail_closed(user_id: str, permission: str, error: str):
        """
        Log an authorization check that was denied because storage failed.
        """
        SecurityLogger.log_event(
            'authorization_fail_closed',
            level='error',
            user_id=user_id,
            permission=permission,
            error=error,
        )

    @staticmethod
    def log_segregation_violation(user_id: str, violations: list, blocked: bool,
                                  ip_address: str = None, path: str = None):
        """
        Log segregation-of-duties violations held by a user.

        Args:
            user_id: User holding the conflicting permissions
            violations: List of violation dicts (permissions, severity, description)
            blocked: Whether the request was rejected
            ip_address: IP address of the request
            path: Request path
        """
        SecurityLogger.log_event(
            'segregation_violation_blocked' if blocked else 'segregation_violation',
            level='error' if blocked else 'warning',
            user_id=user_id,
            violations=violations,
            ip_address=ip_address,
            path=path,
        )

    @staticmethod
    def log_anomaly(anomaly_type: str, severity: str, user_id: str, description: str, data: dict = None):
        """
        Log a detected permission anomaly.
        """
        level = 'error' if severity in ('high', 'critical') else 'warning'
        SecurityLogger.log_event(
            'anomaly_detected',
            level=level,
            anomaly_type=anomaly_type,
            severity=severity,
            user_id=user_id,
            description=description,
            data=data or {},
        )

    @staticmethod
    def log_grant_change(action: str, user_id: str, permission: str, actor_id: str = None, **additional_context):
        """
        Log a temporary grant, revocation or override change.

        Args:
            action: e.g. 'grant_temporary_permission', 'revoke_temporary_permission'
            user_id: User whose permissions changed
            permission: Permission name affected
            actor_id: User who performed the change
        """
        SecurityLogger.log_event(
            action,
            level='info',
            user_id=user_id,
            permission=permission,
            actor_id=actor_id,
            **additional_context
        )
