"""
Session and action audit trail.

Every permission mutation appends a SessionAction to the acting user's
current PermissionSession inside the mutation's transaction.
"""
import logging
from datetime import timedelta
from typing import Optional
from django.db import transaction
from django.utils import timezone

from apps.core.platform_settings import PlatformSettings
from apps.rbac.models import PermissionSession, SessionAction

logger = logging.getLogger(__name__)


class SessionAuditService:
    """Service for permission sessions and their append-only actions."""

    # A session with no activity for this long is no longer current
    IDLE_TIMEOUT = timedelta(minutes=30)

    @classmethod
    def open_session(cls, user, ip_address=None, user_agent='') -> PermissionSession:
        now = timezone.now()
        session = PermissionSession.objects.create(
            user=user,
            started_at=now,
            last_activity=now,
            ip_address=ip_address,
            user_agent=user_agent or '',
        )
        logger.info(f"Permission session {session.id} opened for user {user.id}")
        return session

    @classmethod
    def current_session(cls, user, now=None) -> Optional[PermissionSession]:
        """Most recent open session with activity inside the idle timeout."""
        now = now or timezone.now()
        return PermissionSession.objects.filter(
            user=user,
            ended_at__isnull=True,
            last_activity__gt=now - cls.IDLE_TIMEOUT,
        ).order_by('-last_activity').first()

    @classmethod
    def get_or_open_session(cls, user, ip_address=None, user_agent='') -> PermissionSession:
        return cls.current_session(user) or cls.open_session(user, ip_address, user_agent)

    @classmethod
    def end_session(cls, session) -> PermissionSession:
        if session.ended_at is None:
            session.ended_at = timezone.now()
            session.save(update_fields=['ended_at', 'updated_at'])
        return session

    @classmethod
    def append_action(cls, session, action_type: str, details: dict = None, performed_at=None) -> SessionAction:
        """
        Append an action to a session and bump its last activity.

        Raises on failure; use record_session_action() for fire-and-forget.
        """
        performed_at = performed_at or timezone.now()
        action = SessionAction.objects.create(
            session=session,
            action_type=action_type,
            performed_at=performed_at,
            details=details or {},
        )
        PermissionSession.objects.filter(
            pk=session.pk,
            last_activity__lt=performed_at,
        ).update(last_activity=performed_at)
        return action

    @classmethod
    def record_for_actor(cls, actor, action_type: str, details: dict = None) -> Optional[SessionAction]:
        """
        Append an action to the actor's current session, opening one if needed.

        System changes (no actor) are not attached to a session.
        """
        if actor is None:
            logger.info(f"System action {action_type} recorded without session", extra={'details': details})
            return None
        session = cls.get_or_open_session(actor)
        return cls.append_action(session, action_type, details)

    @classmethod
    def record_session_action(cls, session, action_type: str, details: dict = None) -> Optional[SessionAction]:
        """
        Fire-and-forget variant of append_action().

        Failures are logged and never raised to the caller.
        """
        try:
            with transaction.atomic():
                return cls.append_action(session, action_type, details)
        except Exception:
            logger.exception(
                f"Failed to record session action {action_type}",
                extra={'session_id': str(getattr(session, 'pk', session))}
            )
            return None

    @classmethod
    def list_actions(cls, session=None, user=None, action_type=None, since=None):
        queryset = SessionAction.objects.select_related('session')
        if session is not None:
            queryset = queryset.filter(session=session)
        if user is not None:
            queryset = queryset.filter(session__user=user)
        if action_type:
            queryset = queryset.filter(action_type=action_type)
        if since is not None:
            queryset = queryset.filter(performed_at__gte=since)
        return queryset.order_by('-performed_at')

    @classmethod
    def cleanup(cls, now=None) -> dict:
        """
        Retention cleanup.

        Ends sessions idle longer than INACTIVE_SESSIONS days, purges
        actions older than SESSION_ACTIONS days and deletes ended sessions
        left without actions.
        """
        now = now or timezone.now()
        idle_cutoff = now - timedelta(days=PlatformSettings.get_retention_days('INACTIVE_SESSIONS'))
        action_cutoff = now - timedelta(days=PlatformSettings.get_retention_days('SESSION_ACTIONS'))

        ended = PermissionSession.objects.filter(
            ended_at__isnull=True,
            last_activity__lt=idle_cutoff,
        ).update(ended_at=now)

        purged = SessionAction.objects.purge_older_than(action_cutoff, field='performed_at')

        empty_sessions = PermissionSession.objects.filter(
            ended_at__isnull=False,
            ended_at__lt=action_cutoff,
            actions__isnull=True,
        )
        deleted, _ = empty_sessions.hard_delete()

        logger.info(
            "Session retention cleanup complete",
            extra={'sessions_ended': ended, 'actions_purged': purged, 'sessions_deleted': deleted}
        )
        return {
            'sessions_ended': ended,
            'actions_purged': purged,
            'sessions_deleted': deleted,
        }
