"""
Permission change request workflow: pending -> approved | rejected | expired.
"""
import logging
from datetime import timedelta
from typing import Iterable, Optional
from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import Conflict, NotFound, PermissionDeniedError, ValidationError
from apps.rbac.models import Permission, PermissionChangeRequest, User
from apps.rbac.services.catalog import CatalogService
from apps.rbac.services.sessions import SessionAuditService
from apps.rbac.services.temporary import get_user

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY = timedelta(days=7)


def canonical_names(names: Iterable[str]):
    """
    Map requested names to catalog names, ignoring case.

    Returns:
        (canonical names in request order, unknown names)
    """
    canonical, unknown = [], []
    for name in names or []:
        permission = Permission.objects.by_name_ci(name.strip())
        if permission is None:
            unknown.append(name)
        elif permission.name not in canonical:
            canonical.append(permission.name)
    return canonical, unknown


class ChangeRequestService:
    """
    Service for permission change requests.

    Approval applies the request as user overrides in the same transaction.
    The requester and the subject of a request cannot approve it.
    """

    @classmethod
    def create(cls, user, requested_by: User, permissions_to_add: Iterable[str] = (),
               permissions_to_remove: Iterable[str] = (), reason: str = '',
               expires_at=None) -> PermissionChangeRequest:
        user = get_user(user)
        now = timezone.now()
        expires_at = expires_at or now + DEFAULT_EXPIRY
        if expires_at <= now:
            raise ValidationError("Expiry must be in the future", details={'expires_at': expires_at.isoformat()})

        to_add, unknown_add = canonical_names(permissions_to_add)
        to_remove, unknown_remove = canonical_names(permissions_to_remove)
        if unknown_add or unknown_remove:
            raise ValidationError(
                "Unknown permissions",
                details={'unknown_permissions': unknown_add + unknown_remove}
            )
        if not to_add and not to_remove:
            raise ValidationError("A change request must add or remove at least one permission")
        overlap = set(to_add) & set(to_remove)
        if overlap:
            raise ValidationError(
                "Permissions cannot be both added and removed",
                details={'permissions': sorted(overlap)}
            )

        with transaction.atomic():
            change_request = PermissionChangeRequest.objects.create(
                user=user,
                requested_by=requested_by,
                permissions_to_add=to_add,
                permissions_to_remove=to_remove,
                reason=reason,
                expires_at=expires_at,
            )
            SessionAuditService.record_for_actor(
                requested_by, 'create_change_request',
                {
                    'change_request_id': str(change_request.id),
                    'user_id': str(user.id),
                    'permissions_to_add': to_add,
                    'permissions_to_remove': to_remove,
                }
            )
        logger.info(f"Permission change request {change_request.id} created for user {user.id}")
        return change_request

    @classmethod
    def _get_pending_for_review(cls, request_id) -> PermissionChangeRequest:
        change_request = (
            PermissionChangeRequest.objects.select_for_update()
            .filter(pk=request_id)
            .first()
        )
        if change_request is None:
            raise NotFound(
                f"Change request '{request_id}' does not exist",
                details={'change_request_id': str(request_id)}
            )

        if change_request.is_terminal:
            raise Conflict(
                f"Change request is already {change_request.status}",
                details={'change_request_id': str(change_request.id), 'status': change_request.status}
            )
        return change_request

    @classmethod
    def approve(cls, request_id, reviewer: User, notes: str = '') -> PermissionChangeRequest:
        """
        Approve and apply a pending request.

        Raises:
            NotFound: Unknown request
            Conflict: Request is approved, rejected or expired
            PermissionDeniedError: Reviewer filed the request or is its subject
        """
        cls._expire_if_overdue(request_id)
        with transaction.atomic():
            change_request = cls._get_pending_for_review(request_id)
            if reviewer.pk in (change_request.user_id, change_request.requested_by_id):
                raise PermissionDeniedError(
                    "A change request must be approved by someone other than the requester or subject",
                    details={'change_request_id': str(change_request.id)}
                )

            CatalogService.update_user_permissions(
                change_request.user,
                add=change_request.permissions_to_add,
                remove=change_request.permissions_to_remove,
                reason=change_request.reason,
                actor=reviewer,
            )
            cls._close(change_request, PermissionChangeRequest.STATUS_APPROVED, reviewer, notes)
            SessionAuditService.record_for_actor(
                reviewer, 'approve_change_request',
                {'change_request_id': str(change_request.id), 'user_id': str(change_request.user_id)}
            )
        logger.info(f"Permission change request {change_request.id} approved by {reviewer.id}")
        return change_request

    @classmethod
    def reject(cls, request_id, reviewer: User, notes: str = '') -> PermissionChangeRequest:
        cls._expire_if_overdue(request_id)
        with transaction.atomic():
            change_request = cls._get_pending_for_review(request_id)
            cls._close(change_request, PermissionChangeRequest.STATUS_REJECTED, reviewer, notes)
            SessionAuditService.record_for_actor(
                reviewer, 'reject_change_request',
                {'change_request_id': str(change_request.id), 'user_id': str(change_request.user_id)}
            )
        logger.info(f"Permission change request {change_request.id} rejected by {reviewer.id}")
        return change_request

    @classmethod
    def _close(cls, change_request, status, reviewer: Optional[User], notes: str = ''):
        change_request.status = status
        change_request.reviewed_by = reviewer
        change_request.reviewed_at = timezone.now()
        change_request.review_notes = notes
        change_request.save(update_fields=['status', 'reviewed_by', 'reviewed_at', 'review_notes', 'updated_at'])

    @classmethod
    def _expire_if_overdue(cls, request_id):
        """Runs outside the review transaction so the expiry is kept when review fails."""
        now = timezone.now()
        PermissionChangeRequest.objects.overdue(now).filter(pk=request_id).update(
            status=PermissionChangeRequest.STATUS_EXPIRED,
            reviewed_at=now,
            updated_at=now,
        )

    @classmethod
    def expire_overdue(cls, now=None) -> int:
        """Move pending requests past their expiry to expired."""
        now = now or timezone.now()
        expired = PermissionChangeRequest.objects.overdue(now).update(
            status=PermissionChangeRequest.STATUS_EXPIRED,
            reviewed_at=now,
            updated_at=now,
        )
        if expired:
            logger.info(f"Expired {expired} overdue permission change requests")
        return expired

    @classmethod
    def list_requests(cls, status: Optional[str] = None, user=None):
        queryset = PermissionChangeRequest.objects.select_related('user', 'requested_by', 'reviewed_by')
        if status:
            queryset = queryset.filter(status=status)
        if user is not None:
            queryset = queryset.filter(user=user)
        return queryset.order_by('-created_at')
