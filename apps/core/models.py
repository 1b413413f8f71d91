"""
Core models for the authorization engine.
Provides BaseModel with UUID primary keys, soft delete, and timestamp fields,
and AppendOnlyModel for audit records that are never edited.
"""
import uuid
from django.db import models
from django.utils import timezone


class BaseModelManager(models.Manager):
    """Manager that excludes soft-deleted objects by default."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class BaseModelQuerySet(models.QuerySet):
    """QuerySet with soft delete support."""

    def delete(self):
        """Soft delete all objects in queryset."""
        return self.update(deleted_at=timezone.now())

    def hard_delete(self):
        """Permanently delete all objects in queryset."""
        return super().delete()

    def with_deleted(self):
        """Include soft-deleted objects."""
        return self.model.objects_with_deleted.all()


class BaseModel(models.Model):
    """
    Abstract base model with UUID primary key, soft delete, and timestamps.

    Catalog and grant records inherit from this model so that removals keep
    a trace for audit and anomaly review.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when the record was created"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        db_index=True,
        help_text="Timestamp when the record was last updated"
    )

    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp when the record was soft deleted"
    )

    # Default manager excludes soft-deleted objects
    objects = BaseModelManager.from_queryset(BaseModelQuerySet)()

    # Manager that includes soft-deleted objects
    objects_with_deleted = models.Manager.from_queryset(BaseModelQuerySet)()

    class Meta:
        abstract = True
        ordering = ['-created_at']

    def delete(self, using=None, keep_parents=False):
        """Soft delete the object."""
        self.deleted_at = timezone.now()
        self.save(using=using)

    def hard_delete(self, using=None, keep_parents=False):
        """Permanently delete the object."""
        super().delete(using=using, keep_parents=keep_parents)

    def restore(self):
        """Restore a soft-deleted object."""
        self.deleted_at = None
        self.save()

    @property
    def is_deleted(self):
        """Check if the object is soft deleted."""
        return self.deleted_at is not None


class AppendOnlyQuerySet(models.QuerySet):
    """QuerySet for append-only records; rows only leave through retention purges."""

    def update(self, **kwargs):
        raise TypeError(f"{self.model.__name__} rows are append-only")

    def delete(self):
        raise TypeError(
            f"{self.model.__name__} rows are append-only; use purge_older_than()"
        )

    def purge_older_than(self, cutoff, field='created_at'):
        """Permanently remove rows older than cutoff. Returns the number deleted."""
        expired = self.filter(**{f'{field}__lt': cutoff})
        deleted, _ = models.QuerySet.delete(expired)
        return deleted


class AppendOnlyModel(models.Model):
    """
    Abstract base for audit trail rows.

    Rows can be inserted and read. Saving an existing row or deleting a
    single instance raises TypeError.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )

    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="Timestamp when the record was appended"
    )

    objects = AppendOnlyQuerySet.as_manager()

    class Meta:
        abstract = True
        ordering = ['-created_at']

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise TypeError(f"{self.__class__.__name__} rows are append-only")
        super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise TypeError(f"{self.__class__.__name__} rows are append-only")
