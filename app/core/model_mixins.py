"""
Model mixins combined with core.models.BaseModel.

Available Mixins:
    UUIDPrimaryKeyMixin: UUID primary key (orders, milestones, events)
    VersionedMixin: Monotonic version column for optimistic concurrency

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

    class Order(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
        ...

Note:
    Always list mixins before BaseModel in inheritance.
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use a UUID primary key instead of an auto-increment integer.

    Identifiers are handed to the payment provider as metadata and
    exposed in URLs, so they must not be guessable or reveal volume.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Version counter incremented on every update.

    Updates write ``version = version + 1`` at the database level and
    then reload the value, so two writers never observe the same
    version. Callers that read a version can pass it back to
    payments.locks.check_version to detect a concurrent modification.

    Usage:
        order = Order.objects.get(pk=pk)
        check_version(Order, order.pk, expected_version)
        order.save()  # version bumps atomically
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Row version for optimistic concurrency control",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None and "version" not in update_fields:
                kwargs["update_fields"] = [*update_fields, "version"]
        super().save(*args, **kwargs)
        if not isinstance(self.version, int):
            self.refresh_from_db(fields=["version"])
