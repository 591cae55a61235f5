"""
Abstract base model shared by every persisted entity.

Orders, milestones, revenue accounts and webhook events all carry the
same creation/modification timestamps. Money and state live in the
concrete models; this module only holds the bookkeeping columns.

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin

    class PaymentMilestone(UUIDPrimaryKeyMixin, BaseModel):
        amount = models.DecimalField(max_digits=12, decimal_places=2)

Note:
    List mixins before BaseModel in the inheritance chain so the mixin
    fields are declared first.
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """
    Abstract model adding created_at/updated_at.

    Fields:
        created_at: Set once on insert, indexed for time-range scans
        updated_at: Refreshed on every save
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self.pk})"
