"""
TimelineExtension: a buyer-paid extension of an order's delivery date.

The extension is paid with its own automatic-capture payment intent. On
success the order's delivery_date moves and the seller's share is
credited to pending revenue, to be released together with the order. If
the order is cancelled the extension is refunded as well.
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import TimelineExtensionStatus


class TimelineExtension(UUIDPrimaryKeyMixin, BaseModel):
    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="timeline_extensions",
    )
    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
    )
    extension_days = models.PositiveSmallIntegerField()

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Total charged to the buyer, fee and VAT included",
    )
    seller_revenue_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    currency = models.CharField(max_length=3, default="USD")

    stripe_payment_intent_id = models.CharField(max_length=255, unique=True)
    status = models.CharField(
        max_length=20,
        choices=TimelineExtensionStatus.choices,
        default=TimelineExtensionStatus.PENDING,
        db_index=True,
    )
    previous_deadline = models.DateTimeField()
    new_deadline = models.DateTimeField()
    completed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Timeline Extension"
        verbose_name_plural = "Timeline Extensions"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(extension_days__gte=1) & models.Q(extension_days__lte=90),
                name="timeline_extension_days_range",
            ),
        ]

    def __str__(self) -> str:
        return f"TimelineExtension({self.order_id}, +{self.extension_days}d, {self.status})"
