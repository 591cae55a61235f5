"""
PromotionPurchase: a paid gig promotion.

Created when the automatic-capture promotion payment succeeds; the
unique payment intent id makes webhook replays a no-op. The hourly
payments.tasks.expire_promotions job flips elapsed rows to EXPIRED.
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import PromotionStatus

# Promotion plans offered at checkout. Price in currency units; higher
# priority ranks first in search. Plans without duration_days run for
# PROMOTION_DEFAULT_DURATION_DAYS.
PROMOTION_PLANS: dict[str, dict] = {
    "basic": {"name": "Basic Boost", "price": Decimal("9.99"), "priority": 1, "duration_days": 7},
    "standard": {"name": "Standard Boost", "price": Decimal("19.99"), "priority": 2, "duration_days": 14},
    "premium": {"name": "Premium Boost", "price": Decimal("39.99"), "priority": 3},
    "ultimate": {"name": "Ultimate Boost", "price": Decimal("79.99"), "priority": 4},
}


class PromotionPurchaseQuerySet(models.QuerySet):
    def active(self):
        return self.filter(status=PromotionStatus.ACTIVE, expires_at__gt=timezone.now())

    def elapsed(self):
        return self.filter(status=PromotionStatus.ACTIVE, expires_at__lte=timezone.now())


class PromotionPurchase(UUIDPrimaryKeyMixin, BaseModel):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="promotion_purchases",
    )
    gig_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    promotion_scope = models.CharField(max_length=20, default="gig")

    plan_key = models.CharField(max_length=20)
    plan_name = models.CharField(max_length=100)
    priority = models.PositiveSmallIntegerField(default=1)
    duration_days = models.PositiveSmallIntegerField()

    base_amount = models.DecimalField(max_digits=12, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    vat_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")

    stripe_payment_intent_id = models.CharField(max_length=255, unique=True)
    status = models.CharField(
        max_length=20,
        choices=PromotionStatus.choices,
        default=PromotionStatus.ACTIVE,
        db_index=True,
    )
    starts_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField(db_index=True)

    objects = PromotionPurchaseQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Promotion Purchase"
        verbose_name_plural = "Promotion Purchases"

    def __str__(self) -> str:
        return f"PromotionPurchase({self.plan_key}, {self.status}, until {self.expires_at:%Y-%m-%d})"
