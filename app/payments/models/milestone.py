"""
PaymentMilestone: append-only ledger of tranche captures.

Every capture attempt, release and refund of a tranche is one row. Rows
are never edited: releasing or refunding a captured tranche inserts a new
row with RELEASED or REFUNDED status. A conditional unique constraint on
(order, stage, payment_status) for captured/released/refunded rows makes
a second capture of the same tranche impossible at the database level,
whatever the caller does.

Usage:
    from payments.models import PaymentMilestone

    captured = PaymentMilestone.objects.captured_stages(order)
    if CaptureStage.IN_ESCROW in captured:
        ...
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q, Sum

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.exceptions import IntegrityViolation
from payments.state_machines import ActorRole, CaptureStage, MilestonePaymentStatus


class PaymentMilestoneQuerySet(models.QuerySet):
    def for_order(self, order):
        return self.filter(order=order)

    def captured(self):
        return self.filter(payment_status=MilestonePaymentStatus.CAPTURED)

    def captured_stages(self, order) -> frozenset:
        return frozenset(
            self.for_order(order).captured().values_list("stage", flat=True)
        )

    def captured_total(self, order) -> Decimal:
        total = self.for_order(order).captured().aggregate(total=Sum("amount"))["total"]
        return total or Decimal("0.00")


class PaymentMilestone(UUIDPrimaryKeyMixin, BaseModel):
    """
    One capture attempt, release or refund of an order tranche.

    Fields:
        order: Order the tranche belongs to
        stage: Which of the four tranches
        percentage_of_total: Tranche share in percent (10/50/20/20)
        amount: Gross amount captured from the buyer
        seller_net_amount: Seller's net share of the tranche
        payment_status: captured, failed, released or refunded
        triggered_by_*: Who or what caused the row (audit)

    Invariants:
        At most one CAPTURED, one RELEASED and one REFUNDED row per
        (order, stage). FAILED rows may repeat.
    """

    # ==========================================================================
    # Tranche
    # ==========================================================================

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="payment_milestones",
    )
    stage = models.CharField(max_length=20, choices=CaptureStage.choices)
    percentage_of_total = models.PositiveSmallIntegerField()
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    seller_net_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    currency = models.CharField(max_length=3, default="USD")

    # ==========================================================================
    # Stripe Linkage
    # ==========================================================================

    stripe_payment_intent_id = models.CharField(max_length=255, blank=True, default="")
    stripe_charge_id = models.CharField(max_length=255, blank=True, default="")
    stripe_refund_id = models.CharField(max_length=255, blank=True, default="")

    # ==========================================================================
    # Outcome
    # ==========================================================================

    payment_status = models.CharField(
        max_length=20,
        choices=MilestonePaymentStatus.choices,
        db_index=True,
    )
    captured_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True, default="")
    failure_code = models.CharField(max_length=100, blank=True, default="")

    # ==========================================================================
    # Audit
    # ==========================================================================

    triggered_by_role = models.CharField(
        max_length=10,
        choices=ActorRole.choices,
        default=ActorRole.SYSTEM,
    )
    triggered_by_action = models.CharField(max_length=50, blank=True, default="")
    triggered_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    notes = models.TextField(blank=True, default="")

    objects = PaymentMilestoneQuerySet.as_manager()

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Payment Milestone"
        verbose_name_plural = "Payment Milestones"
        indexes = [
            models.Index(fields=["order", "payment_status"], name="pay_milestone_order_status_idx"),
            models.Index(fields=["stripe_payment_intent_id"], name="pay_milestone_intent_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["order", "stage", "payment_status"],
                condition=Q(
                    payment_status__in=[
                        MilestonePaymentStatus.CAPTURED,
                        MilestonePaymentStatus.RELEASED,
                        MilestonePaymentStatus.REFUNDED,
                    ]
                ),
                name="milestone_unique_settled_stage",
            ),
            models.CheckConstraint(
                condition=Q(amount__gte=0) & Q(seller_net_amount__gte=0),
                name="milestone_amounts_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"PaymentMilestone({self.order_id}, {self.stage}, {self.payment_status}, {self.amount})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise IntegrityViolation(
                "Payment milestones are append-only",
                error_code="MILESTONE_IMMUTABLE",
                details={"milestone_id": str(self.pk)},
            )
        super().save(*args, **kwargs)
