"""
Seller revenue ledger models.

- SellerRevenue: one row per seller holding four balance buckets
- RevenueEntry: immutable audit row for every balance mutation

Balances are denormalized on SellerRevenue and only ever changed by
RevenueLedgerService.apply_movement(), which writes the RevenueEntry and
the bucket deltas in the same transaction. The sum of a seller's entry
deltas therefore always equals the current balances, which is what the
reconciliation job verifies.

Usage:
    from payments.ledger.models import MovementType, SellerRevenue

    revenue = SellerRevenue.objects.get(seller=user)
    revenue.is_balanced  # total == pending + available + withdrawn
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Q, Sum
from django.db.models.functions import Coalesce

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

ZERO = Decimal("0.00")


class MovementType(models.TextChoices):
    """
    Kinds of balance movement.

    Bucket deltas per movement (x > 0):

        movement             total  pending  available  withdrawn
        milestone_capture     +x      +x
        extension_credit      +x      +x
        escrow_release                -x        +x
        refund_reversal       -x      -x
        withdrawal                              -x         +x
        withdrawal_reversal                     +x         -x
    """

    MILESTONE_CAPTURE = "milestone_capture", "Milestone Capture"
    EXTENSION_CREDIT = "extension_credit", "Extension Credit"
    ESCROW_RELEASE = "escrow_release", "Escrow Release"
    REFUND_REVERSAL = "refund_reversal", "Refund Reversal"
    WITHDRAWAL = "withdrawal", "Withdrawal"
    WITHDRAWAL_REVERSAL = "withdrawal_reversal", "Withdrawal Reversal"


def _balance(help_text: str):
    return models.DecimalField(max_digits=14, decimal_places=2, default=ZERO, help_text=help_text)


class SellerRevenue(UUIDPrimaryKeyMixin, BaseModel):
    """
    A seller's revenue balances.

    Fields:
        total: Everything earned and not reversed
        pending: Captured from buyers, held until order completion
        available: Released and withdrawable
        withdrawn: Requested for payout

    Constraints:
        - One account per seller
        - No bucket below zero
        - total == pending + available + withdrawn
    """

    seller = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="revenue",
    )
    currency = models.CharField(max_length=3, default="USD")

    total = _balance("Earned and not reversed")
    pending = _balance("Held in escrow until order completion")
    available = _balance("Released and withdrawable")
    withdrawn = _balance("Requested for payout")

    class Meta:
        verbose_name = "Seller Revenue"
        verbose_name_plural = "Seller Revenue"
        constraints = [
            models.CheckConstraint(
                condition=Q(total__gte=0) & Q(pending__gte=0) & Q(available__gte=0) & Q(withdrawn__gte=0),
                name="seller_revenue_buckets_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(total=F("pending") + F("available") + F("withdrawn")),
                name="seller_revenue_conserved",
            ),
        ]

    def __str__(self) -> str:
        return f"SellerRevenue({self.seller_id}, total={self.total} {self.currency})"

    @property
    def is_balanced(self) -> bool:
        return self.total == self.pending + self.available + self.withdrawn

    def entry_totals(self) -> dict[str, Decimal]:
        """Sum of every entry's deltas, per bucket."""
        return self.entries.aggregate(
            total=Coalesce(Sum("total_delta"), ZERO),
            pending=Coalesce(Sum("pending_delta"), ZERO),
            available=Coalesce(Sum("available_delta"), ZERO),
            withdrawn=Coalesce(Sum("withdrawn_delta"), ZERO),
        )


class RevenueEntry(UUIDPrimaryKeyMixin, models.Model):
    """
    One applied balance movement.

    Entries are immutable; corrections are new movements. The unique
    idempotency_key makes every movement apply at most once.
    """

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    revenue = models.ForeignKey(
        SellerRevenue,
        on_delete=models.PROTECT,
        related_name="entries",
    )
    movement_type = models.CharField(max_length=30, choices=MovementType.choices)
    amount = models.DecimalField(max_digits=12, decimal_places=2)

    total_delta = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    pending_delta = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    available_delta = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    withdrawn_delta = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="revenue_entries",
    )
    reference_type = models.CharField(max_length=50, blank=True, default="")
    reference_id = models.CharField(max_length=255, blank=True, default="")
    description = models.TextField(blank=True, default="")
    created_by = models.CharField(max_length=100, blank=True, default="")
    idempotency_key = models.CharField(max_length=255, unique=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Revenue Entry"
        verbose_name_plural = "Revenue Entries"
        indexes = [
            models.Index(fields=["revenue", "movement_type"], name="pay_entry_revenue_type_idx"),
            models.Index(fields=["order", "movement_type"], name="pay_entry_order_type_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="revenue_entry_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_movement_type_display()}: {self.amount}"
