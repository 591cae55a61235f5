"""
Payout model: a seller withdrawal from available revenue.

The revenue ledger is debited when the withdrawal is requested; the
payout row then follows the provider payout through to paid or failed.
A failed payout credits the amount back (withdrawal_reversal).

Usage:
    payout = Payout.objects.create(seller=user, connected_account=account, amount=Decimal("50.00"))

    payout.mark_in_transit(stripe_payout_id="po_123")
    payout.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from payments.state_machines import PayoutState


class Payout(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Money leaving the platform to a seller's connected account.

    State Flow:
        PENDING -> IN_TRANSIT -> PAID
        PENDING/IN_TRANSIT -> FAILED
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payouts",
    )
    connected_account = models.ForeignKey(
        "payments.ConnectedAccount",
        on_delete=models.PROTECT,
        related_name="payouts",
    )

    # ==========================================================================
    # Amount & State
    # ==========================================================================

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")

    status = FSMField(
        default=PayoutState.PENDING,
        choices=PayoutState.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the payout (managed by FSM)",
    )

    stripe_payout_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe Payout ID (po_xxx)",
    )

    # ==========================================================================
    # Timestamps & Failure
    # ==========================================================================

    paid_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout"
        verbose_name_plural = "Payouts"
        indexes = [
            models.Index(fields=["seller", "status"], name="pay_payout_seller_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=Decimal("0")),
                name="payout_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Payout({self.id}, {self.status}, {self.amount} {self.currency})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=status, source=PayoutState.PENDING, target=PayoutState.IN_TRANSIT)
    def mark_in_transit(self, stripe_payout_id: str):
        """
        Provider accepted the payout.

        Transition: PENDING -> IN_TRANSIT
        """
        self.stripe_payout_id = stripe_payout_id

    @transition(
        field=status,
        source=[PayoutState.PENDING, PayoutState.IN_TRANSIT],
        target=PayoutState.PAID,
    )
    def mark_paid(self):
        """
        Transition: PENDING/IN_TRANSIT -> PAID

        PENDING is a valid source because payout.paid can arrive before the
        job that created the payout has saved IN_TRANSIT.
        """
        self.paid_at = timezone.now()

    @transition(
        field=status,
        source=[PayoutState.PENDING, PayoutState.IN_TRANSIT],
        target=PayoutState.FAILED,
    )
    def mark_failed(self, reason: str = ""):
        """Transition: PENDING/IN_TRANSIT -> FAILED"""
        self.failed_at = timezone.now()
        self.failure_reason = reason

    @property
    def is_settled(self) -> bool:
        return self.status in (PayoutState.PAID, PayoutState.FAILED)
