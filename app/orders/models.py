"""
Order model: a purchased gig and its escrowed payment.

An order is created at checkout in ``created`` status with its total
priced and split into four tranches. From then on its status only moves
through django-fsm transitions whose source statuses come from the
escrow transition table (payments.state_machines.escrow.TRANSITIONS), and
money fields are only touched by payments.services.EscrowService.

Usage:
    from orders.models import Order
    from payments.state_machines.escrow import Trigger

    order = Order.objects.select_for_update().get(pk=order_id)
    order.fire(Trigger.START)
    order.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, TransitionNotAllowed, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from payments.exceptions import InvalidStateTransitionError
from payments.state_machines.escrow import Trigger, sources_for
from payments.state_machines.states import (
    ActorRole,
    CaptureStage,
    EscrowStatus,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMilestoneStage,
)

ZERO = Decimal("0.00")


def _money(help_text: str, **kwargs):
    return models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        help_text=help_text,
        **kwargs,
    )


class Order(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A buyer's purchase of a seller's gig.

    Fields:
        buyer/seller: The two parties
        price..seller_net_payout: Priced amounts (see payments.pricing)
        authorized_amount..review_amount: Planned tranche per stage
        pending_release_amount: Captured, not yet released
        total_released_amount: Released to the seller at completion
        status: Workflow status (django-fsm, protected)
        payment_milestone_stage: Furthest escrow stage reached
        status_history/timeline: Append-only JSON audit lists

    Invariants:
        authorized + escrow + delivery + review == total_amount
        total_released_amount + pending_release_amount <= total_amount
    """

    # ==========================================================================
    # Parties & Gig
    # ==========================================================================

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders_placed",
    )
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders_received",
    )
    gig_id = models.CharField(max_length=64, db_index=True)
    gig_title = models.CharField(max_length=255, blank=True, default="")

    # ==========================================================================
    # Pricing
    # ==========================================================================

    price = _money("Gig price before platform fee and VAT")
    platform_fee_rate = models.DecimalField(
        max_digits=5,
        decimal_places=4,
        default=Decimal("0.0500"),
        help_text="Platform fee as a fraction of the price",
    )
    platform_fee = _money("Platform fee charged to the buyer")
    vat_rate = models.DecimalField(
        max_digits=5,
        decimal_places=4,
        default=Decimal("0.0000"),
        help_text="VAT rate as a fraction",
    )
    vat_amount = _money("VAT on price plus platform fee")
    total_amount = _money("Amount authorized on the buyer's card")
    seller_net_payout = _money("What the seller earns for the whole order")
    currency = models.CharField(max_length=3, default="USD")

    # ==========================================================================
    # Payment Linkage
    # ==========================================================================

    payment_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe PaymentIntent ID (pi_xxx)",
    )
    stripe_charge_id = models.CharField(max_length=255, blank=True, default="")
    stripe_transfer_id = models.CharField(max_length=255, blank=True, default="")
    payment_status = models.CharField(
        max_length=20,
        choices=OrderPaymentStatus.choices,
        default=OrderPaymentStatus.PENDING,
        db_index=True,
    )
    payment_milestone_stage = models.CharField(
        max_length=20,
        choices=PaymentMilestoneStage.choices,
        default=PaymentMilestoneStage.ORDER_PLACED,
    )
    escrow_status = models.CharField(
        max_length=20,
        choices=EscrowStatus.choices,
        default=EscrowStatus.NONE,
    )
    last_payment_error = models.TextField(blank=True, default="")

    # ==========================================================================
    # Escrow Breakdown
    # ==========================================================================

    authorized_amount = _money("Tranche captured when the order is accepted (10%)")
    escrow_amount = _money("Tranche captured when work starts (50%)")
    delivery_amount = _money("Tranche captured on delivery (20%)")
    review_amount = _money("Tranche captured on approval, plus rounding remainder (20%)")
    pending_release_amount = _money("Captured and held, not yet released")
    total_released_amount = _money("Released to the seller")

    # ==========================================================================
    # Workflow
    # ==========================================================================

    status = FSMField(
        default=OrderStatus.CREATED,
        choices=OrderStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current order status (managed by FSM)",
    )
    progress = models.PositiveSmallIntegerField(default=0)
    status_history = models.JSONField(default=list, blank=True)
    timeline = models.JSONField(default=list, blank=True)

    delivery_date = models.DateTimeField(null=True, blank=True, db_index=True)
    auto_deadline_extended = models.BooleanField(default=False)

    requirements = models.TextField(blank=True, default="")
    delivery_description = models.TextField(blank=True, default="")
    delivery_attachments = models.JSONField(default=list, blank=True)
    revision_count = models.PositiveSmallIntegerField(default=0)
    revision_reason = models.TextField(blank=True, default="")
    cancellation_reason = models.TextField(blank=True, default="")
    dispute_reason = models.TextField(blank=True, default="")

    # ==========================================================================
    # Timestamps & Completion
    # ==========================================================================

    accepted_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    escrow_locked_at = models.DateTimeField(null=True, blank=True)
    funds_released_at = models.DateTimeField(null=True, blank=True)
    is_completed = models.BooleanField(default=False)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["buyer", "status"], name="orders_orde_buyer_i_3b1f0a_idx"),
            models.Index(fields=["seller", "status"], name="orders_orde_seller__8c2d4e_idx"),
            models.Index(fields=["status", "delivery_date"], name="orders_orde_status_5e7a91_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(price__gt=0),
                name="order_price_positive",
            ),
            models.CheckConstraint(
                condition=Q(total_amount__gte=F("price")),
                name="order_total_covers_price",
            ),
            models.CheckConstraint(
                condition=Q(pending_release_amount__gte=0) & Q(total_released_amount__gte=0),
                name="order_escrow_amounts_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(
                    total_released_amount__lte=F("total_amount") - F("pending_release_amount")
                ),
                name="order_escrow_within_total",
            ),
            models.CheckConstraint(
                condition=Q(progress__lte=100),
                name="order_progress_at_most_100",
            ),
        ]

    def __str__(self) -> str:
        return f"Order({self.id}, {self.status}, {self.total_amount} {self.currency})"

    # ==========================================================================
    # Parties
    # ==========================================================================

    def role_of(self, user) -> str | None:
        """ActorRole of ``user`` on this order, or None for outsiders."""
        if user is None:
            return None
        if user.pk == self.buyer_id:
            return ActorRole.BUYER
        if user.pk == self.seller_id:
            return ActorRole.SELLER
        return None

    # ==========================================================================
    # Escrow Helpers
    # ==========================================================================

    def planned_tranches(self) -> dict[str, Decimal]:
        return {
            CaptureStage.ACCEPTED: self.authorized_amount,
            CaptureStage.IN_ESCROW: self.escrow_amount,
            CaptureStage.DELIVERED: self.delivery_amount,
            CaptureStage.REVIEWED: self.review_amount,
        }

    @property
    def payment_breakdown(self) -> dict[str, str]:
        return {
            "authorized_amount": str(self.authorized_amount),
            "escrow_amount": str(self.escrow_amount),
            "delivery_amount": str(self.delivery_amount),
            "review_amount": str(self.review_amount),
            "total_released_amount": str(self.total_released_amount),
            "pending_release_amount": str(self.pending_release_amount),
        }

    def deadline_passed(self, now=None) -> bool:
        if self.delivery_date is None:
            return False
        return (now or timezone.now()) > self.delivery_date

    # ==========================================================================
    # Audit Trail
    # ==========================================================================

    def add_timeline_event(self, event: str, description: str, actor: str = ActorRole.SYSTEM) -> None:
        self.timeline = [
            *self.timeline,
            {
                "event": event,
                "description": description,
                "actor": str(actor),
                "timestamp": timezone.now().isoformat(),
            },
        ]

    def record_status_change(self, status: str, reason: str, actor: str = ActorRole.SYSTEM) -> None:
        self.status_history = [
            *self.status_history,
            {
                "status": str(status),
                "changed_at": timezone.now().isoformat(),
                "reason": reason,
                "actor": str(actor),
            },
        ]

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    def fire(self, trigger: str) -> None:
        """
        Run the FSM transition bound to ``trigger``.

        Raises:
            InvalidStateTransitionError: django-fsm refused the move
        """
        method = getattr(self, TRIGGER_METHODS[trigger])
        try:
            method()
        except TransitionNotAllowed:
            raise InvalidStateTransitionError(
                f"Cannot {trigger} order from '{self.status}' status",
                details={
                    "order_id": str(self.id),
                    "current_state": self.status,
                    "transition": str(trigger),
                },
            )

    @transition(field=status, source=sources_for(Trigger.AUTHORIZE), target=OrderStatus.ACCEPTED)
    def accept(self):
        now = timezone.now()
        self.accepted_at = now
        self.escrow_locked_at = now

    @transition(
        field=status,
        source=sources_for(Trigger.SUBMIT_REQUIREMENTS),
        target=OrderStatus.REQUIREMENTS_SUBMITTED,
    )
    def submit_requirements(self):
        pass

    @transition(field=status, source=sources_for(Trigger.START), target=OrderStatus.STARTED)
    def start_work(self):
        self.started_at = timezone.now()

    @transition(field=status, source=sources_for(Trigger.MARK_HALFWAY), target=OrderStatus.HALFWAY_DONE)
    def mark_halfway(self):
        pass

    @transition(field=status, source=sources_for(Trigger.DELIVER), target=OrderStatus.DELIVERED)
    def deliver(self):
        self.delivered_at = timezone.now()

    @transition(
        field=status,
        source=sources_for(Trigger.REQUEST_REVISION),
        target=OrderStatus.REQUESTED_REVISION,
    )
    def request_revision(self):
        self.revision_count += 1

    @transition(field=status, source=sources_for(Trigger.APPROVE), target=OrderStatus.WAITING_REVIEW)
    def approve(self):
        pass

    @transition(field=status, source=sources_for(Trigger.RELEASE), target=OrderStatus.COMPLETED)
    def complete(self):
        self.completed_at = timezone.now()
        self.is_completed = True

    @transition(field=status, source=sources_for(Trigger.CANCEL), target=OrderStatus.CANCELLED)
    def cancel(self):
        self.cancelled_at = timezone.now()

    @transition(field=status, source=sources_for(Trigger.DISPUTE), target=OrderStatus.DISPUTED)
    def open_dispute(self):
        pass


TRIGGER_METHODS: dict[str, str] = {
    Trigger.AUTHORIZE: "accept",
    Trigger.SUBMIT_REQUIREMENTS: "submit_requirements",
    Trigger.START: "start_work",
    Trigger.MARK_HALFWAY: "mark_halfway",
    Trigger.DELIVER: "deliver",
    Trigger.REQUEST_REVISION: "request_revision",
    Trigger.APPROVE: "approve",
    Trigger.RELEASE: "complete",
    Trigger.CANCEL: "cancel",
    Trigger.DISPUTE: "open_dispute",
}
