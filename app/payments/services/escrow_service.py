"""
Escrow coordinator: executes order transitions and their money movements.

Every user action and every payment webhook that moves an order goes
through EscrowService, which runs the same algorithm for all of them:

1. Lock the order row (select_for_update inside transaction.atomic)
2. Check the actor's role against the transition table
3. plan_transition() on the current status and captured stages; it
   answers duplicates and raises PreconditionError for invalid moves
4. Execute the plan's money movement:
   - capture one tranche (CAPTURE)
   - refund everything captured (REFUND_CAPTURES)
   - cancel the uncaptured authorization (CANCEL_AUTHORIZATION)
5. Record the captured milestone, fire the FSM transition, append
   status history and timeline, raise progress, credit the seller's
   net share through the revenue ledger
6. After the review capture, chain the release of all seller funds

A capture failure is recorded (failed milestone, capture_failed status,
timeline entry) and committed before CaptureError is raised. A refund
failure changes nothing. Replays return an outcome with duplicate=True.

Usage:
    from payments.services import EscrowService

    outcome = EscrowService.start(order_id, user=request.user)
    outcome = EscrowService.authorize(payment_intent_id="pi_123")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import NotFoundError, PermissionDeniedError
from core.services import BaseService
from orders.models import Order
from payments.adapters import StripeAdapter
from payments.exceptions import (
    CaptureError,
    DuplicateEventError,
    PaymentNotFoundError,
    PreconditionError,
    RefundError,
    StripeError,
)
from payments.ledger import MovementType, RevenueLedgerService, RevenueMovementParams
from payments.locks import check_version
from payments.models import PaymentMilestone, TimelineExtension
from payments.pricing import MILESTONE_PERCENTAGES, ZERO, split_milestones, to_minor_units
from payments.services import notifier
from payments.state_machines import (
    TERMINAL_ORDER_STATUSES,
    ActorRole,
    CaptureStage,
    EscrowStatus,
    MilestonePaymentStatus,
    OrderPaymentStatus,
    OrderStatus,
    TimelineExtensionStatus,
)
from payments.state_machines.escrow import (
    TRANSITIONS,
    EscrowState,
    SideEffect,
    TransitionPlan,
    Trigger,
    next_progress,
    plan_transition,
)

if TYPE_CHECKING:
    from authentication.models import User

logger = logging.getLogger(__name__)

# Human-readable timeline text per trigger.
_TIMELINE_TEXT: dict[str, str] = {
    Trigger.AUTHORIZE: "Payment authorized and order accepted",
    Trigger.SUBMIT_REQUIREMENTS: "Buyer submitted requirements",
    Trigger.START: "Seller started work",
    Trigger.MARK_HALFWAY: "Seller marked the work halfway done",
    Trigger.DELIVER: "Seller delivered the work",
    Trigger.REQUEST_REVISION: "Buyer requested a revision",
    Trigger.APPROVE: "Buyer approved the delivery",
    Trigger.RELEASE: "Escrow released to the seller",
    Trigger.CANCEL: "Order cancelled",
    Trigger.DISPUTE: "Dispute opened",
}


def capture_key(order_id, stage: str) -> str:
    """Idempotency key shared by the Stripe capture and the ledger credit."""
    return f"capture:{order_id}:{stage}"


@dataclass
class TransitionOutcome:
    """
    Result of one trigger.

    Attributes:
        order: The order after the transition (or unchanged on duplicate)
        trigger: Trigger that was fired
        duplicate: Nothing happened because the trigger was already applied
        captured_stage: Tranche captured by this call, if any
        released_amount: Seller revenue released when the order completed
        refunded_amount: Gross amount refunded to the buyer on cancellation
    """

    order: Order
    trigger: str
    duplicate: bool = False
    captured_stage: str | None = None
    released_amount: Decimal = ZERO
    refunded_amount: Decimal = ZERO


@dataclass
class _CaptureFailure:
    stage: str
    error: StripeError


class EscrowService(BaseService):
    """
    Coordinator for order transitions.

    Public methods map one-to-one to triggers. All of them are
    idempotent: repeating a trigger that already took effect returns
    a duplicate outcome instead of raising.
    """

    # =========================================================================
    # User Actions
    # =========================================================================

    @classmethod
    def submit_requirements(cls, order_id, user: User, requirements: str = "", **kwargs) -> TransitionOutcome:
        return cls.fire(order_id, Trigger.SUBMIT_REQUIREMENTS, user=user, updates={"requirements": requirements}, **kwargs)

    @classmethod
    def start(cls, order_id, user: User, **kwargs) -> TransitionOutcome:
        return cls.fire(order_id, Trigger.START, user=user, **kwargs)

    @classmethod
    def mark_halfway(cls, order_id, user: User, **kwargs) -> TransitionOutcome:
        return cls.fire(order_id, Trigger.MARK_HALFWAY, user=user, **kwargs)

    @classmethod
    def deliver(
        cls,
        order_id,
        user: User,
        description: str = "",
        attachments: list | None = None,
        **kwargs,
    ) -> TransitionOutcome:
        updates = {"delivery_description": description, "delivery_attachments": attachments or []}
        return cls.fire(order_id, Trigger.DELIVER, user=user, updates=updates, **kwargs)

    @classmethod
    def request_revision(cls, order_id, user: User, reason: str = "", **kwargs) -> TransitionOutcome:
        return cls.fire(
            order_id,
            Trigger.REQUEST_REVISION,
            user=user,
            updates={"revision_reason": reason},
            reason=reason,
            **kwargs,
        )

    @classmethod
    def approve(cls, order_id, user: User, **kwargs) -> TransitionOutcome:
        return cls.fire(order_id, Trigger.APPROVE, user=user, **kwargs)

    @classmethod
    def cancel(cls, order_id, user: User, reason: str = "", **kwargs) -> TransitionOutcome:
        return cls.fire(
            order_id,
            Trigger.CANCEL,
            user=user,
            updates={"cancellation_reason": reason},
            reason=reason,
            **kwargs,
        )

    @classmethod
    def dispute(cls, order_id, user: User, reason: str = "", **kwargs) -> TransitionOutcome:
        return cls.fire(
            order_id,
            Trigger.DISPUTE,
            user=user,
            updates={"dispute_reason": reason},
            reason=reason,
            **kwargs,
        )

    # =========================================================================
    # Webhook Entry Points
    # =========================================================================

    @classmethod
    def authorize(cls, payment_intent_id: str, charge_id: str | None = None) -> TransitionOutcome:
        """
        The buyer's authorization arrived: capture the first tranche.

        Called for payment_intent.amount_capturable_updated and for
        payment_intent.succeeded of order payments, in either order.
        """
        updates = {"stripe_charge_id": charge_id} if charge_id else None
        return cls.fire(None, Trigger.AUTHORIZE, payment_intent_id=payment_intent_id, updates=updates)

    @classmethod
    def handle_payment_failed(cls, payment_intent_id: str, reason: str = "", code: str = "") -> Order | None:
        """
        Record a failed payment attempt on the order.

        Writes a failed milestone for the next uncaptured tranche so the
        attempt shows up in the milestone history. Terminal orders are
        left untouched.
        """
        with transaction.atomic():
            order = Order.objects.select_for_update().filter(payment_intent_id=payment_intent_id).first()
            if order is None or order.status in TERMINAL_ORDER_STATUSES:
                return order

            captured = PaymentMilestone.objects.captured_stages(order)
            next_stage = next((stage for stage in CaptureStage if stage not in captured), None)
            if next_stage is not None:
                cls._record_failed_milestone(order, next_stage, reason, code, ActorRole.SYSTEM, None, "payment_failed")

            order.payment_status = OrderPaymentStatus.FAILED
            order.last_payment_error = reason
            order.add_timeline_event("payment_failed", reason or "Payment failed")
            order.save()

            notifier.payment_failed(order, reason)

        cls.get_logger().warning(
            "Payment failed for order",
            extra={"order_id": str(order.id), "payment_intent_id": payment_intent_id, "code": code},
        )
        return order

    @classmethod
    def handle_authorization_canceled(cls, payment_intent_id: str) -> Order | None:
        """The intent was canceled before any capture: mark the payment cancelled."""
        with transaction.atomic():
            order = Order.objects.select_for_update().filter(payment_intent_id=payment_intent_id).first()
            if order is None or order.payment_status == OrderPaymentStatus.CANCELLED:
                return order
            if PaymentMilestone.objects.captured_stages(order):
                # Remaining authorization released after captures; nothing to record.
                return order

            order.payment_status = OrderPaymentStatus.CANCELLED
            order.add_timeline_event("authorization_canceled", "Payment authorization was canceled")
            order.save()
        return order

    @classmethod
    def handle_charge_refunded(cls, payment_intent_id: str, amount_refunded_cents: int) -> Order | None:
        """
        Reflect a charge.refunded event on the order's payment status.

        Revenue is not touched: refunds initiated here already moved the
        ledger, and refunds issued elsewhere are a reconciliation matter.
        Only a refund covering everything captured marks the payment
        refunded; a smaller one is noted on the timeline.
        """
        with transaction.atomic():
            order = Order.objects.select_for_update().filter(payment_intent_id=payment_intent_id).first()
            if order is None or order.payment_status == OrderPaymentStatus.REFUNDED:
                return order

            captured_cents = to_minor_units(PaymentMilestone.objects.captured_total(order), order.currency)
            if amount_refunded_cents < captured_cents:
                order.add_timeline_event(
                    "charge_partially_refunded",
                    f"Refund of {amount_refunded_cents} of {captured_cents} captured minor units confirmed",
                )
                order.save()
                cls.get_logger().warning(
                    "Partial refund issued outside cancellation",
                    extra={
                        "order_id": str(order.id),
                        "payment_intent_id": payment_intent_id,
                        "amount": amount_refunded_cents,
                        "captured": captured_cents,
                    },
                )
                return order

            order.payment_status = OrderPaymentStatus.REFUNDED
            order.add_timeline_event("charge_refunded", f"Refund of {amount_refunded_cents} minor units confirmed")
            order.save()
        return order

    # =========================================================================
    # Core Algorithm
    # =========================================================================

    @classmethod
    def fire(
        cls,
        order_id,
        trigger: str,
        user: User | None = None,
        payment_intent_id: str | None = None,
        updates: dict[str, Any] | None = None,
        reason: str = "",
        expected_version: int | None = None,
    ) -> TransitionOutcome:
        """
        Fire ``trigger`` on an order found by id or by payment intent.

        Raises:
            NotFoundError / PaymentNotFoundError: No such order
            PermissionDeniedError: Caller is not the party the trigger belongs to
            PreconditionError: Transition not allowed from the current state
            StaleRecordError: expected_version no longer matches
            CaptureError: Capture failed (failure already recorded)
            RefundError: Refund failed (nothing changed)
        """
        log_context = {
            "order_id": str(order_id) if order_id else None,
            "payment_intent_id": payment_intent_id,
            "trigger": str(trigger),
        }
        failure: _CaptureFailure | None = None

        try:
            with transaction.atomic():
                order = cls._lock_order(order_id, payment_intent_id, expected_version)
                log_context["order_id"] = str(order.id)
                role = cls._resolve_role(order, trigger, user)

                captured = PaymentMilestone.objects.captured_stages(order)
                plan = plan_transition(
                    EscrowState(
                        status=order.status,
                        captured_stages=captured,
                        deadline_passed=order.deadline_passed(),
                    ),
                    trigger,
                )
                if plan.duplicate:
                    raise DuplicateEventError(f"{trigger} already applied", key=str(order.id))

                outcome = TransitionOutcome(order=order, trigger=trigger)

                if SideEffect.CAPTURE in plan.side_effects:
                    failure = cls._capture(order, plan, role, user)
                    if failure is not None:
                        order.save()
                        outcome = None
                    else:
                        outcome.captured_stage = plan.capture_stage

                if outcome is not None:
                    if SideEffect.REFUND_CAPTURES in plan.side_effects:
                        outcome.refunded_amount = cls._refund_captures(order, role, user)
                    if SideEffect.CANCEL_AUTHORIZATION in plan.side_effects:
                        cls._cancel_authorization(order)

                    for field_name, value in (updates or {}).items():
                        setattr(order, field_name, value)
                    cls._advance(order, plan, role, reason)
                    order.save()

                    if trigger == Trigger.APPROVE:
                        outcome.released_amount = cls._release(order)

                    cls._notify(order, plan, outcome)
        except DuplicateEventError:
            cls.get_logger().info("Duplicate order transition ignored", extra=log_context)
            order = cls._get_order(order_id, payment_intent_id)
            return TransitionOutcome(order=order, trigger=trigger, duplicate=True)

        if failure is not None:
            raise CaptureError(
                f"Capture of the {failure.stage} milestone failed: {failure.error.message}",
                details={
                    "order_id": str(order.id),
                    "stage": failure.stage,
                    "stripe_code": failure.error.stripe_code,
                    "retryable": failure.error.is_retryable,
                },
            ) from failure.error

        cls.get_logger().info(
            "Order transition applied",
            extra={**log_context, "status": order.status, "captured_stage": outcome.captured_stage},
        )
        return outcome

    @classmethod
    def _lock_order(cls, order_id, payment_intent_id: str | None, expected_version: int | None) -> Order:
        if expected_version is not None and order_id is not None:
            return check_version(Order, order_id, expected_version)

        queryset = Order.objects.select_for_update()
        if order_id is not None:
            order = queryset.filter(pk=order_id).first()
            if order is None:
                raise NotFoundError(
                    f"Order {order_id} not found",
                    error_code="ORDER_NOT_FOUND",
                    details={"order_id": str(order_id)},
                )
            return order

        order = queryset.filter(payment_intent_id=payment_intent_id).first()
        if order is None:
            raise PaymentNotFoundError(
                f"No order for payment intent {payment_intent_id}",
                details={"payment_intent_id": payment_intent_id},
            )
        return order

    @classmethod
    def _get_order(cls, order_id, payment_intent_id: str | None) -> Order:
        if order_id is not None:
            return Order.objects.get(pk=order_id)
        return Order.objects.get(payment_intent_id=payment_intent_id)

    @staticmethod
    def _resolve_role(order: Order, trigger: str, user: User | None) -> str:
        rule = TRANSITIONS[trigger]
        if user is None:
            if rule.actor != ActorRole.SYSTEM:
                raise PermissionDeniedError(
                    f"{trigger} requires an authenticated order party",
                    error_code="ACTOR_REQUIRED",
                )
            return ActorRole.SYSTEM

        role = order.role_of(user)
        if role is None:
            raise PermissionDeniedError(
                "You are not a party to this order",
                error_code="NOT_ORDER_PARTY",
                details={"order_id": str(order.id)},
            )
        if rule.actor is not None and role != rule.actor:
            raise PermissionDeniedError(
                f"Only the {rule.actor} can {trigger} this order",
                error_code="WRONG_ORDER_ROLE",
                details={"order_id": str(order.id), "required_role": rule.actor},
            )
        return role

    # =========================================================================
    # Capture
    # =========================================================================

    @classmethod
    def _capture(cls, order: Order, plan: TransitionPlan, role: str, user: User | None) -> _CaptureFailure | None:
        """
        Capture the plan's tranche and record it.

        Returns a _CaptureFailure (after recording it on the order) when
        the gateway refuses; the caller commits and raises CaptureError.
        """
        stage = plan.capture_stage
        if not order.payment_intent_id:
            raise PreconditionError(
                "Order has no authorized payment",
                error_code="PAYMENT_NOT_AUTHORIZED",
                details={"order_id": str(order.id)},
            )

        gross = order.planned_tranches()[stage]
        net = split_milestones(order.seller_net_payout)[stage]
        already_captured = PaymentMilestone.objects.captured_total(order)
        key = capture_key(order.id, stage)

        try:
            result = StripeAdapter.capture_partial(
                payment_intent_id=order.payment_intent_id,
                amount_cents=to_minor_units(gross, order.currency),
                idempotency_key=key,
                final_capture=stage == CaptureStage.REVIEWED,
                expected_received_cents=to_minor_units(already_captured + gross, order.currency),
            )
        except StripeError as e:
            cls.get_logger().error(
                "Milestone capture failed",
                extra={
                    "order_id": str(order.id),
                    "stage": stage,
                    "payment_intent_id": order.payment_intent_id,
                    "stripe_code": e.stripe_code,
                },
            )
            cls._record_failed_milestone(order, stage, e.message, e.stripe_code or e.error_code, role, user, plan.trigger)
            order.payment_status = OrderPaymentStatus.CAPTURE_FAILED
            order.last_payment_error = e.message
            order.add_timeline_event(
                "capture_failed",
                f"Capture of the {stage} milestone ({gross} {order.currency}) failed: {e.message}",
                role,
            )
            notifier.capture_failed(order, stage, e.message)
            return _CaptureFailure(stage=stage, error=e)

        try:
            with transaction.atomic():
                PaymentMilestone.objects.create(
                    order=order,
                    stage=stage,
                    percentage_of_total=MILESTONE_PERCENTAGES[stage],
                    amount=gross,
                    seller_net_amount=net,
                    currency=order.currency,
                    stripe_payment_intent_id=order.payment_intent_id,
                    stripe_charge_id=result.latest_charge or order.stripe_charge_id,
                    payment_status=MilestonePaymentStatus.CAPTURED,
                    captured_at=timezone.now(),
                    triggered_by_role=role,
                    triggered_by_action=plan.trigger,
                    triggered_by=user,
                    notes="already captured at provider" if result.already_processed else "",
                )
        except IntegrityError:
            raise DuplicateEventError(f"{stage} already captured", key=key)

        if net > 0:
            RevenueLedgerService.apply_movement(
                RevenueMovementParams(
                    seller_id=order.seller_id,
                    movement_type=MovementType.MILESTONE_CAPTURE,
                    amount=net,
                    idempotency_key=key,
                    order_id=order.id,
                    reference_type="payment_milestone",
                    reference_id=stage,
                    description=f"{stage} milestone captured",
                    created_by="escrow_service",
                    currency=order.currency,
                )
            )

        order.pending_release_amount += gross
        order.escrow_status = EscrowStatus.FULL if stage == CaptureStage.REVIEWED else EscrowStatus.PARTIAL
        order.payment_status = OrderPaymentStatus.PENDING
        order.last_payment_error = ""
        if result.latest_charge and not order.stripe_charge_id:
            order.stripe_charge_id = result.latest_charge
        order.add_timeline_event(
            "milestone_captured",
            f"{MILESTONE_PERCENTAGES[stage]}% ({gross} {order.currency}) captured for the {stage} milestone",
            role,
        )
        return None

    @staticmethod
    def _record_failed_milestone(
        order: Order,
        stage: str,
        reason: str,
        code: str,
        role: str,
        user: User | None,
        action: str,
    ) -> PaymentMilestone:
        return PaymentMilestone.objects.create(
            order=order,
            stage=stage,
            percentage_of_total=MILESTONE_PERCENTAGES[stage],
            amount=order.planned_tranches()[stage],
            currency=order.currency,
            stripe_payment_intent_id=order.payment_intent_id or "",
            payment_status=MilestonePaymentStatus.FAILED,
            failed_at=timezone.now(),
            failure_reason=reason or "",
            failure_code=code or "",
            triggered_by_role=role,
            triggered_by_action=str(action),
            triggered_by=user,
        )

    # =========================================================================
    # Status
    # =========================================================================

    @staticmethod
    def _advance(order: Order, plan: TransitionPlan, role: str, reason: str) -> None:
        order.fire(plan.trigger)
        if plan.milestone_stage:
            order.payment_milestone_stage = plan.milestone_stage
        order.progress = next_progress(order.progress, order.status)
        order.record_status_change(order.status, reason or _TIMELINE_TEXT[plan.trigger], role)
        order.add_timeline_event(str(plan.trigger), _TIMELINE_TEXT[plan.trigger], role)

    # =========================================================================
    # Release
    # =========================================================================

    @classmethod
    def _release(cls, order: Order) -> Decimal:
        """
        Complete the order and make the seller's escrowed revenue available.

        Releases the sum of everything credited as pending for this order
        (milestone captures and paid extensions) in one ledger movement.
        """
        captured = PaymentMilestone.objects.captured_stages(order)
        plan = plan_transition(EscrowState(status=order.status, captured_stages=captured), Trigger.RELEASE)
        if plan.duplicate:
            return ZERO

        released = RevenueLedgerService.pending_for_order(order.seller_id, order.id)
        if released > 0:
            RevenueLedgerService.apply_movement(
                RevenueMovementParams(
                    seller_id=order.seller_id,
                    movement_type=MovementType.ESCROW_RELEASE,
                    amount=released,
                    idempotency_key=f"release:{order.id}",
                    order_id=order.id,
                    reference_type="order",
                    reference_id=str(order.id),
                    description="Escrow released on order completion",
                    created_by="escrow_service",
                    currency=order.currency,
                )
            )

        now = timezone.now()
        for milestone in PaymentMilestone.objects.for_order(order).captured():
            PaymentMilestone.objects.create(
                order=order,
                stage=milestone.stage,
                percentage_of_total=milestone.percentage_of_total,
                amount=milestone.amount,
                seller_net_amount=milestone.seller_net_amount,
                currency=milestone.currency,
                stripe_payment_intent_id=milestone.stripe_payment_intent_id,
                stripe_charge_id=milestone.stripe_charge_id,
                payment_status=MilestonePaymentStatus.RELEASED,
                captured_at=milestone.captured_at,
                triggered_by_role=ActorRole.SYSTEM,
                triggered_by_action=Trigger.RELEASE,
            )

        order.total_released_amount = order.pending_release_amount
        order.pending_release_amount = ZERO
        order.escrow_status = EscrowStatus.RELEASED
        order.payment_status = OrderPaymentStatus.COMPLETED
        order.funds_released_at = now
        cls._advance(order, plan, ActorRole.SYSTEM, "")
        order.save()

        order_id = str(order.id)
        transaction.on_commit(lambda: _queue_transfer(order_id))
        notifier.funds_released(order, released)

        cls.get_logger().info(
            "Escrow released",
            extra={"order_id": order_id, "amount": str(released), "seller_id": order.seller_id},
        )
        return released

    # =========================================================================
    # Cancellation
    # =========================================================================

    @classmethod
    def _refund_captures(cls, order: Order, role: str, user: User | None) -> Decimal:
        """
        Refund every captured tranche with one refund and reverse the seller's pending.

        Raises:
            RefundError: Gateway refused; the surrounding transaction rolls back
        """
        milestones = list(PaymentMilestone.objects.for_order(order).captured())
        total = sum((m.amount for m in milestones), ZERO)

        try:
            refund = StripeAdapter.refund(
                payment_intent_id=order.payment_intent_id,
                amount_cents=to_minor_units(total, order.currency),
                idempotency_key=f"refund:{order.id}",
                metadata={"order_id": str(order.id)},
                currency=order.currency,
            )
        except StripeError as e:
            raise RefundError(
                f"Refund of {total} {order.currency} failed: {e.message}",
                details={"order_id": str(order.id), "stripe_code": e.stripe_code},
            ) from e

        now = timezone.now()
        for milestone in milestones:
            PaymentMilestone.objects.create(
                order=order,
                stage=milestone.stage,
                percentage_of_total=milestone.percentage_of_total,
                amount=milestone.amount,
                seller_net_amount=milestone.seller_net_amount,
                currency=milestone.currency,
                stripe_payment_intent_id=milestone.stripe_payment_intent_id,
                stripe_charge_id=milestone.stripe_charge_id,
                stripe_refund_id=refund.id,
                payment_status=MilestonePaymentStatus.REFUNDED,
                captured_at=milestone.captured_at,
                triggered_by_role=role,
                triggered_by_action=Trigger.CANCEL,
                triggered_by=user,
                notes=f"refunded at {now.isoformat()}",
            )
            if milestone.seller_net_amount > 0:
                RevenueLedgerService.apply_movement(
                    RevenueMovementParams(
                        seller_id=order.seller_id,
                        movement_type=MovementType.REFUND_REVERSAL,
                        amount=milestone.seller_net_amount,
                        idempotency_key=f"refund:{order.id}:{milestone.stage}",
                        order_id=order.id,
                        reference_type="payment_milestone",
                        reference_id=milestone.stage,
                        description=f"{milestone.stage} milestone refunded",
                        created_by="escrow_service",
                        currency=order.currency,
                    )
                )

        cls._refund_extensions(order)

        order.pending_release_amount = ZERO
        order.escrow_status = EscrowStatus.REFUNDED
        order.payment_status = OrderPaymentStatus.REFUNDED
        order.add_timeline_event("refunded", f"{total} {order.currency} refunded to the buyer", role)
        return total

    @classmethod
    def _refund_extensions(cls, order: Order) -> None:
        extensions = TimelineExtension.objects.select_for_update().filter(
            order=order,
            status=TimelineExtensionStatus.COMPLETED,
        )
        for extension in extensions:
            try:
                StripeAdapter.refund(
                    payment_intent_id=extension.stripe_payment_intent_id,
                    amount_cents=to_minor_units(extension.amount, extension.currency),
                    idempotency_key=f"refund:extension:{extension.id}",
                    metadata={"order_id": str(order.id), "extension_id": str(extension.id)},
                    currency=extension.currency,
                )
            except StripeError as e:
                raise RefundError(
                    f"Refund of timeline extension {extension.id} failed: {e.message}",
                    details={"order_id": str(order.id), "extension_id": str(extension.id)},
                ) from e

            if extension.seller_revenue_amount > 0:
                RevenueLedgerService.apply_movement(
                    RevenueMovementParams(
                        seller_id=order.seller_id,
                        movement_type=MovementType.REFUND_REVERSAL,
                        amount=extension.seller_revenue_amount,
                        idempotency_key=f"refund:extension:{extension.id}",
                        order_id=order.id,
                        reference_type="timeline_extension",
                        reference_id=str(extension.id),
                        description="Timeline extension refunded",
                        created_by="escrow_service",
                        currency=extension.currency,
                    )
                )
            extension.status = TimelineExtensionStatus.REFUNDED
            extension.refunded_at = timezone.now()
            extension.save(update_fields=["status", "refunded_at", "updated_at"])

    @classmethod
    def _cancel_authorization(cls, order: Order) -> None:
        """
        Release the uncaptured part of a cancelled order's authorization.

        Runs after _refund_captures when tranches were captured; the
        refunded payment status set there is kept.
        """
        cls._refund_extensions(order)
        order.escrow_status = EscrowStatus.REFUNDED
        if order.payment_status != OrderPaymentStatus.REFUNDED:
            order.payment_status = OrderPaymentStatus.CANCELLED
        if not order.payment_intent_id:
            return
        try:
            StripeAdapter.cancel_authorization(
                payment_intent_id=order.payment_intent_id,
                idempotency_key=f"cancel:{order.id}",
            )
        except StripeError as e:
            raise RefundError(
                f"Could not release the payment authorization: {e.message}",
                details={"order_id": str(order.id), "stripe_code": e.stripe_code},
            ) from e

    # =========================================================================
    # Notifications
    # =========================================================================

    @staticmethod
    def _notify(order: Order, plan: TransitionPlan, outcome: TransitionOutcome) -> None:
        if outcome.captured_stage:
            milestone = (
                PaymentMilestone.objects.for_order(order)
                .captured()
                .filter(stage=outcome.captured_stage)
                .first()
            )
            if milestone is not None:
                notifier.milestone_captured(order, milestone.stage, milestone.amount, milestone.seller_net_amount)
        if plan.trigger == Trigger.CANCEL:
            notifier.order_cancelled(order, outcome.refunded_amount)
        elif plan.trigger in (Trigger.DELIVER, Trigger.DISPUTE):
            notifier.order_status_changed(order, plan.trigger, order.buyer)
        elif plan.trigger in (Trigger.SUBMIT_REQUIREMENTS, Trigger.REQUEST_REVISION, Trigger.AUTHORIZE):
            notifier.order_status_changed(order, plan.trigger, order.seller)

    # =========================================================================
    # Reporting
    # =========================================================================

    @staticmethod
    def get_payment_status(order: Order) -> dict[str, Any]:
        """
        Escrow summary for the payment-status endpoint.

        Per stage: completed (captured), current (next to capture on an
        active order), cancelled (never captured on a cancelled order) or
        pending.
        """
        milestones = list(PaymentMilestone.objects.for_order(order).order_by("created_at"))
        captured = {m.stage for m in milestones if m.payment_status == MilestonePaymentStatus.CAPTURED}
        tranches = order.planned_tranches()

        current_assigned = order.status in TERMINAL_ORDER_STATUSES
        stages = []
        for stage in CaptureStage:
            if stage in captured:
                state = "completed"
            elif order.status == OrderStatus.CANCELLED:
                state = "cancelled"
            elif not current_assigned:
                state = "current"
                current_assigned = True
            else:
                state = "pending"
            stages.append(
                {
                    "stage": str(stage),
                    "percentage": MILESTONE_PERCENTAGES[stage],
                    "amount": str(tranches[stage]),
                    "status": state,
                }
            )

        captured_total = sum(
            (m.amount for m in milestones if m.payment_status == MilestonePaymentStatus.CAPTURED),
            ZERO,
        )
        return {
            "order_id": str(order.id),
            "status": order.status,
            "payment_status": order.payment_status,
            "escrow_status": order.escrow_status,
            "payment_milestone_stage": order.payment_milestone_stage,
            "currency": order.currency,
            "total_amount": str(order.total_amount),
            "captured_amount": str(captured_total),
            "remaining_amount": str(order.total_amount - captured_total),
            "breakdown": order.payment_breakdown,
            "stages": stages,
            "milestones": [
                {
                    "id": str(m.id),
                    "stage": m.stage,
                    "amount": str(m.amount),
                    "seller_net_amount": str(m.seller_net_amount),
                    "payment_status": m.payment_status,
                    "captured_at": m.captured_at.isoformat() if m.captured_at else None,
                    "failure_reason": m.failure_reason,
                    "triggered_by_role": m.triggered_by_role,
                }
                for m in milestones
            ],
        }


def _queue_transfer(order_id: str) -> None:
    from payments.tasks import transfer_released_funds

    transfer_released_funds.delay(order_id)


__all__ = [
    "EscrowService",
    "TransitionOutcome",
    "capture_key",
]
