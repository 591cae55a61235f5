"""
Tests for EscrowService.

The default order is priced at 100.00 with a 10% platform fee and no
VAT: the buyer is charged 110.00 captured as 11/55/22/22, and the seller
earns 90.00 credited as 9/45/18/18.

Tests cover:
- Happy path captures, release and revenue
- Replays of every trigger (no double capture, no double credit)
- Out-of-order triggers and their later correct replay
- Revision loop
- Cancellation before and after the delivery deadline
- Capture and refund failures
- Role checks and optimistic versions
- Payment webhooks that do not move the order
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.utils import timezone
from freezegun import freeze_time

from authentication.tests.factories import UserFactory
from core.exceptions import PermissionDeniedError
from orders.models import Order
from orders.tests.factories import OrderFactory, advance_order
from payments.exceptions import (
    CaptureError,
    PaymentNotFoundError,
    PreconditionError,
    RefundError,
    StaleRecordError,
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
)
from payments.ledger import MovementType, RevenueLedgerService
from payments.models import PaymentMilestone, RevenueEntry
from payments.services import EscrowService, capture_key
from payments.state_machines import (
    CaptureStage,
    EscrowStatus,
    MilestonePaymentStatus,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMilestoneStage,
)


def reload(order):
    return Order.objects.get(pk=order.pk)


def revenue(order):
    return RevenueLedgerService.get_summary(order.seller_id)


def captured_rows(order):
    return PaymentMilestone.objects.for_order(order).captured()


# =============================================================================
# Happy Path
# =============================================================================


@pytest.mark.django_db
class TestHappyPath:
    def test_full_lifecycle(self, stripe_gateway, order):
        seller = order.seller

        EscrowService.authorize(payment_intent_id=order.payment_intent_id)
        assert revenue(order).pending == Decimal("9.00")

        EscrowService.start(order.id, user=seller)
        assert revenue(order).pending == Decimal("54.00")

        EscrowService.mark_halfway(order.id, user=seller)
        EscrowService.deliver(order.id, user=seller, description="Final files", attachments=["logo.svg"])
        assert revenue(order).pending == Decimal("72.00")

        outcome = EscrowService.approve(order.id, user=order.buyer)

        order = reload(order)
        summary = revenue(order)
        assert order.status == OrderStatus.COMPLETED
        assert order.progress == 100
        assert order.is_completed is True
        assert order.payment_milestone_stage == PaymentMilestoneStage.COMPLETED
        assert order.escrow_status == EscrowStatus.RELEASED
        assert order.payment_status == OrderPaymentStatus.COMPLETED
        assert order.pending_release_amount == Decimal("0.00")
        assert order.total_released_amount == Decimal("110.00")
        assert order.delivery_attachments == ["logo.svg"]

        assert outcome.released_amount == Decimal("90.00")
        assert summary.available == Decimal("90.00")
        assert summary.pending == Decimal("0.00")
        assert summary.total == Decimal("90.00")
        assert summary.withdrawn == Decimal("0.00")

    def test_captures_gross_tranches_once_each(self, stripe_gateway, completed_order):
        intent = completed_order.payment_intent_id

        assert stripe_gateway.capture_amounts(intent) == [1100, 5500, 2200, 2200]
        assert stripe_gateway.captured_cents(intent) == 11000
        assert [c["final_capture"] for c in stripe_gateway.captures] == [False, False, False, True]

    def test_credits_net_share_per_tranche(self, stripe_gateway, completed_order):
        credits = RevenueEntry.objects.filter(
            order=completed_order,
            movement_type=MovementType.MILESTONE_CAPTURE,
        ).order_by("created_at")

        assert [entry.amount for entry in credits] == [
            Decimal("9.00"),
            Decimal("45.00"),
            Decimal("18.00"),
            Decimal("18.00"),
        ]
        assert RevenueEntry.objects.filter(
            order=completed_order,
            movement_type=MovementType.ESCROW_RELEASE,
            amount=Decimal("90.00"),
        ).count() == 1

    def test_milestone_rows(self, stripe_gateway, completed_order):
        rows = PaymentMilestone.objects.for_order(completed_order)

        captured = {row.stage: row for row in rows.filter(payment_status=MilestonePaymentStatus.CAPTURED)}
        released = rows.filter(payment_status=MilestonePaymentStatus.RELEASED)

        assert set(captured) == set(CaptureStage)
        assert captured[CaptureStage.ACCEPTED].amount == Decimal("11.00")
        assert captured[CaptureStage.ACCEPTED].seller_net_amount == Decimal("9.00")
        assert captured[CaptureStage.IN_ESCROW].percentage_of_total == 50
        assert captured[CaptureStage.REVIEWED].triggered_by_role == "buyer"
        assert captured[CaptureStage.ACCEPTED].triggered_by_role == "system"
        assert released.count() == 4
        assert sum(row.amount for row in captured.values()) == completed_order.total_amount

    def test_status_history_and_timeline(self, stripe_gateway, completed_order):
        statuses = [entry["status"] for entry in completed_order.status_history]

        assert statuses == [
            OrderStatus.ACCEPTED,
            OrderStatus.STARTED,
            OrderStatus.HALFWAY_DONE,
            OrderStatus.DELIVERED,
            OrderStatus.WAITING_REVIEW,
            OrderStatus.COMPLETED,
        ]
        events = [entry["event"] for entry in completed_order.timeline]
        assert events.count("milestone_captured") == 4

    def test_progress_is_monotonic(self, stripe_gateway, order):
        seller, buyer = order.seller, order.buyer
        steps = [
            lambda: EscrowService.authorize(payment_intent_id=order.payment_intent_id),
            lambda: EscrowService.submit_requirements(order.id, user=buyer, requirements="Blue please"),
            lambda: EscrowService.start(order.id, user=seller),
            lambda: EscrowService.mark_halfway(order.id, user=seller),
            lambda: EscrowService.deliver(order.id, user=seller),
            lambda: EscrowService.request_revision(order.id, user=buyer, reason="Darker"),
            lambda: EscrowService.deliver(order.id, user=seller),
            lambda: EscrowService.approve(order.id, user=buyer),
        ]

        seen = [reload(order).progress]
        for step in steps:
            step()
            seen.append(reload(order).progress)

        assert seen == sorted(seen)
        assert seen == [0, 20, 25, 40, 60, 70, 70, 70, 100]

    def test_release_queues_transfer_after_commit(
        self, stripe_gateway, delivered_order, django_capture_on_commit_callbacks
    ):
        with (
            patch("payments.tasks.transfer_released_funds.delay") as mock_delay,
            patch("notifications.tasks.send_email_notification.delay"),
        ):
            with django_capture_on_commit_callbacks(execute=True):
                EscrowService.approve(delivered_order.id, user=delivered_order.buyer)

        mock_delay.assert_called_once_with(str(delivered_order.id))

    def test_payment_status_summary(self, stripe_gateway, started_order):
        status = EscrowService.get_payment_status(started_order)

        assert [stage["status"] for stage in status["stages"]] == [
            "completed",
            "completed",
            "current",
            "pending",
        ]
        assert status["captured_amount"] == "66.00"
        assert status["remaining_amount"] == "44.00"
        assert status["breakdown"]["pending_release_amount"] == "66.00"
        assert len(status["milestones"]) == 2


# =============================================================================
# Replays
# =============================================================================


@pytest.mark.django_db
class TestReplays:
    def test_duplicate_authorization_captures_once(self, stripe_gateway, order):
        first = EscrowService.authorize(payment_intent_id=order.payment_intent_id)
        second = EscrowService.authorize(payment_intent_id=order.payment_intent_id)

        assert first.duplicate is False
        assert first.captured_stage == CaptureStage.ACCEPTED
        assert second.duplicate is True
        assert second.order.status == OrderStatus.ACCEPTED
        assert len(stripe_gateway.captures) == 1
        assert captured_rows(order).count() == 1
        assert revenue(order).pending == Decimal("9.00")

    def test_start_replay_is_a_noop(self, stripe_gateway, accepted_order):
        EscrowService.start(accepted_order.id, user=accepted_order.seller)
        outcome = EscrowService.start(accepted_order.id, user=accepted_order.seller)

        assert outcome.duplicate is True
        assert stripe_gateway.capture_amounts(accepted_order.payment_intent_id) == [1100, 5500]
        assert revenue(accepted_order).pending == Decimal("54.00")

    def test_authorize_after_work_started_is_a_noop(self, stripe_gateway, started_order):
        outcome = EscrowService.authorize(payment_intent_id=started_order.payment_intent_id)

        assert outcome.duplicate is True
        assert reload(started_order).status == OrderStatus.STARTED

    def test_approve_replay_after_completion(self, stripe_gateway, completed_order):
        outcome = EscrowService.approve(completed_order.id, user=completed_order.buyer)

        assert outcome.duplicate is True
        assert revenue(completed_order).available == Decimal("90.00")
        assert len(stripe_gateway.captures) == 4

    def test_capture_key_is_stable(self, order):
        assert capture_key(order.id, CaptureStage.IN_ESCROW) == f"capture:{order.id}:in_escrow"

    def test_provider_side_replay_is_recorded_once(self, stripe_gateway, accepted_order):
        # The capture went through at Stripe but the first call's DB work was lost.
        key = capture_key(accepted_order.id, CaptureStage.IN_ESCROW)
        stripe_gateway.capture_partial(accepted_order.payment_intent_id, 5500, key)

        EscrowService.start(accepted_order.id, user=accepted_order.seller)

        row = captured_rows(accepted_order).get(stage=CaptureStage.IN_ESCROW)
        assert row.notes == "already captured at provider"
        assert stripe_gateway.captured_cents(accepted_order.payment_intent_id) == 6600


# =============================================================================
# Ordering
# =============================================================================


@pytest.mark.django_db
class TestOutOfOrder:
    def test_deliver_before_start_is_rejected(self, stripe_gateway, accepted_order):
        with pytest.raises(PreconditionError) as exc_info:
            EscrowService.deliver(accepted_order.id, user=accepted_order.seller)

        assert exc_info.value.error_code == "INVALID_ORDER_STATUS"
        assert reload(accepted_order).status == OrderStatus.ACCEPTED
        assert stripe_gateway.capture_amounts(accepted_order.payment_intent_id) == [1100]

    def test_replay_in_order_after_rejection(self, stripe_gateway, accepted_order):
        seller = accepted_order.seller
        with pytest.raises(PreconditionError):
            EscrowService.deliver(accepted_order.id, user=seller)

        EscrowService.start(accepted_order.id, user=seller)
        EscrowService.deliver(accepted_order.id, user=seller)

        order = reload(accepted_order)
        assert order.status == OrderStatus.DELIVERED
        assert stripe_gateway.capture_amounts(order.payment_intent_id) == [1100, 5500, 2200]
        assert revenue(order).pending == Decimal("72.00")

    def test_start_before_authorization_is_rejected(self, stripe_gateway, order):
        with pytest.raises(PreconditionError):
            EscrowService.start(order.id, user=order.seller)

        assert stripe_gateway.captures == []

    def test_approve_before_delivery_is_rejected(self, stripe_gateway, started_order):
        with pytest.raises(PreconditionError):
            EscrowService.approve(started_order.id, user=started_order.buyer)


# =============================================================================
# Revision Loop
# =============================================================================


@pytest.mark.django_db
class TestRevisionLoop:
    def test_redelivery_does_not_capture_again(self, stripe_gateway, delivered_order):
        buyer, seller = delivered_order.buyer, delivered_order.seller

        EscrowService.request_revision(delivered_order.id, user=buyer, reason="Change the colour")
        order = reload(delivered_order)
        assert order.status == OrderStatus.REQUESTED_REVISION
        assert order.revision_count == 1
        assert order.revision_reason == "Change the colour"

        outcome = EscrowService.deliver(delivered_order.id, user=seller, description="v2")

        assert outcome.duplicate is False
        assert outcome.captured_stage is None
        assert reload(delivered_order).status == OrderStatus.DELIVERED
        assert captured_rows(delivered_order).filter(stage=CaptureStage.DELIVERED).count() == 1
        assert stripe_gateway.capture_amounts(delivered_order.payment_intent_id) == [1100, 5500, 2200]

    def test_approve_directly_from_revision(self, stripe_gateway, delivered_order):
        EscrowService.request_revision(delivered_order.id, user=delivered_order.buyer)

        EscrowService.approve(delivered_order.id, user=delivered_order.buyer)

        order = reload(delivered_order)
        assert order.status == OrderStatus.COMPLETED
        assert stripe_gateway.captured_cents(order.payment_intent_id) == 11000
        assert revenue(order).available == Decimal("90.00")

    def test_two_rounds_of_revisions(self, stripe_gateway, delivered_order):
        buyer, seller = delivered_order.buyer, delivered_order.seller
        for _ in range(2):
            EscrowService.request_revision(delivered_order.id, user=buyer)
            EscrowService.deliver(delivered_order.id, user=seller)

        order = reload(delivered_order)
        assert order.revision_count == 2
        assert len(stripe_gateway.captures) == 3


# =============================================================================
# Cancellation
# =============================================================================


def expire_deadline(order):
    Order.objects.filter(pk=order.pk).update(delivery_date=timezone.now() - timedelta(hours=1))


@pytest.mark.django_db
class TestCancellation:
    def test_refunds_first_tranche_after_deadline(self, stripe_gateway, accepted_order):
        assert revenue(accepted_order).pending == Decimal("9.00")
        expire_deadline(accepted_order)

        outcome = EscrowService.cancel(accepted_order.id, user=accepted_order.buyer, reason="Seller vanished")

        order = reload(accepted_order)
        summary = revenue(order)
        assert order.status == OrderStatus.CANCELLED
        assert order.cancellation_reason == "Seller vanished"
        assert order.escrow_status == EscrowStatus.REFUNDED
        assert order.payment_status == OrderPaymentStatus.REFUNDED
        assert order.pending_release_amount == Decimal("0.00")
        assert order.progress == 20
        assert outcome.refunded_amount == Decimal("11.00")
        assert summary.pending == Decimal("0.00")
        assert summary.total == Decimal("0.00")
        assert stripe_gateway.refunds == [
            {
                "payment_intent_id": order.payment_intent_id,
                "amount_cents": 1100,
                "idempotency_key": f"refund:{order.id}",
            }
        ]
        # The uncaptured 90% of the hold is released too
        assert stripe_gateway.cancellations == [
            {"payment_intent_id": order.payment_intent_id, "idempotency_key": f"cancel:{order.id}"}
        ]
        refunded = PaymentMilestone.objects.for_order(order).filter(payment_status=MilestonePaymentStatus.REFUNDED)
        assert refunded.count() == 1

    def test_refunds_everything_captured(self, stripe_gateway, started_order):
        with freeze_time(timezone.now() + timedelta(days=8)):
            outcome = EscrowService.cancel(started_order.id, user=started_order.buyer)

        assert outcome.refunded_amount == Decimal("66.00")
        assert stripe_gateway.refunds[0]["amount_cents"] == 6600
        summary = revenue(started_order)
        assert summary.pending == Decimal("0.00")
        assert summary.total == Decimal("0.00")

    def test_before_deadline_is_rejected(self, stripe_gateway, accepted_order):
        with pytest.raises(PreconditionError) as exc_info:
            EscrowService.cancel(accepted_order.id, user=accepted_order.buyer)

        assert exc_info.value.error_code == "DEADLINE_NOT_PASSED"
        assert stripe_gateway.refunds == []
        assert revenue(accepted_order).pending == Decimal("9.00")

    def test_unpaid_order_releases_authorization(self, stripe_gateway, order):
        EscrowService.cancel(order.id, user=order.buyer)

        order = reload(order)
        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == OrderPaymentStatus.CANCELLED
        assert stripe_gateway.refunds == []
        assert stripe_gateway.cancellations == [
            {"payment_intent_id": order.payment_intent_id, "idempotency_key": f"cancel:{order.id}"}
        ]

    def test_delivered_order_cannot_be_cancelled(self, stripe_gateway, delivered_order):
        expire_deadline(delivered_order)

        with pytest.raises(PreconditionError):
            EscrowService.cancel(delivered_order.id, user=delivered_order.buyer)

    def test_seller_cannot_cancel(self, stripe_gateway, accepted_order):
        expire_deadline(accepted_order)

        with pytest.raises(PermissionDeniedError) as exc_info:
            EscrowService.cancel(accepted_order.id, user=accepted_order.seller)

        assert exc_info.value.error_code == "WRONG_ORDER_ROLE"

    def test_cancel_replay_is_a_noop(self, stripe_gateway, accepted_order):
        expire_deadline(accepted_order)
        EscrowService.cancel(accepted_order.id, user=accepted_order.buyer)

        outcome = EscrowService.cancel(accepted_order.id, user=accepted_order.buyer)

        assert outcome.duplicate is True
        assert len(stripe_gateway.refunds) == 1

    def test_refund_failure_changes_nothing(self, stripe_gateway, accepted_order):
        expire_deadline(accepted_order)
        stripe_gateway.refund_error = StripeAPIUnavailableError("Stripe down")

        with pytest.raises(RefundError):
            EscrowService.cancel(accepted_order.id, user=accepted_order.buyer)

        order = reload(accepted_order)
        assert order.status == OrderStatus.ACCEPTED
        assert revenue(order).pending == Decimal("9.00")
        assert not PaymentMilestone.objects.filter(payment_status=MilestonePaymentStatus.REFUNDED).exists()


# =============================================================================
# Capture Failure
# =============================================================================


@pytest.mark.django_db
class TestCaptureFailure:
    def test_failure_is_recorded_and_raised(self, stripe_gateway, accepted_order):
        stripe_gateway.capture_error = StripeCardDeclinedError("Your card was declined.", stripe_code="card_declined")

        with pytest.raises(CaptureError) as exc_info:
            EscrowService.start(accepted_order.id, user=accepted_order.seller)

        assert exc_info.value.details["stage"] == CaptureStage.IN_ESCROW
        assert exc_info.value.details["retryable"] is False

        order = reload(accepted_order)
        assert order.status == OrderStatus.ACCEPTED
        assert order.payment_status == OrderPaymentStatus.CAPTURE_FAILED
        assert order.last_payment_error == "Your card was declined."
        assert order.timeline[-1]["event"] == "capture_failed"

        failed = PaymentMilestone.objects.for_order(order).get(payment_status=MilestonePaymentStatus.FAILED)
        assert failed.stage == CaptureStage.IN_ESCROW
        assert failed.failure_code == "card_declined"
        assert revenue(order).pending == Decimal("9.00")

    def test_retry_after_failure_succeeds(self, stripe_gateway, accepted_order):
        stripe_gateway.capture_error = StripeAPIUnavailableError("Stripe down")
        with pytest.raises(CaptureError):
            EscrowService.start(accepted_order.id, user=accepted_order.seller)

        stripe_gateway.capture_error = None
        EscrowService.start(accepted_order.id, user=accepted_order.seller)

        order = reload(accepted_order)
        assert order.status == OrderStatus.STARTED
        assert order.payment_status == OrderPaymentStatus.PENDING
        assert order.last_payment_error == ""
        assert revenue(order).pending == Decimal("54.00")


# =============================================================================
# Access Control
# =============================================================================


@pytest.mark.django_db
class TestAccess:
    def test_buyer_cannot_start(self, stripe_gateway, accepted_order):
        with pytest.raises(PermissionDeniedError) as exc_info:
            EscrowService.start(accepted_order.id, user=accepted_order.buyer)

        assert exc_info.value.details["required_role"] == "seller"

    def test_outsider_rejected(self, stripe_gateway, accepted_order):
        with pytest.raises(PermissionDeniedError) as exc_info:
            EscrowService.start(accepted_order.id, user=UserFactory())

        assert exc_info.value.error_code == "NOT_ORDER_PARTY"

    def test_user_trigger_needs_a_user(self, stripe_gateway, accepted_order):
        with pytest.raises(PermissionDeniedError) as exc_info:
            EscrowService.fire(accepted_order.id, "start")

        assert exc_info.value.error_code == "ACTOR_REQUIRED"

    def test_stale_version_rejected(self, stripe_gateway, accepted_order):
        with pytest.raises(StaleRecordError):
            EscrowService.start(
                accepted_order.id,
                user=accepted_order.seller,
                expected_version=accepted_order.version - 1,
            )

        assert reload(accepted_order).status == OrderStatus.ACCEPTED

    def test_current_version_accepted(self, stripe_gateway, accepted_order):
        EscrowService.start(accepted_order.id, user=accepted_order.seller, expected_version=accepted_order.version)

        assert reload(accepted_order).status == OrderStatus.STARTED

    def test_either_party_can_dispute(self, stripe_gateway, started_order):
        EscrowService.dispute(started_order.id, user=started_order.seller, reason="Buyer unresponsive")

        order = reload(started_order)
        assert order.status == OrderStatus.DISPUTED
        assert order.dispute_reason == "Buyer unresponsive"
        assert revenue(order).pending == Decimal("54.00")

    def test_unknown_intent(self, stripe_gateway, db):
        with pytest.raises(PaymentNotFoundError):
            EscrowService.authorize(payment_intent_id="pi_unknown")


# =============================================================================
# Payment Webhooks Without Transitions
# =============================================================================


@pytest.mark.django_db
class TestPaymentEvents:
    def test_payment_failed_records_failed_milestone(self, order):
        EscrowService.handle_payment_failed(order.payment_intent_id, reason="Card declined", code="card_declined")

        order = reload(order)
        assert order.status == OrderStatus.CREATED
        assert order.payment_status == OrderPaymentStatus.FAILED
        failed = PaymentMilestone.objects.for_order(order).get()
        assert failed.stage == CaptureStage.ACCEPTED
        assert failed.payment_status == MilestonePaymentStatus.FAILED

    def test_payment_failed_ignores_terminal_orders(self, db):
        order = OrderFactory(status=OrderStatus.CANCELLED)

        EscrowService.handle_payment_failed(order.payment_intent_id, reason="late")

        assert not PaymentMilestone.objects.for_order(order).exists()

    def test_authorization_canceled_before_capture(self, order):
        EscrowService.handle_authorization_canceled(order.payment_intent_id)

        assert reload(order).payment_status == OrderPaymentStatus.CANCELLED

    def test_authorization_canceled_after_capture_is_ignored(self, stripe_gateway, accepted_order):
        EscrowService.handle_authorization_canceled(accepted_order.payment_intent_id)

        assert reload(accepted_order).payment_status == OrderPaymentStatus.PENDING

    def test_charge_refunded_marks_refunded_once(self, stripe_gateway, accepted_order):
        EscrowService.handle_charge_refunded(accepted_order.payment_intent_id, 1100)
        EscrowService.handle_charge_refunded(accepted_order.payment_intent_id, 1100)

        order = reload(accepted_order)
        assert order.payment_status == OrderPaymentStatus.REFUNDED
        assert [e["event"] for e in order.timeline].count("charge_refunded") == 1

    def test_partial_charge_refund_keeps_active_order_paid(self, stripe_gateway, started_order):
        EscrowService.handle_charge_refunded(started_order.payment_intent_id, 1100)

        order = reload(started_order)
        assert order.status == OrderStatus.STARTED
        assert order.payment_status == OrderPaymentStatus.PENDING
        assert order.timeline[-1]["event"] == "charge_partially_refunded"
        assert revenue(order).pending == Decimal("54.00")


@pytest.mark.django_db
def test_advance_order_helper_rejects_off_path_status(stripe_gateway, order):
    with pytest.raises(ValueError):
        advance_order(order, OrderStatus.DISPUTED)
