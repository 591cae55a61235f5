"""
Tests for payment models.

Tests cover:
- PaymentMilestone append-only rules and settled-stage uniqueness
- WebhookEvent processing helpers
- ConnectedAccount capability sync
- Payout state machine
- PromotionPurchase active/elapsed querysets
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from payments.exceptions import IntegrityViolation
from payments.models import PaymentMilestone, PromotionPurchase
from payments.state_machines import (
    CaptureStage,
    MilestonePaymentStatus,
    OnboardingStatus,
    PayoutState,
    PromotionStatus,
    WebhookEventStatus,
)
from payments.tests.factories import (
    ConnectedAccountFactory,
    PayoutFactory,
    PromotionPurchaseFactory,
    WebhookEventFactory,
)


def make_milestone(order, stage=CaptureStage.ACCEPTED, status=MilestonePaymentStatus.CAPTURED, amount="11.00"):
    return PaymentMilestone.objects.create(
        order=order,
        stage=stage,
        percentage_of_total=10,
        amount=Decimal(amount),
        seller_net_amount=Decimal("9.00"),
        payment_status=status,
    )


# =============================================================================
# PaymentMilestone
# =============================================================================


@pytest.mark.django_db
class TestPaymentMilestone:
    def test_rows_cannot_be_edited(self, order):
        milestone = make_milestone(order)
        milestone.notes = "edited"

        with pytest.raises(IntegrityViolation) as exc_info:
            milestone.save()

        assert exc_info.value.error_code == "MILESTONE_IMMUTABLE"

    def test_second_capture_of_a_stage_is_rejected(self, order):
        make_milestone(order)

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                make_milestone(order)

    def test_failed_attempts_may_repeat(self, order):
        make_milestone(order, status=MilestonePaymentStatus.FAILED)
        make_milestone(order, status=MilestonePaymentStatus.FAILED)
        make_milestone(order)

        assert PaymentMilestone.objects.for_order(order).count() == 3

    def test_captured_and_released_rows_coexist(self, order):
        make_milestone(order)
        make_milestone(order, status=MilestonePaymentStatus.RELEASED)

        assert PaymentMilestone.objects.captured_stages(order) == frozenset({CaptureStage.ACCEPTED})

    def test_captured_total_ignores_failed_rows(self, order):
        make_milestone(order)
        make_milestone(order, stage=CaptureStage.IN_ESCROW, amount="55.00")
        make_milestone(order, stage=CaptureStage.DELIVERED, status=MilestonePaymentStatus.FAILED, amount="22.00")

        assert PaymentMilestone.objects.captured_total(order) == Decimal("66.00")

    def test_captured_total_of_unpaid_order(self, order):
        assert PaymentMilestone.objects.captured_total(order) == Decimal("0.00")

    def test_amount_cannot_be_negative(self, order):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                make_milestone(order, amount="-1.00")


# =============================================================================
# WebhookEvent
# =============================================================================


@pytest.mark.django_db
class TestWebhookEvent:
    def test_processing_cycle(self):
        event = WebhookEventFactory()

        event.mark_processing()
        assert event.status == WebhookEventStatus.PROCESSING
        assert event.retry_count == 1

        event.mark_processed()
        assert event.is_processed
        assert event.processed_at is not None
        assert event.error_message is None

    def test_can_retry_until_limit(self, settings):
        settings.WEBHOOK_MAX_RETRIES = 3
        event = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=2)

        assert event.can_retry

        event.retry_count = 3
        assert not event.can_retry

    def test_only_failed_events_retry(self):
        assert not WebhookEventFactory(status=WebhookEventStatus.PENDING).can_retry

    def test_data_object(self):
        event = WebhookEventFactory(payload={"data": {"object": {"id": "pi_1"}}})

        assert event.data_object == {"id": "pi_1"}

    @pytest.mark.parametrize("payload", [{}, {"data": None}, {"data": {"object": None}}, ["not", "a", "dict"]])
    def test_data_object_tolerates_bad_payloads(self, payload):
        assert WebhookEventFactory(payload=payload).data_object == {}


# =============================================================================
# ConnectedAccount
# =============================================================================


@pytest.mark.django_db
class TestConnectedAccount:
    def test_becomes_ready_once(self):
        account = ConnectedAccountFactory(
            onboarding_status=OnboardingStatus.IN_PROGRESS,
            payouts_enabled=False,
            charges_enabled=False,
        )

        became_ready = account.sync_from_stripe(
            {"charges_enabled": True, "payouts_enabled": True, "details_submitted": True}
        )

        assert became_ready is True
        assert account.is_ready_for_payouts
        assert account.sync_from_stripe({"charges_enabled": True, "payouts_enabled": True}) is False

    def test_restricted_when_stripe_disables(self):
        account = ConnectedAccountFactory()

        account.sync_from_stripe(
            {
                "charges_enabled": True,
                "payouts_enabled": False,
                "details_submitted": True,
                "requirements": {"disabled_reason": "requirements.past_due"},
            }
        )

        assert account.onboarding_status == OnboardingStatus.RESTRICTED
        assert not account.is_ready_for_payouts

    def test_in_progress_until_details_submitted(self):
        account = ConnectedAccountFactory(onboarding_status=OnboardingStatus.NOT_STARTED)

        account.sync_from_stripe({})

        assert account.onboarding_status == OnboardingStatus.IN_PROGRESS


# =============================================================================
# Payout
# =============================================================================


@pytest.mark.django_db
class TestPayout:
    def test_pending_to_paid(self):
        payout = PayoutFactory()

        payout.mark_in_transit("po_123")
        payout.mark_paid()

        assert payout.status == PayoutState.PAID
        assert payout.stripe_payout_id == "po_123"
        assert payout.paid_at is not None
        assert payout.is_settled

    def test_paid_may_arrive_before_in_transit(self):
        payout = PayoutFactory()

        payout.mark_paid()

        assert payout.status == PayoutState.PAID

    def test_failure_records_reason(self):
        payout = PayoutFactory()

        payout.mark_failed("account_closed")

        assert payout.status == PayoutState.FAILED
        assert payout.failure_reason == "account_closed"

    def test_settled_payout_is_final(self):
        payout = PayoutFactory()
        payout.mark_paid()

        with pytest.raises(TransitionNotAllowed):
            payout.mark_failed("late")

    def test_status_is_protected(self):
        payout = PayoutFactory()

        with pytest.raises(AttributeError):
            payout.status = PayoutState.PAID


# =============================================================================
# PromotionPurchase
# =============================================================================


@pytest.mark.django_db
class TestPromotionPurchase:
    def test_active_and_elapsed(self):
        live = PromotionPurchaseFactory()
        over = PromotionPurchaseFactory(
            starts_at=timezone.now() - timedelta(days=10),
            duration_days=7,
        )
        expired = PromotionPurchaseFactory(
            starts_at=timezone.now() - timedelta(days=10),
            duration_days=7,
            status=PromotionStatus.EXPIRED,
        )

        assert list(PromotionPurchase.objects.active()) == [live]
        assert list(PromotionPurchase.objects.elapsed()) == [over]
        assert expired not in PromotionPurchase.objects.elapsed()
