"""
Tests for webhook event handlers.

Handlers are exercised through dispatch_webhook with stored
WebhookEvent rows, the way WebhookProcessor calls them.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from orders.models import Order
from payments.ledger import RevenueLedgerService
from payments.models import PaymentMilestone, Payout, PromotionPurchase, TimelineExtension
from payments.purposes import PromotionPurpose
from payments.services import CheckoutService, PayoutService
from payments.state_machines import (
    MilestonePaymentStatus,
    OrderPaymentStatus,
    OrderStatus,
    PayoutState,
    TimelineExtensionStatus,
    WebhookEventStatus,
)
from payments.tests.factories import ConnectedAccountFactory, PayoutFactory, WebhookEventFactory
from payments.webhooks.handlers import WEBHOOK_HANDLERS, dispatch_webhook, register_handler
from payments.webhooks.processor import WebhookProcessor
from payments.webhooks.tests.conftest import intent_for


def event(event_type, data_object):
    return WebhookEventFactory(event_type=event_type, payload={"type": event_type, "data": {"object": data_object}})


# =============================================================================
# Registry
# =============================================================================


@pytest.mark.django_db
class TestDispatch:
    def test_unknown_type_is_a_no_op(self):
        result = dispatch_webhook(event("invoice.paid", {"id": "in_1"}))

        assert result.success
        assert result.data is None

    def test_registered_handler_is_called(self):
        calls = []

        @register_handler("test.event")
        def handle_test(webhook_event):
            calls.append(webhook_event.stripe_event_id)
            return "handled"

        try:
            webhook_event = event("test.event", {})
            assert dispatch_webhook(webhook_event) == "handled"
            assert calls == [webhook_event.stripe_event_id]
        finally:
            WEBHOOK_HANDLERS.pop("test.event")

    def test_handled_events(self):
        assert {
            "payment_intent.amount_capturable_updated",
            "payment_intent.succeeded",
            "payment_intent.payment_failed",
            "payment_intent.canceled",
            "charge.refunded",
            "payout.paid",
            "payout.failed",
            "account.updated",
        } <= set(WEBHOOK_HANDLERS)


# =============================================================================
# Payment Intents
# =============================================================================


@pytest.mark.django_db
class TestOrderPayment:
    def test_capturable_update_authorizes(self, stripe_gateway, order):
        result = dispatch_webhook(event("payment_intent.amount_capturable_updated", intent_for(order)))

        assert result.success
        assert Order.objects.get(pk=order.pk).status == OrderStatus.ACCEPTED

    def test_succeeded_after_capturable_update_is_absorbed(self, stripe_gateway, order):
        dispatch_webhook(event("payment_intent.amount_capturable_updated", intent_for(order)))
        result = dispatch_webhook(event("payment_intent.succeeded", intent_for(order, status="succeeded")))

        assert result.success
        assert PaymentMilestone.objects.for_order(order).captured().count() == 1
        assert RevenueLedgerService.get_summary(order.seller_id).pending == Decimal("9.00")

    def test_capturable_update_for_promotion_is_ignored(self, stripe_gateway, order):
        intent = {"id": "pi_promo", "metadata": PromotionPurpose(user_id="1", plan_key="basic").to_metadata()}

        result = dispatch_webhook(event("payment_intent.amount_capturable_updated", intent))

        assert result.success
        assert stripe_gateway.captures == []

    def test_intent_without_purpose_is_ignored(self, stripe_gateway, db):
        result = dispatch_webhook(event("payment_intent.succeeded", {"id": "pi_other", "metadata": {}}))

        assert result.success
        assert result.data is None

    def test_unknown_order_intent_fails_for_retry(self, stripe_gateway, order):
        intent = intent_for(order, id="pi_not_ours")
        webhook_event = event("payment_intent.succeeded", intent)

        result = WebhookProcessor.process(webhook_event)

        assert not result.success
        assert webhook_event.status == WebhookEventStatus.FAILED

    def test_payment_failed_records_attempt(self, stripe_gateway, order):
        intent = intent_for(
            order,
            last_payment_error={"message": "Your card was declined.", "decline_code": "generic_decline"},
        )

        result = dispatch_webhook(event("payment_intent.payment_failed", intent))

        assert result.success
        order = Order.objects.get(pk=order.pk)
        assert order.payment_status == OrderPaymentStatus.FAILED
        assert order.last_payment_error == "Your card was declined."
        failed = PaymentMilestone.objects.for_order(order).get()
        assert failed.payment_status == MilestonePaymentStatus.FAILED

    def test_canceled_authorization(self, stripe_gateway, order):
        result = dispatch_webhook(event("payment_intent.canceled", intent_for(order, status="canceled")))

        assert result.success
        assert Order.objects.get(pk=order.pk).payment_status == OrderPaymentStatus.CANCELLED


@pytest.mark.django_db
class TestAutomaticCapturePurposes:
    def test_promotion_activated_once(self, stripe_gateway, order):
        checkout = CheckoutService.create_promotion_checkout(user=order.buyer, plan_key="basic")
        intent = {
            "id": checkout.payment_intent_id,
            "amount_received": 1049,
            "currency": "usd",
            "metadata": stripe_gateway.intents[checkout.payment_intent_id].metadata,
        }

        dispatch_webhook(event("payment_intent.succeeded", intent))
        dispatch_webhook(event("payment_intent.succeeded", intent))

        purchase = PromotionPurchase.objects.get()
        assert purchase.user == order.buyer
        assert purchase.plan_key == "basic"

    def test_timeline_extension_completed(self, stripe_gateway, accepted_order):
        checkout = CheckoutService.create_timeline_extension_checkout(
            accepted_order.id,
            user=accepted_order.buyer,
            extension_days=7,
        )
        intent = {
            "id": checkout.payment_intent_id,
            "metadata": stripe_gateway.intents[checkout.payment_intent_id].metadata,
        }

        result = dispatch_webhook(event("payment_intent.succeeded", intent))

        assert result.success
        assert TimelineExtension.objects.get().status == TimelineExtensionStatus.COMPLETED
        order = Order.objects.get(pk=accepted_order.pk)
        assert order.delivery_date == accepted_order.delivery_date + timedelta(days=7)

    def test_timeline_extension_paid_after_cancellation_is_refunded(self, stripe_gateway, accepted_order):
        checkout = CheckoutService.create_timeline_extension_checkout(
            accepted_order.id,
            user=accepted_order.buyer,
            extension_days=7,
        )
        Order.objects.filter(pk=accepted_order.pk).update(status=OrderStatus.CANCELLED)
        intent = {
            "id": checkout.payment_intent_id,
            "metadata": stripe_gateway.intents[checkout.payment_intent_id].metadata,
        }

        result = dispatch_webhook(event("payment_intent.succeeded", intent))

        assert result.success
        assert TimelineExtension.objects.get().status == TimelineExtensionStatus.REFUNDED
        assert [refund["payment_intent_id"] for refund in stripe_gateway.refunds] == [checkout.payment_intent_id]


# =============================================================================
# Charges
# =============================================================================


@pytest.mark.django_db
class TestChargeRefunded:
    def test_records_confirmation(self, stripe_gateway, accepted_order):
        charge = {
            "id": "ch_1",
            "payment_intent": accepted_order.payment_intent_id,
            "amount_refunded": 1100,
        }

        result = dispatch_webhook(event("charge.refunded", charge))

        assert result.success
        assert result.data.pk == accepted_order.pk
        # Revenue is only moved by cancellation
        assert RevenueLedgerService.get_summary(accepted_order.seller_id).pending == Decimal("9.00")

    def test_charge_without_intent(self, db):
        assert dispatch_webhook(event("charge.refunded", {"id": "ch_1"})).data is None


# =============================================================================
# Payouts & Accounts
# =============================================================================


@pytest.mark.django_db
class TestPayoutEvents:
    def test_paid_by_metadata(self):
        payout = PayoutFactory()

        dispatch_webhook(event("payout.paid", {"id": "po_1", "metadata": {"payout_id": str(payout.id)}}))

        payout = Payout.objects.get(pk=payout.pk)
        assert payout.status == PayoutState.PAID

    def test_paid_by_provider_id(self):
        payout = PayoutFactory()
        payout.mark_in_transit("po_known")
        payout.save()

        dispatch_webhook(event("payout.paid", {"id": "po_known"}))

        payout = Payout.objects.get(pk=payout.pk)
        assert payout.status == PayoutState.PAID

    def test_failed_restores_available(self, completed_order, connected_account):
        payout = PayoutService.request_withdrawal(seller=completed_order.seller, amount="40.00")

        dispatch_webhook(
            event(
                "payout.failed",
                {"id": "po_1", "failure_code": "account_closed", "metadata": {"payout_id": str(payout.id)}},
            )
        )

        payout = Payout.objects.get(pk=payout.pk)
        assert payout.status == PayoutState.FAILED
        assert payout.failure_reason == "account_closed"
        revenue = RevenueLedgerService.get_summary(completed_order.seller_id)
        assert revenue.available == Decimal("90.00")
        assert revenue.withdrawn == Decimal("0.00")

    def test_unknown_payout_is_acknowledged(self, db):
        result = dispatch_webhook(event("payout.paid", {"id": "po_unknown"}))

        assert result.success
        assert result.data is None


@pytest.mark.django_db
class TestAccountUpdated:
    def test_syncs_account(self):
        account = ConnectedAccountFactory(payouts_enabled=False)

        dispatch_webhook(
            event(
                "account.updated",
                {
                    "id": account.stripe_account_id,
                    "charges_enabled": True,
                    "payouts_enabled": True,
                    "details_submitted": True,
                },
            )
        )

        account.refresh_from_db()
        assert account.payouts_enabled

    def test_missing_account_id(self, db):
        result = dispatch_webhook(event("account.updated", {}))

        assert result.error_code == "INVALID_WEBHOOK_PAYLOAD"
