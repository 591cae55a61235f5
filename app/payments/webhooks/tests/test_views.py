"""
Tests for the Stripe webhook endpoint.

Tests cover:
- 400 only for a missing or invalid signature
- 200 {"received": true} for everything else: new, duplicate, unknown
  and failed events
- Duplicate payment_intent events capture and credit once
"""

import json
from decimal import Decimal
from unittest.mock import patch

import pytest

from orders.models import Order
from payments.ledger import RevenueLedgerService
from payments.models import PaymentMilestone, WebhookEvent
from payments.state_machines import OrderStatus, WebhookEventStatus
from payments.webhooks.tests.conftest import intent_for, sign
from payments.tests.factories import WebhookEventFactory

RECEIVED = {"received": True}


# =============================================================================
# Signature
# =============================================================================


@pytest.mark.django_db
class TestSignature:
    def test_missing_signature(self, post_event, make_event):
        response = post_event(make_event("payment_intent.succeeded", {"id": "pi_1"}), signature="")

        assert response.status_code == 400
        assert response.json() == {"error": "Missing signature"}
        assert not WebhookEvent.objects.exists()

    def test_wrong_secret(self, post_event, make_event):
        event = make_event("payment_intent.succeeded", {"id": "pi_1"})
        payload = json.dumps(event).encode()

        response = post_event(event, signature=sign(payload, secret="whsec_someone_else"))

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid signature"}
        assert not WebhookEvent.objects.exists()

    def test_signature_for_other_payload(self, post_event, make_event):
        response = post_event(
            make_event("payment_intent.succeeded", {"id": "pi_1"}),
            signature=sign(b'{"id": "evt_other"}'),
        )

        assert response.status_code == 400

    def test_stale_timestamp(self, post_event, make_event):
        event = make_event("payment_intent.succeeded", {"id": "pi_1"})
        payload = json.dumps(event).encode()

        response = post_event(event, signature=sign(payload, timestamp=1_000_000_000))

        assert response.status_code == 400

    def test_get_not_allowed(self, client):
        response = client.get("/api/v1/webhooks/payments/")

        assert response.status_code == 405


# =============================================================================
# Acknowledgement
# =============================================================================


@pytest.mark.django_db
class TestAcknowledgement:
    def test_unknown_event_type_is_acknowledged(self, post_event, make_event):
        response = post_event(make_event("customer.created", {"id": "cus_1"}, event_id="evt_unknown"))

        assert response.status_code == 200
        assert response.json() == RECEIVED
        event = WebhookEvent.objects.get(stripe_event_id="evt_unknown")
        assert event.status == WebhookEventStatus.PROCESSED

    def test_event_without_type_is_acknowledged_not_stored(self, post_event, make_event):
        event = make_event("", {"id": "x"})

        response = post_event(event)

        assert response.status_code == 200
        assert response.json() == RECEIVED
        assert not WebhookEvent.objects.exists()

    def test_handler_failure_is_still_acknowledged(self, post_event, make_event):
        response = post_event(make_event("account.updated", {"object": "account"}, event_id="evt_bad_account"))

        assert response.status_code == 200
        assert response.json() == RECEIVED
        event = WebhookEvent.objects.get(stripe_event_id="evt_bad_account")
        assert event.status == WebhookEventStatus.FAILED
        assert event.error_message

    def test_unexpected_handler_error_is_acknowledged(self, post_event, make_event):
        with patch(
            "payments.webhooks.processor.dispatch_webhook",
            side_effect=RuntimeError("database went away"),
        ):
            response = post_event(make_event("payout.paid", {"id": "po_1"}, event_id="evt_boom"))

        assert response.status_code == 200
        assert WebhookEvent.objects.get(stripe_event_id="evt_boom").status == WebhookEventStatus.FAILED

    def test_processed_event_is_not_reprocessed(self, post_event, make_event):
        WebhookEventFactory(stripe_event_id="evt_done", status=WebhookEventStatus.PROCESSED)

        with patch("payments.webhooks.views.WebhookProcessor.process") as process:
            response = post_event(make_event("payout.paid", {"id": "po_1"}, event_id="evt_done"))

        assert response.status_code == 200
        process.assert_not_called()

    def test_event_in_progress_is_not_reprocessed(self, post_event, make_event):
        WebhookEventFactory(stripe_event_id="evt_busy", status=WebhookEventStatus.PROCESSING)

        with patch("payments.webhooks.views.WebhookProcessor.process") as process:
            response = post_event(make_event("payout.paid", {"id": "po_1"}, event_id="evt_busy"))

        assert response.status_code == 200
        process.assert_not_called()

    def test_failed_event_redelivery_is_retried(self, post_event, make_event):
        WebhookEventFactory(
            stripe_event_id="evt_retry",
            event_type="customer.created",
            status=WebhookEventStatus.FAILED,
            retry_count=1,
        )

        response = post_event(make_event("customer.created", {"id": "cus_1"}, event_id="evt_retry"))

        assert response.status_code == 200
        event = WebhookEvent.objects.get(stripe_event_id="evt_retry")
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.retry_count == 2


# =============================================================================
# Order Payment Events
# =============================================================================


@pytest.mark.django_db
class TestOrderPaymentEvents:
    def test_authorization_accepts_order(self, stripe_gateway, order, post_event, make_event):
        response = post_event(make_event("payment_intent.amount_capturable_updated", intent_for(order)))

        assert response.status_code == 200
        order = Order.objects.get(pk=order.pk)
        assert order.status == OrderStatus.ACCEPTED
        assert order.stripe_charge_id == f"ch_{order.payment_intent_id}"
        assert stripe_gateway.captured_cents(order.payment_intent_id) == 1100

    def test_duplicate_succeeded_events_capture_and_credit_once(self, stripe_gateway, order, post_event, make_event):
        first = post_event(make_event("payment_intent.succeeded", intent_for(order), event_id="evt_first"))
        second = post_event(make_event("payment_intent.succeeded", intent_for(order), event_id="evt_second"))
        replay = post_event(make_event("payment_intent.succeeded", intent_for(order), event_id="evt_first"))

        assert first.status_code == second.status_code == replay.status_code == 200
        assert PaymentMilestone.objects.for_order(order).captured().count() == 1
        assert stripe_gateway.capture_amounts(order.payment_intent_id) == [1100]
        summary = RevenueLedgerService.get_summary(order.seller_id)
        assert summary.pending == Decimal("9.00")
        assert summary.total == Decimal("9.00")
        assert WebhookEvent.objects.filter(status=WebhookEventStatus.PROCESSED).count() == 2

    def test_authorization_for_cancelled_order_is_acknowledged(self, stripe_gateway, order, post_event, make_event):
        Order.objects.filter(pk=order.pk).update(status=OrderStatus.CANCELLED)

        response = post_event(make_event("payment_intent.succeeded", intent_for(order), event_id="evt_late"))

        assert response.status_code == 200
        assert WebhookEvent.objects.get(stripe_event_id="evt_late").status == WebhookEventStatus.PROCESSED
        assert stripe_gateway.captures == []
