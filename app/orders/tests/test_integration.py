"""
End-to-end order journeys through the public API.

Each test places an order over HTTP, authorizes it with a signed Stripe
webhook, and drives it with the parties' API calls against the fake
gateway. Prices use a 10% platform fee and no VAT, so a 100.00 gig is
charged 110.00 (captured 11/55/22/22) and earns the seller 90.00
(credited 9/45/18/18).
"""

import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.urls import reverse
from django.utils import timezone
from freezegun import freeze_time
from rest_framework import status

from authentication.tests.factories import UserFactory
from orders.models import Order
from payments.ledger import MovementType, RevenueLedgerService
from payments.models import PaymentMilestone, RevenueEntry
from payments.state_machines import OrderStatus
from payments.tests.factories import ConnectedAccountFactory
from payments.webhooks.tests.conftest import intent_for, sign


@pytest.fixture(autouse=True)
def ten_percent_fee(settings):
    settings.PLATFORM_FEE_PERCENT = 10


@pytest.fixture
def buyer(db):
    return UserFactory()


@pytest.fixture
def seller(db):
    return UserFactory()


@pytest.fixture
def as_user(api_client):
    def _as(user):
        api_client.force_authenticate(user=user)
        return api_client

    return _as


@pytest.fixture
def place_order(stripe_gateway, as_user, buyer, seller):
    def _place(**fields):
        body = {"seller_id": seller.id, "gig_id": "gig_logo", "price": "100.00", "vat_rate": "0", **fields}
        response = as_user(buyer).post(reverse("orders:order-list"), body, format="json")
        assert response.status_code == status.HTTP_201_CREATED
        return Order.objects.get(pk=response.data["order_id"])

    return _place


@pytest.fixture
def send_webhook(client):
    counter = iter(range(1, 1000))

    def _send(event_type, data_object, event_id=None):
        payload = json.dumps(
            {
                "id": event_id or f"evt_journey_{next(counter)}",
                "object": "event",
                "type": event_type,
                "data": {"object": data_object},
            }
        ).encode()
        response = client.post(
            reverse("stripe-webhook"),
            data=payload,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=sign(payload),
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"received": True}
        return response

    return _send


@pytest.fixture
def act(as_user):
    def _act(user, order, action, **body):
        response = as_user(user).post(
            reverse(f"orders:order-{action}", kwargs={"pk": order.pk}),
            body,
            format="json",
        )
        return response

    return _act


def summary(user):
    return RevenueLedgerService.get_summary(user.pk)


def net_credits(order):
    return list(
        RevenueEntry.objects.filter(order=order, movement_type=MovementType.MILESTONE_CAPTURE)
        .order_by("created_at")
        .values_list("amount", flat=True)
    )


@pytest.mark.django_db
class TestHappyPath:
    def test_full_journey_releases_seller_revenue(self, stripe_gateway, place_order, send_webhook, act, buyer, seller):
        order = place_order()
        assert order.total_amount == Decimal("110.00")
        assert order.status == OrderStatus.CREATED

        send_webhook("payment_intent.amount_capturable_updated", intent_for(order))
        progress = [Order.objects.get(pk=order.pk).progress]

        for user, action in (
            (seller, "start"),
            (seller, "halfway"),
            (seller, "deliver"),
            (buyer, "approve"),
        ):
            response = act(user, order, action)
            assert response.status_code == status.HTTP_200_OK
            progress.append(response.data["progress"])

        order = Order.objects.get(pk=order.pk)
        revenue = summary(seller)
        assert order.status == OrderStatus.COMPLETED
        assert progress == [20, 40, 60, 70, 100]
        assert stripe_gateway.capture_amounts(order.payment_intent_id) == [1100, 5500, 2200, 2200]
        assert net_credits(order) == [Decimal("9.00"), Decimal("45.00"), Decimal("18.00"), Decimal("18.00")]
        assert revenue.available == Decimal("90.00")
        assert revenue.pending == Decimal("0.00")
        assert revenue.total == Decimal("90.00")
        assert order.pending_release_amount == Decimal("0.00")

    def test_duplicate_authorization_webhook(self, stripe_gateway, place_order, send_webhook, seller):
        order = place_order()

        send_webhook("payment_intent.amount_capturable_updated", intent_for(order), event_id="evt_auth")
        send_webhook("payment_intent.succeeded", intent_for(order, status="succeeded"), event_id="evt_paid")
        send_webhook("payment_intent.amount_capturable_updated", intent_for(order), event_id="evt_auth")

        assert PaymentMilestone.objects.for_order(order).captured().count() == 1
        assert stripe_gateway.capture_amounts(order.payment_intent_id) == [1100]
        assert summary(seller).pending == Decimal("9.00")


@pytest.mark.django_db
class TestOutOfOrder:
    def test_early_delivery_rejected_then_replayed(self, stripe_gateway, place_order, send_webhook, act, seller):
        order = place_order()
        send_webhook("payment_intent.amount_capturable_updated", intent_for(order))

        early = act(seller, order, "deliver")

        assert early.status_code == status.HTTP_409_CONFLICT
        assert Order.objects.get(pk=order.pk).progress == 20

        assert act(seller, order, "start").status_code == status.HTTP_200_OK
        assert act(seller, order, "deliver").status_code == status.HTTP_200_OK
        assert stripe_gateway.capture_amounts(order.payment_intent_id) == [1100, 5500, 2200]
        assert summary(seller).pending == Decimal("72.00")


@pytest.mark.django_db
class TestRevisionLoop:
    def test_redelivery_captures_nothing_new(self, stripe_gateway, place_order, send_webhook, act, buyer, seller):
        order = place_order()
        send_webhook("payment_intent.amount_capturable_updated", intent_for(order))
        act(seller, order, "start")
        act(seller, order, "deliver")

        revision = act(buyer, order, "request-revision", reason="Darker blue")
        redelivery = act(seller, order, "deliver", description="Darker blue version")
        approval = act(buyer, order, "approve")

        assert revision.data["status"] == OrderStatus.REQUESTED_REVISION
        assert revision.data["progress"] == 70
        assert redelivery.data["duplicate"] is False
        assert "captured_stage" not in redelivery.data
        assert approval.data["status"] == OrderStatus.COMPLETED
        assert stripe_gateway.capture_amounts(order.payment_intent_id) == [1100, 5500, 2200, 2200]
        assert summary(seller).available == Decimal("90.00")


@pytest.mark.django_db
class TestCancellation:
    def test_cancel_after_deadline_refunds_first_tranche(self, stripe_gateway, place_order, send_webhook, act, buyer, seller):
        deadline = timezone.now() + timedelta(days=3)
        order = place_order(delivery_date=deadline.isoformat())
        send_webhook("payment_intent.amount_capturable_updated", intent_for(order))
        assert summary(seller).pending == Decimal("9.00")

        early = act(buyer, order, "cancel", reason="Too slow")
        assert early.status_code == status.HTTP_409_CONFLICT

        with freeze_time(deadline + timedelta(hours=1)):
            response = act(buyer, order, "cancel", reason="Too slow")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == OrderStatus.CANCELLED
        revenue = summary(seller)
        assert revenue.pending == Decimal("0.00")
        assert revenue.total == Decimal("0.00")
        assert [refund["amount_cents"] for refund in stripe_gateway.refunds] == [1100]


@pytest.mark.django_db
class TestRevenueConservation:
    def test_withdrawal_keeps_balances_conserved(self, stripe_gateway, place_order, send_webhook, act, as_user, buyer, seller):
        ConnectedAccountFactory(user=seller)
        order = place_order()
        send_webhook("payment_intent.amount_capturable_updated", intent_for(order))
        for user, action in ((seller, "start"), (seller, "deliver"), (buyer, "approve")):
            act(user, order, action)

        with patch("payments.tasks.execute_payout.delay"):
            response = as_user(seller).post(reverse("payments:withdrawals"), {"amount": "30.00"}, format="json")

        assert response.status_code == status.HTTP_201_CREATED
        revenue = summary(seller)
        assert revenue.available == Decimal("60.00")
        assert revenue.withdrawn == Decimal("30.00")
        assert revenue.total == Decimal("90.00")
        assert revenue.total == revenue.pending + revenue.available + revenue.withdrawn
