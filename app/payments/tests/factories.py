"""
Factory Boy factories for payment test data.

Usage:
    from payments.tests.factories import (
        ConnectedAccountFactory,
        PayoutFactory,
        WebhookEventFactory,
    )

    account = ConnectedAccountFactory(user=seller)
    event = WebhookEventFactory(event_type="payment_intent.succeeded", payload=payload)
"""

from datetime import timedelta
from decimal import Decimal

import factory
from django.utils import timezone

from authentication.tests.factories import UserFactory
from orders.tests.factories import OrderFactory
from payments.models import (
    ConnectedAccount,
    Payout,
    PromotionPurchase,
    TimelineExtension,
    WebhookEvent,
)
from payments.state_machines import (
    OnboardingStatus,
    PromotionStatus,
    TimelineExtensionStatus,
    WebhookEventStatus,
)


class ConnectedAccountFactory(factory.django.DjangoModelFactory):
    """Connected account that finished onboarding and can receive payouts."""

    class Meta:
        model = ConnectedAccount

    user = factory.SubFactory(UserFactory)
    stripe_account_id = factory.Sequence(lambda n: f"acct_test_{n}")
    onboarding_status = OnboardingStatus.COMPLETE
    charges_enabled = True
    payouts_enabled = True
    details_submitted = True


class PayoutFactory(factory.django.DjangoModelFactory):
    """
    Pending payout.

    Does not touch the revenue ledger; use PayoutService.request_withdrawal
    when the test needs the matching withdrawal entry.
    """

    class Meta:
        model = Payout

    connected_account = factory.SubFactory(ConnectedAccountFactory)
    seller = factory.SelfAttribute("connected_account.user")
    amount = Decimal("50.00")
    currency = "USD"


class WebhookEventFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = WebhookEvent

    stripe_event_id = factory.Sequence(lambda n: f"evt_test_{n}")
    event_type = "payment_intent.succeeded"
    payload = factory.LazyAttribute(
        lambda o: {"id": o.stripe_event_id, "type": o.event_type, "data": {"object": {}}}
    )
    status = WebhookEventStatus.PENDING


class PromotionPurchaseFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PromotionPurchase

    user = factory.SubFactory(UserFactory)
    gig_id = factory.Sequence(lambda n: f"gig_promo_{n}")
    plan_key = "basic"
    plan_name = "Basic Boost"
    priority = 1
    duration_days = 7
    base_amount = Decimal("9.99")
    total_amount = Decimal("10.49")
    stripe_payment_intent_id = factory.Sequence(lambda n: f"pi_promo_{n}")
    status = PromotionStatus.ACTIVE
    starts_at = factory.LazyFunction(timezone.now)
    expires_at = factory.LazyAttribute(lambda o: o.starts_at + timedelta(days=o.duration_days))


class TimelineExtensionFactory(factory.django.DjangoModelFactory):
    """Paid three-day extension of an order's delivery deadline."""

    class Meta:
        model = TimelineExtension

    order = factory.SubFactory(OrderFactory)
    requested_by = factory.SelfAttribute("order.buyer")
    extension_days = 3
    amount = Decimal("16.50")
    seller_revenue_amount = Decimal("15.00")
    stripe_payment_intent_id = factory.Sequence(lambda n: f"pi_ext_{n}")
    status = TimelineExtensionStatus.COMPLETED
    previous_deadline = factory.LazyAttribute(lambda o: o.order.delivery_date)
    new_deadline = factory.LazyAttribute(lambda o: o.order.delivery_date + timedelta(days=o.extension_days))
    completed_at = factory.LazyFunction(timezone.now)
