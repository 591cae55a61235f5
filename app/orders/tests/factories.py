"""
Factory Boy factories for orders.

OrderFactory builds a priced, unpaid order (status created) with a
payment intent id already attached, as CheckoutService would leave it.
advance_order() then walks it through the real EscrowService, so
milestones, ledger entries and progress are exactly what production
code writes. It needs the stripe_gateway fixture to be active.

Usage:
    from orders.tests.factories import OrderFactory, advance_order

    order = OrderFactory(price=Decimal("100.00"))
    order = advance_order(order, OrderStatus.DELIVERED)
"""

from datetime import timedelta
from decimal import Decimal

import factory
from django.utils import timezone

from authentication.tests.factories import UserFactory
from orders.models import Order
from payments.pricing import calculate_price, split_milestones
from payments.services import EscrowService
from payments.state_machines import CaptureStage, OrderStatus


def _price(order):
    return calculate_price(
        order.price,
        vat_rate=order.vat_rate,
        platform_fee_rate=order.platform_fee_rate,
        currency=order.currency,
    )


def _tranche(stage):
    return factory.LazyAttribute(lambda o: split_milestones(o.total_amount)[stage])


class OrderFactory(factory.django.DjangoModelFactory):
    """
    Order priced at 100.00 with a 10% platform fee and no VAT.

    Gross tranches are 11/55/22/22 of the 110.00 total; the seller's
    net share is 9/45/18/18 of 90.00.
    """

    class Meta:
        model = Order

    buyer = factory.SubFactory(UserFactory)
    seller = factory.SubFactory(UserFactory)
    gig_id = factory.Sequence(lambda n: f"gig_{n}")
    gig_title = "Logo design"

    price = Decimal("100.00")
    platform_fee_rate = Decimal("0.10")
    vat_rate = Decimal("0.00")
    currency = "USD"
    platform_fee = factory.LazyAttribute(lambda o: _price(o).platform_fee)
    vat_amount = factory.LazyAttribute(lambda o: _price(o).vat_amount)
    total_amount = factory.LazyAttribute(lambda o: _price(o).total_amount)
    seller_net_payout = factory.LazyAttribute(lambda o: _price(o).seller_net_payout)

    authorized_amount = _tranche(CaptureStage.ACCEPTED)
    escrow_amount = _tranche(CaptureStage.IN_ESCROW)
    delivery_amount = _tranche(CaptureStage.DELIVERED)
    review_amount = _tranche(CaptureStage.REVIEWED)

    payment_intent_id = factory.Sequence(lambda n: f"pi_test_{n}")
    delivery_date = factory.LazyFunction(lambda: timezone.now() + timedelta(days=7))


# Status reached after each step of the happy path, with the call that gets there.
_HAPPY_PATH = (
    (OrderStatus.ACCEPTED, lambda o: EscrowService.authorize(payment_intent_id=o.payment_intent_id)),
    (OrderStatus.STARTED, lambda o: EscrowService.start(o.id, user=o.seller)),
    (OrderStatus.HALFWAY_DONE, lambda o: EscrowService.mark_halfway(o.id, user=o.seller)),
    (OrderStatus.DELIVERED, lambda o: EscrowService.deliver(o.id, user=o.seller, description="Final files")),
    (OrderStatus.COMPLETED, lambda o: EscrowService.approve(o.id, user=o.buyer)),
)


def advance_order(order: Order, status: str) -> Order:
    """Drive ``order`` along the happy path until it reaches ``status``."""
    for reached, step in _HAPPY_PATH:
        step(order)
        if reached == status:
            break
    else:
        raise ValueError(f"{status} is not on the happy path")
    return Order.objects.get(pk=order.pk)
