"""
Pytest fixtures shared by the payments test packages.

Orders in a given lifecycle status are produced by driving a fresh
OrderFactory order through EscrowService against the fake gateway, so
their milestones and revenue entries are real.

Usage:
    def test_deliver_captures_twenty_percent(stripe_gateway, started_order):
        EscrowService.deliver(started_order.id, user=started_order.seller)
"""

import pytest

from orders.tests.factories import OrderFactory, advance_order
from payments.state_machines import OrderStatus
from payments.tests.factories import ConnectedAccountFactory


@pytest.fixture
def order(db):
    """Priced order waiting for the buyer's authorization."""
    return OrderFactory()


@pytest.fixture
def buyer(order):
    return order.buyer


@pytest.fixture
def seller(order):
    return order.seller


@pytest.fixture
def accepted_order(stripe_gateway, order):
    return advance_order(order, OrderStatus.ACCEPTED)


@pytest.fixture
def started_order(stripe_gateway, order):
    return advance_order(order, OrderStatus.STARTED)


@pytest.fixture
def delivered_order(stripe_gateway, order):
    return advance_order(order, OrderStatus.DELIVERED)


@pytest.fixture
def completed_order(stripe_gateway, order):
    return advance_order(order, OrderStatus.COMPLETED)


@pytest.fixture
def connected_account(seller):
    """Payout-ready Stripe account of the order's seller."""
    return ConnectedAccountFactory(user=seller)
