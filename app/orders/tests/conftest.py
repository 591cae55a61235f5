"""
Pytest fixtures for orders tests.

Orders past ``created`` are produced by driving an OrderFactory order
through EscrowService against the fake gateway, as in the payments
tests.
"""

from unittest.mock import MagicMock, patch

import pytest

from orders.tests.factories import OrderFactory, advance_order
from payments.state_machines import OrderStatus


@pytest.fixture
def order(db):
    return OrderFactory()


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
def auth_client(api_client):
    def _auth(user):
        api_client.force_authenticate(user=user)
        return api_client

    return _auth


@pytest.fixture
def job_lock():
    """DistributedLock of the orders jobs; there is no Redis in the test run."""
    with patch("orders.tasks.DistributedLock", MagicMock()) as lock:
        yield lock
