"""
Pytest fixtures for revenue ledger tests.
"""

from decimal import Decimal

import pytest

from authentication.tests.factories import UserFactory
from orders.tests.factories import OrderFactory
from payments.ledger import MovementType, RevenueLedgerService, RevenueMovementParams


@pytest.fixture
def seller(db):
    return UserFactory()


@pytest.fixture
def order(seller):
    return OrderFactory(seller=seller)


@pytest.fixture
def apply(seller):
    """
    Apply a movement for ``seller``.

    Keys default to "<movement>:<n>" so repeated calls in one test are
    distinct movements unless the test passes a key.
    """
    counter = {"n": 0}

    def _apply(movement_type, amount, key=None, **kwargs):
        counter["n"] += 1
        return RevenueLedgerService.apply_movement(
            RevenueMovementParams(
                seller_id=seller.pk,
                movement_type=movement_type,
                amount=Decimal(amount),
                idempotency_key=key or f"{movement_type}:{counter['n']}",
                **kwargs,
            )
        )

    return _apply


@pytest.fixture
def funded(apply):
    """Seller with 90.00 captured, of which 50.00 released."""
    apply(MovementType.MILESTONE_CAPTURE, "90.00")
    apply(MovementType.ESCROW_RELEASE, "50.00")
