"""
Pytest fixtures for Stripe adapter tests.

The SDK resources are patched; the adapter's own logic (argument
building, already-done handling, error translation) runs for real.

Sections:
    - Mock Stripe Objects
    - Mock Stripe Client Fixtures
    - Stripe Error Factories
"""

from dataclasses import dataclass, field
from typing import Any
from unittest.mock import patch

import pytest
import stripe


# =============================================================================
# Mock Stripe Objects
# =============================================================================


@dataclass
class MockStripeObject:
    """Attribute access over a dict, like a StripeObject."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)


@dataclass
class MockStripeList:
    items: list[MockStripeObject] = field(default_factory=list)

    @property
    def data(self) -> list[MockStripeObject]:
        return self.items


@pytest.fixture
def mock_payment_intent():
    def _create(
        id: str = "pi_test123456",
        status: str = "requires_capture",
        amount: int = 11000,
        currency: str = "usd",
        amount_received: int = 0,
        amount_capturable: int = 11000,
        latest_charge: str | None = "ch_test123456",
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "currency": currency,
                "client_secret": f"{id}_secret_abc123",
                "amount_received": amount_received,
                "amount_capturable": amount_capturable,
                "latest_charge": latest_charge,
                "metadata": metadata or {},
            }
        )

    return _create


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def mock_stripe_http_client():
    """No real HTTP client is built during adapter tests."""
    with patch("stripe.RequestsClient") as mock:
        yield mock


@pytest.fixture
def mock_stripe_payment_intent(mock_payment_intent):
    with patch("stripe.PaymentIntent") as mock:
        mock.create.return_value = mock_payment_intent(status="requires_payment_method", amount_capturable=0)
        mock.capture.return_value = mock_payment_intent(amount_received=1100)
        mock.cancel.return_value = mock_payment_intent(status="canceled", amount_capturable=0)
        mock.retrieve.return_value = mock_payment_intent()
        yield mock


@pytest.fixture
def mock_stripe_customer():
    with patch("stripe.Customer") as mock:
        mock.list.return_value = MockStripeList()
        mock.create.return_value = MockStripeObject({"id": "cus_new"})
        yield mock


@pytest.fixture
def mock_stripe_refund():
    with patch("stripe.Refund") as mock:
        mock.create.return_value = MockStripeObject(
            {"id": "re_test123", "amount": 1100, "currency": "usd", "status": "succeeded"}
        )
        yield mock


@pytest.fixture
def mock_stripe_transfer():
    with patch("stripe.Transfer") as mock:
        mock.create.return_value = MockStripeObject(
            {"id": "tr_test123", "amount": 9000, "currency": "usd", "destination": "acct_dest"}
        )
        yield mock


@pytest.fixture
def mock_stripe_payout():
    with patch("stripe.Payout") as mock:
        mock.create.return_value = MockStripeObject(
            {"id": "po_test123", "amount": 5000, "currency": "usd", "status": "pending"}
        )
        yield mock


# =============================================================================
# Stripe Error Factories
# =============================================================================


@pytest.fixture
def card_error():
    def _create(decline_code: str | None = "generic_decline") -> stripe.CardError:
        error = stripe.CardError(message="Your card was declined.", param=None, code="card_declined")
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def invalid_request_error():
    def _create(
        message: str = "No such payment_intent",
        param: str | None = "intent",
        code: str | None = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param=param, code=code)

    return _create
