"""
Tests for payments API views.

Tests cover:
- Promotion checkout
- Seller revenue summary
- Withdrawal list and request, including error rendering
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from django.urls import reverse
from rest_framework import status

from authentication.tests.factories import UserFactory
from payments.tests.factories import PayoutFactory


@pytest.fixture
def auth_client(api_client):
    def _auth(user):
        api_client.force_authenticate(user=user)
        return api_client

    return _auth


@pytest.mark.django_db
class TestPromotionCheckoutView:
    url_name = "payments:promotion-checkout"

    def test_creates_intent(self, stripe_gateway, auth_client):
        client = auth_client(UserFactory())

        response = client.post(reverse(self.url_name), {"plan_key": "standard", "gig_id": "gig_42"}, format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["client_secret"].endswith("_secret")
        assert response.data["breakdown"]["base_amount"] == "19.99"
        assert response.data["plan"]["key"] == "standard"

    def test_rejects_unknown_plan(self, stripe_gateway, auth_client):
        response = auth_client(UserFactory()).post(reverse(self.url_name), {"plan_key": "mega"}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert stripe_gateway.authorizations == []

    def test_requires_authentication(self, api_client):
        response = api_client.post(reverse(self.url_name), {"plan_key": "basic"}, format="json")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.django_db
class TestRevenueView:
    url_name = "payments:revenue"

    def test_summary_and_entries(self, auth_client, completed_order):
        response = auth_client(completed_order.seller).get(reverse(self.url_name))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["summary"] == {
            "total": "90.00",
            "pending": "0.00",
            "available": "90.00",
            "withdrawn": "0.00",
            "currency": "USD",
        }
        movements = [entry["movement_type"] for entry in response.data["entries"]]
        assert sorted(movements) == sorted(["milestone_capture"] * 4 + ["escrow_release"])

    def test_buyer_sees_empty_revenue(self, auth_client, completed_order):
        response = auth_client(completed_order.buyer).get(reverse(self.url_name))

        assert response.data["summary"]["total"] == "0.00"
        assert response.data["entries"] == []


@pytest.mark.django_db
class TestWithdrawalView:
    url_name = "payments:withdrawals"

    def test_request_withdrawal(self, auth_client, completed_order, connected_account):
        with patch("payments.tasks.execute_payout.delay"):
            response = auth_client(completed_order.seller).post(reverse(self.url_name), {"amount": "50.00"}, format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["amount"] == "50.00"
        assert response.data["status"] == "pending"

    def test_insufficient_revenue_is_conflict(self, auth_client, completed_order, connected_account):
        response = auth_client(completed_order.seller).post(reverse(self.url_name), {"amount": "500.00"}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "INSUFFICIENT_REVENUE"

    def test_account_not_ready(self, auth_client, completed_order):
        response = auth_client(completed_order.seller).post(reverse(self.url_name), {"amount": "10.00"}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "PAYOUT_ACCOUNT_NOT_READY"

    def test_amount_validated(self, auth_client, completed_order, connected_account):
        response = auth_client(completed_order.seller).post(reverse(self.url_name), {"amount": "0"}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_lists_only_own_payouts(self, auth_client):
        mine = PayoutFactory()
        PayoutFactory()

        response = auth_client(mine.seller).get(reverse(self.url_name))

        assert response.status_code == status.HTTP_200_OK
        assert [row["id"] for row in response.data] == [str(mine.id)]
        assert response.data[0]["amount"] == str(Decimal("50.00"))
