"""
Pytest fixtures for webhook tests.

Events are signed with the test STRIPE_WEBHOOK_SECRET using Stripe's
scheme, so the view runs real signature verification.

Usage:
    def test_event(post_event, make_event):
        response = post_event(make_event("payment_intent.succeeded", intent))
"""

import hashlib
import hmac
import itertools
import json
import time

import pytest
from django.conf import settings
from django.urls import reverse

from payments.purposes import OrderPaymentPurpose

_event_ids = itertools.count(1)


def sign(payload: bytes, secret: str | None = None, timestamp: int | None = None) -> str:
    """Stripe-Signature header value for ``payload``."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new((secret or settings.STRIPE_WEBHOOK_SECRET).encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def intent_for(order, **fields) -> dict:
    """payment_intent data object for ``order``'s manual-capture intent."""
    return {
        "id": order.payment_intent_id,
        "object": "payment_intent",
        "amount": int(order.total_amount * 100),
        "currency": order.currency.lower(),
        "capture_method": "manual",
        "status": "requires_capture",
        "latest_charge": f"ch_{order.payment_intent_id}",
        "metadata": OrderPaymentPurpose(
            order_id=str(order.id),
            buyer_id=str(order.buyer_id),
            seller_id=str(order.seller_id),
        ).to_metadata(),
        **fields,
    }


@pytest.fixture
def make_event():
    def _make(event_type: str, data_object: dict, event_id: str | None = None) -> dict:
        return {
            "id": event_id or f"evt_test_{next(_event_ids)}",
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "livemode": False,
            "data": {"object": data_object},
        }

    return _make


@pytest.fixture
def post_event(client):
    """POST a signed event to the webhook endpoint."""

    def _post(event: dict, signature: str | None = None):
        payload = json.dumps(event).encode()
        return client.post(
            reverse("stripe-webhook"),
            data=payload,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=signature if signature is not None else sign(payload),
        )

    return _post
