"""
Webhook handling for payment events from Stripe.

This module provides the view, processor and handler registry for
Stripe webhooks. Webhooks are verified, stored idempotently and processed
synchronously; failures are retried by a periodic Celery task.

Usage:
    # In urls.py
    from payments.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/payments/", stripe_webhook, name="payment_webhook"),
    ]
"""

from payments.webhooks.handlers import dispatch_webhook, register_handler
from payments.webhooks.processor import WebhookProcessor
from payments.webhooks.views import stripe_webhook

__all__ = [
    "WebhookProcessor",
    "dispatch_webhook",
    "register_handler",
    "stripe_webhook",
]
