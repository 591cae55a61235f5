"""
Webhook endpoint view for Stripe.

The view:
1. Verifies the webhook signature
2. Creates/retrieves the WebhookEvent record (idempotent)
3. Processes the event synchronously through WebhookProcessor
4. Returns 200 {"received": true}

Only a missing or invalid signature produces a non-2xx response.
Processing failures are stored on the event for the retry job; answering
200 stops Stripe from redelivering an event we already hold.

Usage:
    # In urls.py
    from payments.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/payments/", stripe_webhook, name="payment_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.db import IntegrityError
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import StripeAdapter
from payments.exceptions import StripeInvalidRequestError
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus
from payments.webhooks.processor import WebhookProcessor

logger = logging.getLogger(__name__)

RECEIVED = {"received": True}


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive and process a Stripe webhook event.

    Security:
    - Signature verification prevents spoofed webhooks
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Idempotency:
    - WebhookEvent.stripe_event_id is unique
    - Processed events are acknowledged without reprocessing

    Returns:
        - 200 {"received": true}: Event accepted (new, duplicate, ignored or failed)
        - 400: Missing or invalid signature
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return JsonResponse({"error": "Missing signature"}, status=400)

    try:
        event_data = StripeAdapter.verify_webhook_signature(payload, signature)
    except StripeInvalidRequestError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": e.message},
        )
        return JsonResponse({"error": "Invalid signature"}, status=400)

    stripe_event_id = event_data.get("id")
    event_type = event_data.get("type")

    if not stripe_event_id or not event_type:
        logger.warning("Webhook missing id or type, ignoring")
        return JsonResponse(RECEIVED)

    logger.info(
        f"Received Stripe webhook: {event_type}",
        extra={"stripe_event_id": stripe_event_id, "event_type": event_type},
    )

    try:
        webhook_event, created = WebhookEvent.objects.get_or_create(
            stripe_event_id=stripe_event_id,
            defaults={
                "event_type": event_type,
                "payload": event_data,
                "status": WebhookEventStatus.PENDING,
            },
        )
    except IntegrityError:
        # Concurrent delivery created it first.
        webhook_event = WebhookEvent.objects.get(stripe_event_id=stripe_event_id)
        created = False

    if not created and webhook_event.is_processed:
        logger.info(
            "Webhook already processed, returning success",
            extra={"stripe_event_id": stripe_event_id},
        )
        return JsonResponse(RECEIVED)

    if not created and webhook_event.status == WebhookEventStatus.PROCESSING:
        logger.info(
            "Webhook is being processed by another request",
            extra={"stripe_event_id": stripe_event_id},
        )
        return JsonResponse(RECEIVED)

    WebhookProcessor.process(webhook_event)
    return JsonResponse(RECEIVED)
