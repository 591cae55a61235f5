"""
Celery tasks for payment processing.

This module provides async tasks for:
- Processing and retrying stored Stripe webhook events
- Resetting webhooks stuck in processing
- Transferring released order funds to sellers
- Executing seller payouts
- Revenue reconciliation
- Expiring promotions

Periodic tasks are scheduled by django-celery-beat; the schedules are
installed by the payments data migrations.

Usage:
    from payments.tasks import execute_payout

    execute_payout.delay(str(payout_id))
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from payments.exceptions import (
    LockAcquisitionError,
    StripeAPIUnavailableError,
    StripeRateLimitError,
    StripeTimeoutError,
)
from payments.locks import DistributedLock
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30
RETRY_BATCH_SIZE = 100
MAX_STRIPE_TASK_RETRIES = 5

# Provider errors worth retrying with backoff
TRANSIENT_STRIPE_ERRORS = (
    StripeRateLimitError,
    StripeAPIUnavailableError,
    StripeTimeoutError,
)


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(acks_late=True)
def process_webhook_event(webhook_event_id: str) -> dict:
    """
    Process one stored webhook event.

    Outcome is recorded on the event by WebhookProcessor; failures stay
    FAILED for the next retry_failed_webhooks run.
    """
    from payments.webhooks.processor import WebhookProcessor

    webhook_event = WebhookEvent.objects.filter(id=webhook_event_id).first()
    if webhook_event is None:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    result = WebhookProcessor.process(webhook_event)
    return {
        "status": "processed" if result.success else "failed",
        "webhook_event_id": str(webhook_event_id),
        "stripe_event_id": webhook_event.stripe_event_id,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to retry failed webhook events.

    Finds failed webhooks that haven't exceeded WEBHOOK_MAX_RETRIES and
    re-queues them for processing. FAILED rows with no retries left are
    moved to DEAD_LETTER. Scheduled every 5 minutes.
    """
    from payments.webhooks.processor import log_dead_letter

    try:
        with DistributedLock("job:retry_failed_webhooks", ttl=300):
            exhausted = WebhookEvent.objects.filter(
                status=WebhookEventStatus.FAILED,
                retry_count__gte=settings.WEBHOOK_MAX_RETRIES,
            )
            for webhook in exhausted:
                webhook.status = WebhookEventStatus.DEAD_LETTER
                webhook.save(update_fields=["status", "updated_at"])
                log_dead_letter(webhook)

            failed_webhooks = list(
                WebhookEvent.objects.filter(
                    status=WebhookEventStatus.FAILED,
                    retry_count__lt=settings.WEBHOOK_MAX_RETRIES,
                ).order_by("created_at")[:RETRY_BATCH_SIZE]
            )

            for webhook in failed_webhooks:
                process_webhook_event.delay(str(webhook.id))
                logger.info(
                    "Queued failed webhook for retry",
                    extra={
                        "webhook_event_id": str(webhook.id),
                        "stripe_event_id": webhook.stripe_event_id,
                        "retry_count": webhook.retry_count,
                    },
                )
    except LockAcquisitionError:
        logger.info("retry_failed_webhooks already running, skipping")
        return {"skipped": True}

    logger.info(
        f"Queued {len(failed_webhooks)} failed webhooks for retry",
        extra={"queued_count": len(failed_webhooks)},
    )
    return {"queued_count": len(failed_webhooks)}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Periodic task to reset stuck webhooks.

    Webhooks in PROCESSING for longer than the threshold (worker or
    request died mid-way) are reset to FAILED so they get retried, or
    to DEAD_LETTER when their retries are used up.
    Scheduled every 15 minutes.
    """
    from payments.webhooks.processor import log_dead_letter

    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)

    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        stuck_since = webhook.updated_at
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save(update_fields=["status", "error_message", "updated_at"])
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "stripe_event_id": webhook.stripe_event_id,
                "stuck_since": stuck_since.isoformat(),
            },
        )
        if webhook.is_dead_letter:
            log_dead_letter(webhook)

    if reset_count > 0:
        logger.info(
            f"Reset {reset_count} stuck webhooks",
            extra={"reset_count": reset_count},
        )

    return {"reset_count": reset_count}


# =============================================================================
# Money Movement Tasks
# =============================================================================


@shared_task(
    autoretry_for=TRANSIENT_STRIPE_ERRORS,
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_STRIPE_TASK_RETRIES},
    acks_late=True,
)
def transfer_released_funds(order_id: str) -> dict:
    """Transfer a completed order's released funds to the seller."""
    from payments.services import PayoutService

    result = PayoutService.transfer_released_funds(order_id)
    return {
        "order_id": str(order_id),
        "success": result.success,
        "transfer_id": result.data,
        "error_code": result.error_code,
    }


@shared_task(
    autoretry_for=(*TRANSIENT_STRIPE_ERRORS, LockAcquisitionError),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_STRIPE_TASK_RETRIES},
    acks_late=True,
)
def execute_payout(payout_id: str) -> dict:
    """Create the provider payout for a pending withdrawal."""
    from payments.services import PayoutService

    result = PayoutService.execute_payout(payout_id)
    return {
        "payout_id": str(payout_id),
        "success": result.success,
        "stripe_payout_id": result.data.stripe_payout_id if result.success else None,
        "error_code": result.error_code,
    }


# =============================================================================
# Periodic Maintenance Tasks
# =============================================================================


@shared_task
def reconcile_revenue() -> dict:
    """Daily invariant check over revenue accounts and orders."""
    from payments.services import ReconciliationService

    try:
        with DistributedLock("job:reconcile_revenue", ttl=3600):
            result = ReconciliationService.run()
    except LockAcquisitionError:
        logger.info("reconcile_revenue already running, skipping")
        return {"skipped": True}
    return result.to_dict()


@shared_task
def expire_promotions() -> dict:
    """Hourly: mark elapsed promotions as expired."""
    from payments.services import PromotionService

    try:
        with DistributedLock("job:expire_promotions", ttl=600):
            expired = PromotionService.expire_elapsed()
    except LockAcquisitionError:
        logger.info("expire_promotions already running, skipping")
        return {"skipped": True}
    return {"expired_count": expired}
