"""
Celery tasks for notification delivery.

Tasks:
    send_email_notification: Deliver a notification by e-mail

Design:
    - Tasks receive delivery_id (UUID string)
    - Re-running on a non-PENDING delivery is a no-op
    - Transient SMTP failures are retried with backoff; the final failure
      is recorded on the delivery row

Usage:
    # Queued by NotificationService.create_notification()
    send_email_notification.delay(delivery_id="uuid-string")
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone as django_timezone

from notifications.models import DeliveryStatus, NotificationDelivery

logger = logging.getLogger(__name__)

MAX_EMAIL_RETRIES = 3


def _get_pending_delivery(delivery_id: str) -> NotificationDelivery | None:
    """Fetch a PENDING delivery with its notification, or None."""
    try:
        delivery = NotificationDelivery.objects.select_related(
            "notification",
            "notification__recipient",
        ).get(id=delivery_id)
    except NotificationDelivery.DoesNotExist:
        logger.warning(f"Delivery {delivery_id} not found")
        return None

    if delivery.status != DeliveryStatus.PENDING:
        logger.info(f"Delivery {delivery_id} status is {delivery.status}, skipping")
        return None
    return delivery


@shared_task(bind=True, max_retries=MAX_EMAIL_RETRIES)
def send_email_notification(self, delivery_id: str) -> bool:
    """
    Send notification via email.

    Returns:
        True if sent or nothing to do, False if permanently failed
    """
    delivery = _get_pending_delivery(delivery_id)
    if delivery is None:
        return True

    notification = delivery.notification
    recipient = notification.recipient

    try:
        send_mail(
            subject=notification.title,
            message=notification.body,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient.email],
        )
    except Exception as e:
        delivery.attempt_count += 1
        if self.request.retries >= MAX_EMAIL_RETRIES:
            delivery.status = DeliveryStatus.FAILED
            delivery.failed_at = django_timezone.now()
            delivery.failure_reason = str(e)
            delivery.save(
                update_fields=["status", "failed_at", "failure_reason", "attempt_count", "updated_at"]
            )
            logger.error(
                f"Email notification permanently failed for delivery {delivery_id}",
                exc_info=True,
            )
            return False

        delivery.save(update_fields=["attempt_count", "updated_at"])
        logger.warning(f"Email notification failed for delivery {delivery_id}, will retry")
        raise self.retry(exc=e, countdown=2 ** self.request.retries * 30)

    delivery.status = DeliveryStatus.SENT
    delivery.sent_at = django_timezone.now()
    delivery.attempt_count += 1
    delivery.save(update_fields=["status", "sent_at", "attempt_count", "updated_at"])
    logger.info(f"Email notification sent for delivery {delivery_id}")
    return True
