"""
Webhook event processing.

WebhookProcessor runs one stored WebhookEvent through its handler and
records the outcome on the row. It is used by the webhook view
(synchronously, on first delivery) and by the retry task (for events
left FAILED).

Usage:
    from payments.webhooks.processor import WebhookProcessor

    WebhookProcessor.process(webhook_event)
"""

from __future__ import annotations

import logging

from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult
from payments.models import WebhookEvent
from payments.webhooks.handlers import dispatch_webhook

logger = logging.getLogger(__name__)


def log_dead_letter(webhook_event: WebhookEvent) -> None:
    """Alert on an event acknowledged to Stripe that will not be retried again."""
    logger.critical(
        "Webhook event exhausted its retries and was dead-lettered",
        extra={
            "webhook_event_id": str(webhook_event.id),
            "stripe_event_id": webhook_event.stripe_event_id,
            "event_type": webhook_event.event_type,
            "retry_count": webhook_event.retry_count,
            "error": webhook_event.error_message,
        },
    )


class WebhookProcessor(BaseService):
    @classmethod
    def process(cls, webhook_event: WebhookEvent) -> ServiceResult:
        """
        Process an event once; processed events are skipped.

        Never raises: handler errors are logged and stored on the event
        (status FAILED) for the retry job.
        """
        context = {
            "stripe_event_id": webhook_event.stripe_event_id,
            "event_type": webhook_event.event_type,
        }
        if webhook_event.is_processed:
            cls.get_logger().info("Webhook already processed, skipping", extra=context)
            return ServiceResult.success(None)

        webhook_event.mark_processing()
        webhook_event.save(update_fields=["status", "retry_count", "updated_at"])

        try:
            result = dispatch_webhook(webhook_event)
        except BaseApplicationError as e:
            result = ServiceResult.from_exception(e)
            cls.get_logger().error(
                "Webhook handler raised",
                extra={**context, "error_code": e.error_code, "error": e.message},
                exc_info=True,
            )
        except Exception as e:
            result = cls.handle_exception(e, f"Webhook {webhook_event.stripe_event_id} handler")

        if result.success:
            webhook_event.mark_processed()
            cls.get_logger().info("Webhook processed", extra=context)
        else:
            webhook_event.mark_failed(result.error or "Handler failed")
            cls.get_logger().warning(
                "Webhook processing failed",
                extra={**context, "error": result.error, "error_code": result.error_code},
            )
            if webhook_event.is_dead_letter:
                log_dead_letter(webhook_event)
        webhook_event.save(update_fields=["status", "processed_at", "error_message", "updated_at"])
        return result

