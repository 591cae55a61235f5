"""
WebhookEvent: every provider event received, keyed by its event id.

The unique stripe_event_id is the first idempotency layer of webhook
processing; handlers carry their own checks for events that arrive under
a new id but describe something already applied.

Usage:
    event, created = WebhookEvent.objects.get_or_create(
        stripe_event_id=stripe_event["id"],
        defaults={"event_type": stripe_event["type"], "payload": payload},
    )
    if event.is_processed:
        return  # duplicate delivery
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Persisted Stripe webhook event.

    Processing Flow:
        1. Signature verified, row fetched or created by stripe_event_id
        2. PROCESSED rows are skipped (duplicate delivery)
        3. mark_processing() -> handler -> mark_processed() / mark_failed()
        4. FAILED rows are retried by payments.tasks.retry_failed_webhooks
           until retry_count reaches WEBHOOK_MAX_RETRIES
        5. A failure with no retries left moves the row to DEAD_LETTER and
           is logged at CRITICAL
    """

    stripe_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx)",
    )
    event_type = models.CharField(max_length=100, db_index=True)
    payload = models.JSONField()

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )
    processed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(null=True, blank=True)
    retry_count = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="pay_webhook_status_created_idx"),
            models.Index(fields=["status", "retry_count"], name="pay_webhook_status_retry_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.stripe_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        return (
            self.status == WebhookEventStatus.FAILED
            and self.retry_count < settings.WEBHOOK_MAX_RETRIES
        )

    # Helpers below do not save; the caller saves.

    def mark_processing(self) -> None:
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """Mark FAILED, or DEAD_LETTER once no retries are left."""
        self.error_message = error_message
        if self.retry_count >= settings.WEBHOOK_MAX_RETRIES:
            self.status = WebhookEventStatus.DEAD_LETTER
        else:
            self.status = WebhookEventStatus.FAILED

    @property
    def is_dead_letter(self) -> bool:
        return self.status == WebhookEventStatus.DEAD_LETTER

    @property
    def data_object(self) -> dict:
        """The event's ``data.object`` (the intent, charge, payout or account)."""
        try:
            return self.payload.get("data", {}).get("object", {}) or {}
        except (AttributeError, TypeError):
            return {}
