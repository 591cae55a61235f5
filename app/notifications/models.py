"""
Notification models.

Notifications are immutable once created: title and body are rendered
strings kept as a historical record of what the user was told about an
order, a payment or a payout.

Models:
    Notification: In-app notification for one recipient
    NotificationDelivery: E-mail delivery attempt for a notification
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class NotificationCategory(models.TextChoices):
    ORDER = "order", "Order"
    PAYMENT = "payment", "Payment"
    PAYOUT = "payout", "Payout"
    PROMOTION = "promotion", "Promotion"
    ACCOUNT = "account", "Account"


class DeliveryStatus(models.TextChoices):
    """
    E-mail delivery status.

    PENDING -> SENT
           -> FAILED (retries exhausted)
           -> SKIPPED (recipient has no e-mail)
    """

    PENDING = "pending", "Pending"
    SENT = "sent", "Sent"
    FAILED = "failed", "Failed"
    SKIPPED = "skipped", "Skipped"


class Notification(UUIDPrimaryKeyMixin, BaseModel):
    """
    Individual notification record for a user.

    Fields:
        recipient: User receiving the notification
        category: Coarse grouping used by clients for filtering
        title: Rendered title
        body: Rendered body
        link: Client route to open (e.g. /orders/<id>)
        data: JSON context (order id, amounts)
        is_read: Whether recipient has read this notification
        idempotency_key: Optional key preventing duplicate notifications
    """

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
        help_text="User receiving this notification",
    )
    category = models.CharField(
        max_length=20,
        choices=NotificationCategory.choices,
        default=NotificationCategory.ORDER,
        db_index=True,
    )
    title = models.CharField(max_length=255)
    body = models.TextField(blank=True, default="")
    link = models.CharField(max_length=255, blank=True, default="")
    data = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False, db_index=True)
    idempotency_key = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Idempotency key to prevent duplicate notifications",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["recipient", "is_read", "-created_at"],
                name="notif_recipient_unread_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["idempotency_key"],
                name="notif_idempotency_key_unique",
                condition=models.Q(idempotency_key__isnull=False),
            ),
        ]

    def __str__(self) -> str:
        read_status = "read" if self.is_read else "unread"
        return f"Notification({self.category}) -> {self.recipient_id} [{read_status}]"


class NotificationDelivery(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks e-mail delivery of a notification.

    One row per notification that should be e-mailed; the Celery task
    moves it out of PENDING exactly once.
    """

    notification = models.OneToOneField(
        Notification,
        on_delete=models.CASCADE,
        related_name="delivery",
    )
    status = models.CharField(
        max_length=20,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.PENDING,
        db_index=True,
    )
    attempt_count = models.PositiveIntegerField(default=0)
    sent_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True, default="")

    def __str__(self) -> str:
        return f"NotificationDelivery({self.notification_id}, {self.status})"
