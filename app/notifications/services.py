"""
Notification service layer.

Services:
    NotificationService: Notification creation and read status management

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult.failure()
    - E-mail is queued only after the surrounding transaction commits, so
      a rolled-back order transition never e-mails anyone

Usage:
    from notifications.services import NotificationService

    result = NotificationService.create_notification(
        recipient=order.seller,
        title="Order accepted",
        body="The buyer's payment was authorized.",
        category=NotificationCategory.ORDER,
        link=f"/orders/{order.id}",
        data={"order_id": str(order.id)},
    )
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from core.services import BaseService, ServiceResult

from notifications.models import (
    DeliveryStatus,
    Notification,
    NotificationCategory,
    NotificationDelivery,
)

if TYPE_CHECKING:
    from authentication.models import User

logger = logging.getLogger(__name__)


class NotificationService(BaseService):
    """
    Service for notification operations.

    Methods:
        create_notification: Store an in-app notification and queue e-mail
        mark_as_read: Mark a single notification as read
        mark_all_as_read: Mark all of a user's notifications as read
    """

    @classmethod
    def create_notification(
        cls,
        recipient: User,
        title: str,
        body: str = "",
        category: str = NotificationCategory.ORDER,
        link: str = "",
        data: dict | None = None,
        idempotency_key: str | None = None,
        send_email: bool = True,
    ) -> ServiceResult[Notification]:
        """
        Create a notification for a user.

        Implementation:
            1. Idempotency check (if key provided)
            2. Create notification and delivery row in a transaction
            3. Queue the e-mail task once the transaction commits

        Returns:
            ServiceResult with the Notification (existing one on a replayed key)
        """
        from notifications import tasks

        if idempotency_key:
            existing = Notification.objects.filter(idempotency_key=idempotency_key).first()
            if existing:
                return ServiceResult.success(existing)

        try:
            with transaction.atomic():
                notification = Notification.objects.create(
                    recipient=recipient,
                    category=category,
                    title=title,
                    body=body,
                    link=link,
                    data=data or {},
                    idempotency_key=idempotency_key,
                )
                delivery = None
                if send_email:
                    delivery = NotificationDelivery.objects.create(
                        notification=notification,
                        status=DeliveryStatus.PENDING if recipient.email else DeliveryStatus.SKIPPED,
                    )
        except IntegrityError:
            existing = Notification.objects.filter(idempotency_key=idempotency_key).first()
            if existing:
                return ServiceResult.success(existing)
            raise

        cls.get_logger().info(
            "Created notification",
            extra={
                "notification_id": str(notification.id),
                "recipient_id": recipient.pk,
                "category": category,
            },
        )

        if delivery is not None and delivery.status == DeliveryStatus.PENDING:
            delivery_id = str(delivery.id)
            transaction.on_commit(lambda: tasks.send_email_notification.delay(delivery_id))

        return ServiceResult.success(notification)

    @classmethod
    def mark_as_read(cls, notification: Notification, user: User) -> ServiceResult[Notification]:
        if notification.recipient_id != user.pk:
            return ServiceResult.failure(
                "Notification belongs to another user",
                error_code="NOT_RECIPIENT",
            )
        if not notification.is_read:
            notification.is_read = True
            notification.save(update_fields=["is_read", "updated_at"])
        return ServiceResult.success(notification)

    @classmethod
    def mark_all_as_read(cls, user: User) -> ServiceResult[int]:
        count = Notification.objects.filter(recipient=user, is_read=False).update(is_read=True)
        return ServiceResult.success(count)
