"""
Tests for notification Celery tasks.
"""

from unittest.mock import patch

import pytest

from notifications.models import DeliveryStatus
from notifications.tasks import send_email_notification
from notifications.tests.factories import NotificationDeliveryFactory, NotificationFactory


class TestSendEmailNotification:
    def test_sends_and_marks_sent(self, user, mailoutbox):
        delivery = NotificationDeliveryFactory(
            notification=NotificationFactory(recipient=user, title="Funds released")
        )

        assert send_email_notification(str(delivery.id)) is True

        delivery.refresh_from_db()
        assert delivery.status == DeliveryStatus.SENT
        assert delivery.attempt_count == 1
        assert len(mailoutbox) == 1
        assert mailoutbox[0].subject == "Funds released"
        assert mailoutbox[0].to == [user.email]

    def test_non_pending_delivery_is_noop(self, user, mailoutbox):
        delivery = NotificationDeliveryFactory(
            notification=NotificationFactory(recipient=user),
            status=DeliveryStatus.SENT,
        )

        assert send_email_notification(str(delivery.id)) is True
        assert mailoutbox == []

    def test_missing_delivery_is_noop(self, db):
        assert send_email_notification("00000000-0000-0000-0000-000000000000") is True

    def test_smtp_failure_keeps_delivery_pending_for_retry(self, user):
        delivery = NotificationDeliveryFactory(notification=NotificationFactory(recipient=user))

        with patch("notifications.tasks.send_mail", side_effect=OSError("smtp down")):
            with pytest.raises(OSError):
                send_email_notification(str(delivery.id))

        delivery.refresh_from_db()
        assert delivery.status == DeliveryStatus.PENDING
        assert delivery.attempt_count == 1
