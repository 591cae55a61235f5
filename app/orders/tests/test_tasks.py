"""
Tests for orders Celery tasks.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from orders.models import Order
from orders.tasks import extend_overdue_deadlines
from payments.exceptions import LockAcquisitionError


def make_overdue(order, hours=1):
    past = timezone.now() - timedelta(hours=hours)
    Order.objects.filter(pk=order.pk).update(delivery_date=past)
    return past


@pytest.mark.django_db
class TestExtendOverdueDeadlines:
    def test_extends_overdue_order_once(self, job_lock, settings, accepted_order, django_capture_on_commit_callbacks):
        settings.ORDER_DEADLINE_AUTO_EXTENSION_DAYS = 2
        past = make_overdue(accepted_order)

        with django_capture_on_commit_callbacks() as callbacks:
            result = extend_overdue_deadlines()

        assert result == {"extended_count": 1}
        order = Order.objects.get(pk=accepted_order.pk)
        assert order.delivery_date == past + timedelta(days=2)
        assert order.auto_deadline_extended is True
        assert order.timeline[-1]["event"] == "deadline_auto_extended"
        assert order.timeline[-1]["actor"] == "system"
        # Buyer and seller are both notified
        assert len(callbacks) == 2

    def test_second_run_does_not_extend_again(self, job_lock, started_order):
        make_overdue(started_order, hours=100)
        extend_overdue_deadlines()

        make_overdue(started_order)
        result = extend_overdue_deadlines()

        assert result == {"extended_count": 0}

    def test_ignores_orders_within_deadline(self, job_lock, accepted_order):
        assert extend_overdue_deadlines() == {"extended_count": 0}

    def test_ignores_delivered_orders(self, job_lock, delivered_order):
        make_overdue(delivered_order)

        assert extend_overdue_deadlines() == {"extended_count": 0}
        assert Order.objects.get(pk=delivered_order.pk).auto_deadline_extended is False

    def test_ignores_unpaid_orders(self, job_lock, order):
        make_overdue(order)

        assert extend_overdue_deadlines() == {"extended_count": 0}

    def test_skips_when_locked(self, job_lock, db):
        job_lock.return_value.__enter__.side_effect = LockAcquisitionError("busy")

        assert extend_overdue_deadlines() == {"skipped": True}
