"""
Celery tasks for orders.

This module provides:
- extend_overdue_deadlines: hourly grace period for late sellers

The schedule is installed by the orders data migration.

Usage:
    from orders.tasks import extend_overdue_deadlines

    extend_overdue_deadlines.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from orders.models import Order
from payments.exceptions import LockAcquisitionError
from payments.locks import DistributedLock
from payments.services import notifier
from payments.state_machines import ActorRole, OrderStatus

logger = logging.getLogger(__name__)

# Orders still waiting on the seller's delivery
OVERDUE_EXTENDABLE_STATUSES = (
    OrderStatus.ACCEPTED,
    OrderStatus.REQUIREMENTS_SUBMITTED,
    OrderStatus.STARTED,
    OrderStatus.HALFWAY_DONE,
    OrderStatus.REQUESTED_REVISION,
)


@shared_task
def extend_overdue_deadlines() -> dict:
    """
    Hourly: give overdue orders a one-time grace period.

    Each order past its delivery_date that was never auto-extended gets
    ORDER_DEADLINE_AUTO_EXTENSION_DAYS more days and a timeline entry,
    and both parties are notified. Orders are handled one per
    transaction so a failure only skips that order.

    Returns:
        {"extended_count": n} or {"skipped": True} when another run holds the lock
    """
    try:
        with DistributedLock("job:extend_overdue_deadlines", ttl=600):
            extended = _extend_overdue()
    except LockAcquisitionError:
        logger.info("extend_overdue_deadlines already running, skipping")
        return {"skipped": True}
    return {"extended_count": extended}


def _extend_overdue() -> int:
    days = settings.ORDER_DEADLINE_AUTO_EXTENSION_DAYS
    now = timezone.now()
    candidate_ids = list(
        Order.objects.filter(
            status__in=OVERDUE_EXTENDABLE_STATUSES,
            delivery_date__lt=now,
            auto_deadline_extended=False,
        ).values_list("id", flat=True)
    )

    extended = 0
    for order_id in candidate_ids:
        with transaction.atomic():
            order = (
                Order.objects.select_for_update()
                .filter(
                    pk=order_id,
                    status__in=OVERDUE_EXTENDABLE_STATUSES,
                    auto_deadline_extended=False,
                )
                .first()
            )
            if order is None:
                continue

            order.delivery_date = order.delivery_date + timedelta(days=days)
            order.auto_deadline_extended = True
            order.add_timeline_event(
                "deadline_auto_extended",
                f"Delivery deadline automatically extended by {days} days",
                ActorRole.SYSTEM,
            )
            order.save()
            notifier.deadline_extended(order, days)
            extended += 1

        logger.info(
            "Order deadline auto-extended",
            extra={
                "order_id": str(order_id),
                "days": days,
                "delivery_date": order.delivery_date.isoformat(),
            },
        )

    return extended
