"""
Completion of buyer-paid timeline extensions.

payment_intent.succeeded for a TimelineExtensionPurpose lands here. The
pending TimelineExtension row written at checkout is completed, the
order's delivery date moves to the paid deadline and the seller's share
is credited to pending revenue under the order, so it is released or
reversed together with the order's escrow. A payment that arrives after
the order has finished is refunded in full.

Usage:
    from payments.services import TimelineExtensionService

    result = TimelineExtensionService.complete(intent_dict, purpose)
"""

from __future__ import annotations

from django.db import transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult
from orders.models import Order
from payments.adapters import StripeAdapter
from payments.exceptions import StripeError
from payments.ledger import MovementType, RevenueLedgerService, RevenueMovementParams
from payments.models import TimelineExtension
from payments.pricing import from_minor_units, to_minor_units
from payments.purposes import TimelineExtensionPurpose
from payments.services import notifier
from payments.state_machines import TERMINAL_ORDER_STATUSES, ActorRole, TimelineExtensionStatus


class TimelineExtensionService(BaseService):
    @classmethod
    def complete(cls, intent: dict, purpose: TimelineExtensionPurpose) -> ServiceResult[TimelineExtension]:
        """
        Apply a paid extension to its order.

        Idempotent: an extension that is no longer pending is returned
        unchanged. A missing pending row (checkout state lost) is
        recreated from the intent metadata.
        """
        intent_id = intent["id"]

        with transaction.atomic():
            order = Order.objects.select_for_update().filter(pk=purpose.order_id).first()
            if order is None:
                return ServiceResult.failure(
                    f"Order {purpose.order_id} not found",
                    error_code="ORDER_NOT_FOUND",
                )

            extension = (
                TimelineExtension.objects.select_for_update()
                .filter(stripe_payment_intent_id=intent_id)
                .first()
            )
            if extension is None:
                extension = TimelineExtension.objects.create(
                    order=order,
                    requested_by_id=purpose.user_id,
                    extension_days=purpose.extension_days,
                    amount=from_minor_units(intent.get("amount_received") or intent.get("amount", 0), order.currency),
                    seller_revenue_amount=purpose.seller_revenue_amount,
                    currency=order.currency,
                    stripe_payment_intent_id=intent_id,
                    previous_deadline=purpose.previous_deadline,
                    new_deadline=purpose.new_deadline,
                )
            if extension.status != TimelineExtensionStatus.PENDING:
                return ServiceResult.success(extension)

            if order.status in TERMINAL_ORDER_STATUSES:
                return cls._refund_late_payment(order, extension)

            extension.status = TimelineExtensionStatus.COMPLETED
            extension.completed_at = timezone.now()
            extension.save(update_fields=["status", "completed_at", "updated_at"])

            if extension.seller_revenue_amount > 0:
                RevenueLedgerService.apply_movement(
                    RevenueMovementParams(
                        seller_id=order.seller_id,
                        movement_type=MovementType.EXTENSION_CREDIT,
                        amount=extension.seller_revenue_amount,
                        idempotency_key=f"extension:{extension.id}",
                        order_id=order.id,
                        reference_type="timeline_extension",
                        reference_id=str(extension.id),
                        description=f"{extension.extension_days} day extension paid",
                        created_by="extension_service",
                        currency=extension.currency,
                    )
                )

            order.delivery_date = extension.new_deadline
            order.add_timeline_event(
                "timeline_extended",
                f"Buyer paid to extend the deadline by {extension.extension_days} days",
                ActorRole.BUYER,
            )
            order.save()
            notifier.timeline_extended(extension)

        cls.get_logger().info(
            "Timeline extension completed",
            extra={
                "order_id": str(order.id),
                "extension_id": str(extension.id),
                "new_deadline": extension.new_deadline.isoformat(),
            },
        )
        return ServiceResult.success(extension)

    @classmethod
    def _refund_late_payment(cls, order: Order, extension: TimelineExtension) -> ServiceResult[TimelineExtension]:
        """
        Refund an extension paid after its order finished.

        A gateway failure is returned as a failure so the webhook is retried;
        the refund's idempotency key makes the retry safe.
        """
        log_context = {"order_id": str(order.id), "extension_id": str(extension.id), "status": order.status}
        try:
            StripeAdapter.refund(
                payment_intent_id=extension.stripe_payment_intent_id,
                amount_cents=to_minor_units(extension.amount, extension.currency),
                idempotency_key=f"refund:extension:{extension.id}",
                metadata={"order_id": str(order.id), "extension_id": str(extension.id)},
                currency=extension.currency,
            )
        except StripeError as e:
            cls.get_logger().error(
                "Refund of late timeline extension payment failed",
                extra={**log_context, "stripe_code": e.stripe_code},
            )
            return ServiceResult.failure(
                f"Refund of timeline extension {extension.id} failed: {e.message}",
                error_code="REFUND_FAILED",
            )

        extension.status = TimelineExtensionStatus.REFUNDED
        extension.refunded_at = timezone.now()
        extension.save(update_fields=["status", "refunded_at", "updated_at"])
        order.add_timeline_event(
            "timeline_extension_refunded",
            f"Extension payment of {extension.amount} {extension.currency} refunded: order is {order.status}",
        )
        order.save()

        cls.get_logger().warning("Timeline extension paid for a finished order was refunded", extra=log_context)
        return ServiceResult.success(extension)
