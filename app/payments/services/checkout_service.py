"""
Checkout: pricing plus payment intent creation.

Three things can be bought, each with its own typed purpose:

- An order: manual-capture authorization of the whole total, captured
  later in four tranches by EscrowService
- A gig promotion plan: automatic capture, activated by webhook
- A timeline extension on an order: automatic capture, applied by webhook

Checkout never moves money itself; it prices, persists what must exist
before the buyer pays, and returns the client secret for the front end.

Usage:
    from payments.services import CheckoutService

    result = CheckoutService.create_order_checkout(
        buyer=request.user,
        seller_id=seller.id,
        gig_id="gig_42",
        price=Decimal("100.00"),
    )
    result.client_secret
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from core.services import BaseService
from orders.models import Order
from payments.adapters import CreateAuthorizationParams, StripeAdapter
from payments.exceptions import PreconditionError, StripeError
from payments.models import PROMOTION_PLANS, PaymentMilestone, TimelineExtension
from payments.pricing import PriceBreakdown, calculate_price, split_milestones, to_minor_units
from payments.purposes import OrderPaymentPurpose, PromotionPurpose, TimelineExtensionPurpose
from payments.state_machines import (
    TERMINAL_ORDER_STATUSES,
    ActorRole,
    CaptureStage,
    OrderPaymentStatus,
    OrderStatus,
)

if TYPE_CHECKING:
    from authentication.models import User

logger = logging.getLogger(__name__)

# Flat prices for common extension lengths; anything else costs per day.
EXTENSION_PRICE_TABLE: dict[int, Decimal] = {
    3: Decimal("15.00"),
    7: Decimal("30.00"),
    14: Decimal("50.00"),
    30: Decimal("80.00"),
}
EXTENSION_PRICE_PER_DAY = Decimal("5.00")
MIN_EXTENSION_DAYS = 1
MAX_EXTENSION_DAYS = 90


def extension_price(days: int) -> Decimal:
    """Base price of a timeline extension before fee and VAT."""
    if days in EXTENSION_PRICE_TABLE:
        return EXTENSION_PRICE_TABLE[days]
    return EXTENSION_PRICE_PER_DAY * days


@dataclass
class CheckoutResult:
    """
    What the front end needs to confirm a payment.

    Attributes:
        payment_intent_id: Stripe PaymentIntent ID
        client_secret: Secret for Stripe.js confirmCardPayment
        breakdown: Priced amounts
        order: Order the payment belongs to, when there is one
        extension: Pending timeline extension, for extension checkouts
    """

    payment_intent_id: str
    client_secret: str | None
    breakdown: PriceBreakdown
    order: Order | None = None
    extension: TimelineExtension | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "payment_intent_id": self.payment_intent_id,
            "client_secret": self.client_secret,
            "breakdown": self.breakdown.to_dict(),
            **self.extra,
        }
        if self.order is not None:
            data["order_id"] = str(self.order.id)
        if self.extension is not None:
            data["extension_id"] = str(self.extension.id)
        return data


class CheckoutService(BaseService):
    """Creates the payment intents buyers confirm in the browser."""

    # =========================================================================
    # Orders
    # =========================================================================

    @classmethod
    def create_order_checkout(
        cls,
        buyer: User,
        seller_id,
        gig_id: str,
        price,
        gig_title: str = "",
        vat_rate=None,
        currency: str | None = None,
        delivery_date: datetime | None = None,
    ) -> CheckoutResult:
        """
        Price an order, create it and authorize its total.

        The order starts in ``created`` with the four tranches planned.
        Nothing is captured until the authorization webhook arrives.

        Raises:
            ValidationError: Bad price, self-purchase or past delivery date
            NotFoundError: Seller does not exist
            StripeError: Authorization could not be created (order rolled back)
        """
        seller = get_user_model().objects.filter(pk=seller_id, is_active=True).first()
        if seller is None:
            raise NotFoundError(
                "Seller not found",
                error_code="SELLER_NOT_FOUND",
                details={"seller_id": str(seller_id)},
            )
        if seller.pk == buyer.pk:
            raise ValidationError(
                "You cannot order your own gig",
                error_code="SELF_PURCHASE",
            )
        if delivery_date is not None and delivery_date <= timezone.now():
            raise ValidationError(
                "Delivery date must be in the future",
                error_code="INVALID_DELIVERY_DATE",
                details={"delivery_date": delivery_date.isoformat()},
            )

        breakdown = calculate_price(price, vat_rate=vat_rate, currency=currency)
        tranches = split_milestones(breakdown.total_amount)

        with transaction.atomic():
            order = Order(
                buyer=buyer,
                seller=seller,
                gig_id=gig_id,
                gig_title=gig_title,
                price=breakdown.base_amount,
                platform_fee_rate=breakdown.platform_fee_rate,
                platform_fee=breakdown.platform_fee,
                vat_rate=breakdown.vat_rate,
                vat_amount=breakdown.vat_amount,
                total_amount=breakdown.total_amount,
                seller_net_payout=breakdown.seller_net_payout,
                currency=breakdown.currency,
                authorized_amount=tranches[CaptureStage.ACCEPTED],
                escrow_amount=tranches[CaptureStage.IN_ESCROW],
                delivery_amount=tranches[CaptureStage.DELIVERED],
                review_amount=tranches[CaptureStage.REVIEWED],
                delivery_date=delivery_date,
            )
            order.record_status_change(OrderStatus.CREATED, "Order placed", ActorRole.BUYER)
            order.add_timeline_event("order_placed", "Order placed, awaiting payment", ActorRole.BUYER)
            order.save()

            intent = StripeAdapter.create_authorization(
                CreateAuthorizationParams(
                    amount_cents=to_minor_units(breakdown.total_amount, breakdown.currency),
                    currency=breakdown.currency,
                    purpose=OrderPaymentPurpose(
                        order_id=str(order.id),
                        buyer_id=str(buyer.pk),
                        seller_id=str(seller.pk),
                    ),
                    idempotency_key=f"authorize:{order.id}",
                    customer_email=buyer.email,
                    description=f"Order {order.id}: {gig_title}"[:255],
                )
            )
            order.payment_intent_id = intent.id
            order.save(update_fields=["payment_intent_id", "updated_at"])

        cls.get_logger().info(
            "Order checkout created",
            extra={
                "order_id": str(order.id),
                "payment_intent_id": intent.id,
                "total_amount": str(breakdown.total_amount),
                "currency": breakdown.currency,
            },
        )
        return CheckoutResult(
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            breakdown=breakdown,
            order=order,
        )

    @classmethod
    def renew_authorization(cls, order_id, user: User) -> CheckoutResult:
        """
        Replace an order's authorization with a fresh one.

        Card authorizations expire after a few days; a buyer whose
        payment never completed can re-authorize the same total. Only
        allowed before the first capture.

        Raises:
            PreconditionError: Order is past ``created`` or has captures
        """
        with transaction.atomic():
            order = Order.objects.select_for_update().filter(pk=order_id).first()
            if order is None:
                raise NotFoundError(
                    f"Order {order_id} not found",
                    error_code="ORDER_NOT_FOUND",
                    details={"order_id": str(order_id)},
                )
            if order.role_of(user) != ActorRole.BUYER:
                raise PermissionDeniedError(
                    "Only the buyer can renew the payment authorization",
                    error_code="WRONG_ORDER_ROLE",
                    details={"order_id": str(order.id)},
                )
            if order.status != OrderStatus.CREATED or PaymentMilestone.objects.captured_stages(order):
                raise PreconditionError(
                    "Authorization can only be renewed before any payment is captured",
                    error_code="INVALID_ORDER_STATUS",
                    details={"order_id": str(order.id), "status": order.status},
                )

            previous_intent = order.payment_intent_id
            if previous_intent:
                try:
                    StripeAdapter.cancel_authorization(
                        payment_intent_id=previous_intent,
                        idempotency_key=f"cancel:{order.id}:{previous_intent}",
                        reason="abandoned",
                    )
                except StripeError as e:
                    # An expired authorization cannot be canceled; the new one replaces it anyway.
                    cls.get_logger().warning(
                        "Could not cancel previous authorization",
                        extra={"order_id": str(order.id), "payment_intent_id": previous_intent, "error": e.message},
                    )

            intent = StripeAdapter.create_authorization(
                CreateAuthorizationParams(
                    amount_cents=to_minor_units(order.total_amount, order.currency),
                    currency=order.currency,
                    purpose=OrderPaymentPurpose(
                        order_id=str(order.id),
                        buyer_id=str(order.buyer_id),
                        seller_id=str(order.seller_id),
                    ),
                    idempotency_key=f"authorize:{order.id}:v{order.version}",
                    customer_email=user.email,
                    description=f"Order {order.id}: {order.gig_title}"[:255],
                )
            )
            order.payment_intent_id = intent.id
            order.payment_status = OrderPaymentStatus.PENDING
            order.last_payment_error = ""
            order.add_timeline_event("authorization_renewed", "Payment authorization renewed", ActorRole.BUYER)
            order.save()

        cls.get_logger().info(
            "Order authorization renewed",
            extra={
                "order_id": str(order.id),
                "previous_payment_intent_id": previous_intent,
                "payment_intent_id": intent.id,
            },
        )
        return CheckoutResult(
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            breakdown=_order_breakdown(order),
            order=order,
        )

    # =========================================================================
    # Promotions
    # =========================================================================

    @classmethod
    def create_promotion_checkout(
        cls,
        user: User,
        plan_key: str,
        gig_id: str = "",
        promotion_scope: str = "gig",
        vat_rate=None,
        currency: str | None = None,
    ) -> CheckoutResult:
        """
        Create an automatic-capture intent for a promotion plan.

        The PromotionPurchase row is created by the payment_intent.succeeded
        webhook, so an abandoned checkout leaves nothing behind.

        Raises:
            ValidationError: Unknown plan
        """
        plan = PROMOTION_PLANS.get(plan_key)
        if plan is None:
            raise ValidationError(
                f"Unknown promotion plan '{plan_key}'",
                error_code="INVALID_PROMOTION_PLAN",
                details={"plan_key": plan_key, "available": sorted(PROMOTION_PLANS)},
            )

        breakdown = calculate_price(plan["price"], vat_rate=vat_rate, currency=currency)
        purpose = PromotionPurpose(
            user_id=str(user.pk),
            plan_key=plan_key,
            gig_id=gig_id,
            promotion_scope=promotion_scope,
        )
        intent = StripeAdapter.create_authorization(
            CreateAuthorizationParams(
                amount_cents=to_minor_units(breakdown.total_amount, breakdown.currency),
                currency=breakdown.currency,
                purpose=purpose,
                idempotency_key=f"promotion:{user.pk}:{plan_key}:{uuid.uuid4().hex}",
                customer_email=user.email,
                description=f"{plan['name']} promotion",
            )
        )

        cls.get_logger().info(
            "Promotion checkout created",
            extra={"user_id": user.pk, "plan_key": plan_key, "payment_intent_id": intent.id},
        )
        return CheckoutResult(
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            breakdown=breakdown,
            extra={"plan": {"key": plan_key, **{k: str(v) for k, v in plan.items()}}},
        )

    # =========================================================================
    # Timeline Extensions
    # =========================================================================

    @classmethod
    def create_timeline_extension_checkout(
        cls,
        order_id,
        user: User,
        extension_days: int,
        vat_rate=None,
    ) -> CheckoutResult:
        """
        Price and create a buyer-paid deadline extension.

        A pending TimelineExtension is stored with the intent id; the
        payment_intent.succeeded webhook completes it.

        Raises:
            ValidationError: extension_days outside 1..90
            PermissionDeniedError: Caller is not the buyer
            PreconditionError: Order is finished
        """
        try:
            days = int(extension_days)
        except (TypeError, ValueError):
            days = 0
        if not MIN_EXTENSION_DAYS <= days <= MAX_EXTENSION_DAYS:
            raise ValidationError(
                f"Extension must be between {MIN_EXTENSION_DAYS} and {MAX_EXTENSION_DAYS} days",
                error_code="INVALID_EXTENSION_DAYS",
                details={"extension_days": extension_days},
            )

        order = Order.objects.select_related("buyer").filter(pk=order_id).first()
        if order is None:
            raise NotFoundError(
                f"Order {order_id} not found",
                error_code="ORDER_NOT_FOUND",
                details={"order_id": str(order_id)},
            )
        if order.role_of(user) != ActorRole.BUYER:
            raise PermissionDeniedError(
                "Only the buyer can extend the delivery deadline",
                error_code="WRONG_ORDER_ROLE",
                details={"order_id": str(order.id)},
            )
        if order.status in TERMINAL_ORDER_STATUSES or order.status == OrderStatus.CREATED:
            raise PreconditionError(
                f"Cannot extend an order in '{order.status}' status",
                error_code="INVALID_ORDER_STATUS",
                details={"order_id": str(order.id), "status": order.status},
            )

        breakdown = calculate_price(
            extension_price(days),
            vat_rate=vat_rate,
            platform_fee_rate=order.platform_fee_rate,
            currency=order.currency,
        )
        previous_deadline = order.delivery_date or timezone.now()
        new_deadline = previous_deadline + timedelta(days=days)

        with transaction.atomic():
            extension = TimelineExtension(
                order=order,
                requested_by=user,
                extension_days=days,
                amount=breakdown.total_amount,
                seller_revenue_amount=breakdown.seller_net_payout,
                currency=order.currency,
                previous_deadline=previous_deadline,
                new_deadline=new_deadline,
            )
            intent = StripeAdapter.create_authorization(
                CreateAuthorizationParams(
                    amount_cents=to_minor_units(breakdown.total_amount, order.currency),
                    currency=order.currency,
                    purpose=TimelineExtensionPurpose(
                        order_id=str(order.id),
                        user_id=str(user.pk),
                        extension_days=days,
                        previous_deadline=previous_deadline,
                        new_deadline=new_deadline,
                        seller_revenue_amount=breakdown.seller_net_payout,
                    ),
                    idempotency_key=f"extension:{order.id}:{extension.id}",
                    customer_email=user.email,
                    description=f"Order {order.id}: {days} day extension",
                )
            )
            extension.stripe_payment_intent_id = intent.id
            extension.save()

        cls.get_logger().info(
            "Timeline extension checkout created",
            extra={
                "order_id": str(order.id),
                "extension_id": str(extension.id),
                "extension_days": days,
                "payment_intent_id": intent.id,
            },
        )
        return CheckoutResult(
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            breakdown=breakdown,
            order=order,
            extension=extension,
        )


def _order_breakdown(order: Order) -> PriceBreakdown:
    return PriceBreakdown(
        base_amount=order.price,
        platform_fee_rate=order.platform_fee_rate,
        platform_fee=order.platform_fee,
        vat_rate=order.vat_rate,
        vat_amount=order.vat_amount,
        total_amount=order.total_amount,
        seller_net_payout=order.seller_net_payout,
        currency=order.currency,
    )


__all__ = [
    "EXTENSION_PRICE_TABLE",
    "CheckoutResult",
    "CheckoutService",
    "extension_price",
]
