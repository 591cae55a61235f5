"""
Gig promotion activation and expiry.

A promotion is paid with an automatic-capture intent; the purchase row
only exists once payment_intent.succeeded arrives. The unique intent id
on PromotionPurchase makes replays of that webhook no-ops.

Usage:
    from payments.services import PromotionService

    result = PromotionService.activate(intent_dict, purpose)
    PromotionService.expire_elapsed()
"""

from __future__ import annotations

from datetime import timedelta

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult
from payments.models import PROMOTION_PLANS, PromotionPurchase
from payments.pricing import calculate_price, from_minor_units
from payments.purposes import PromotionPurpose
from payments.services import notifier
from payments.state_machines import PromotionStatus


class PromotionService(BaseService):
    """Creates and expires PromotionPurchase rows."""

    @classmethod
    def activate(cls, intent: dict, purpose: PromotionPurpose) -> ServiceResult[PromotionPurchase]:
        """
        Record a paid promotion, valid for the plan's duration from now.

        Returns a failure result (not an exception) for an unknown user
        or plan so the webhook is logged and dropped rather than retried.
        """
        intent_id = intent["id"]
        existing = PromotionPurchase.objects.filter(stripe_payment_intent_id=intent_id).first()
        if existing is not None:
            return ServiceResult.success(existing)

        plan = PROMOTION_PLANS.get(purpose.plan_key)
        if plan is None:
            return ServiceResult.failure(
                f"Unknown promotion plan '{purpose.plan_key}'",
                error_code="INVALID_PROMOTION_PLAN",
            )
        user = get_user_model().objects.filter(pk=purpose.user_id).first()
        if user is None:
            return ServiceResult.failure(
                f"User {purpose.user_id} not found",
                error_code="USER_NOT_FOUND",
            )

        currency = (intent.get("currency") or "usd").upper()
        breakdown = calculate_price(plan["price"], currency=currency)
        paid = from_minor_units(intent.get("amount_received") or intent.get("amount") or 0, currency)
        duration_days = plan.get("duration_days", settings.PROMOTION_DEFAULT_DURATION_DAYS)
        now = timezone.now()

        try:
            with transaction.atomic():
                purchase = PromotionPurchase.objects.create(
                    user=user,
                    gig_id=purpose.gig_id,
                    promotion_scope=purpose.promotion_scope,
                    plan_key=purpose.plan_key,
                    plan_name=plan["name"],
                    priority=plan["priority"],
                    duration_days=duration_days,
                    base_amount=breakdown.base_amount,
                    platform_fee=breakdown.platform_fee,
                    vat_amount=breakdown.vat_amount,
                    total_amount=paid or breakdown.total_amount,
                    currency=currency,
                    stripe_payment_intent_id=intent_id,
                    status=PromotionStatus.ACTIVE,
                    starts_at=now,
                    expires_at=now + timedelta(days=duration_days),
                )
                notifier.promotion_activated(purchase)
        except IntegrityError:
            # Concurrent delivery of the same event won the insert.
            return ServiceResult.success(
                PromotionPurchase.objects.get(stripe_payment_intent_id=intent_id)
            )

        cls.get_logger().info(
            "Promotion activated",
            extra={
                "promotion_id": str(purchase.id),
                "user_id": user.pk,
                "plan_key": purpose.plan_key,
                "payment_intent_id": intent_id,
                "expires_at": purchase.expires_at.isoformat(),
            },
        )
        return ServiceResult.success(purchase)

    @classmethod
    def expire_elapsed(cls) -> int:
        """Mark active promotions whose expiry has passed as expired."""
        count = PromotionPurchase.objects.elapsed().update(
            status=PromotionStatus.EXPIRED,
            updated_at=timezone.now(),
        )
        if count:
            cls.get_logger().info("Expired promotions", extra={"count": count})
        return count
