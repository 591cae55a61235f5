"""
Serializers for payments API.

Serializers:
    PromotionCheckoutSerializer: Request body for promotion checkout
    CheckoutResponseSerializer: Client secret and price breakdown
    WithdrawalRequestSerializer: Request body for a withdrawal
    PayoutSerializer: Read-only payout details
    RevenueSummarySerializer: Seller revenue buckets
    RevenueEntrySerializer: One ledger movement
    PaymentMilestoneSerializer: One milestone row

Usage:
    from payments.serializers import WithdrawalRequestSerializer

    serializer = WithdrawalRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from payments.ledger import RevenueEntry
from payments.models import PROMOTION_PLANS, PaymentMilestone, Payout


class PriceBreakdownSerializer(serializers.Serializer):
    base_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    platform_fee_rate = serializers.DecimalField(max_digits=5, decimal_places=4)
    platform_fee = serializers.DecimalField(max_digits=12, decimal_places=2)
    vat_rate = serializers.DecimalField(max_digits=5, decimal_places=4)
    vat_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    seller_net_payout = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField()


class CheckoutResponseSerializer(serializers.Serializer):
    """Response for every checkout endpoint."""

    payment_intent_id = serializers.CharField()
    client_secret = serializers.CharField(allow_null=True)
    breakdown = PriceBreakdownSerializer()
    order_id = serializers.UUIDField(required=False)
    extension_id = serializers.UUIDField(required=False)


class PromotionCheckoutSerializer(serializers.Serializer):
    plan_key = serializers.ChoiceField(choices=sorted(PROMOTION_PLANS))
    gig_id = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    promotion_scope = serializers.ChoiceField(choices=["gig", "profile"], default="gig")
    vat_rate = serializers.DecimalField(
        max_digits=5,
        decimal_places=4,
        required=False,
        allow_null=True,
        default=None,
    )


class WithdrawalRequestSerializer(serializers.Serializer):
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.01"),
    )
    currency = serializers.CharField(max_length=3, required=False)


class PayoutSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payout
        fields = [
            "id",
            "amount",
            "currency",
            "status",
            "stripe_payout_id",
            "paid_at",
            "failed_at",
            "failure_reason",
            "created_at",
        ]
        read_only_fields = fields


class RevenueSummarySerializer(serializers.Serializer):
    """Seller balances; total always equals pending + available + withdrawn."""

    total = serializers.DecimalField(max_digits=14, decimal_places=2)
    pending = serializers.DecimalField(max_digits=14, decimal_places=2)
    available = serializers.DecimalField(max_digits=14, decimal_places=2)
    withdrawn = serializers.DecimalField(max_digits=14, decimal_places=2)
    currency = serializers.CharField()


class RevenueEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = RevenueEntry
        fields = [
            "id",
            "movement_type",
            "amount",
            "total_delta",
            "pending_delta",
            "available_delta",
            "withdrawn_delta",
            "order",
            "reference_type",
            "reference_id",
            "description",
            "created_at",
        ]
        read_only_fields = fields


class PaymentMilestoneSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentMilestone
        fields = [
            "id",
            "stage",
            "percentage_of_total",
            "amount",
            "seller_net_amount",
            "currency",
            "payment_status",
            "captured_at",
            "failed_at",
            "failure_reason",
            "triggered_by_role",
            "triggered_by_action",
            "created_at",
        ]
        read_only_fields = fields
