"""
Serializers for orders API.

Serializers:
    OrderCheckoutSerializer: Request body for placing an order
    OrderSerializer: Read-only order with escrow breakdown
    OrderActionSerializer: Optional version for optimistic locking
    DeliverSerializer / ReasonSerializer / RequirementsSerializer: Action bodies
    TimelineExtensionRequestSerializer: Paid deadline extension

Usage:
    from orders.serializers import OrderCheckoutSerializer

    serializer = OrderCheckoutSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
"""

from __future__ import annotations

from decimal import Decimal

from django.utils import timezone
from rest_framework import serializers

from orders.models import Order
from payments.services.checkout_service import MAX_EXTENSION_DAYS, MIN_EXTENSION_DAYS

MAX_ATTACHMENTS = 20


class OrderCheckoutSerializer(serializers.Serializer):
    """Buyer places an order for a seller's gig."""

    seller_id = serializers.IntegerField(min_value=1)
    gig_id = serializers.CharField(max_length=64)
    gig_title = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.50"))
    vat_rate = serializers.DecimalField(
        max_digits=5,
        decimal_places=4,
        min_value=Decimal("0"),
        max_value=Decimal("1"),
        required=False,
        allow_null=True,
        default=None,
    )
    currency = serializers.CharField(max_length=3, required=False)
    delivery_date = serializers.DateTimeField(required=False, allow_null=True, default=None)

    def validate_delivery_date(self, value):
        if value is not None and value <= timezone.now():
            raise serializers.ValidationError("Delivery date must be in the future.")
        return value

    def validate_currency(self, value: str) -> str:
        return value.upper()


class OrderSerializer(serializers.ModelSerializer):
    """Order as seen by either party."""

    buyer_id = serializers.IntegerField(read_only=True)
    seller_id = serializers.IntegerField(read_only=True)
    payment_breakdown = serializers.DictField(read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "buyer_id",
            "seller_id",
            "gig_id",
            "gig_title",
            "status",
            "progress",
            "price",
            "platform_fee",
            "vat_amount",
            "total_amount",
            "seller_net_payout",
            "currency",
            "payment_status",
            "payment_milestone_stage",
            "escrow_status",
            "payment_breakdown",
            "delivery_date",
            "auto_deadline_extended",
            "requirements",
            "delivery_description",
            "delivery_attachments",
            "revision_count",
            "revision_reason",
            "cancellation_reason",
            "timeline",
            "status_history",
            "accepted_at",
            "started_at",
            "delivered_at",
            "completed_at",
            "cancelled_at",
            "funds_released_at",
            "version",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class OrderActionSerializer(serializers.Serializer):
    """
    Base body for every order action.

    ``version`` is optional; when sent, the action fails with a conflict
    if the order changed since the client last read it.
    """

    version = serializers.IntegerField(required=False, min_value=1)


class RequirementsSerializer(OrderActionSerializer):
    requirements = serializers.CharField(max_length=10000, required=False, allow_blank=True, default="")


class DeliverSerializer(OrderActionSerializer):
    description = serializers.CharField(max_length=10000, required=False, allow_blank=True, default="")
    attachments = serializers.ListField(
        child=serializers.URLField(),
        required=False,
        default=list,
        max_length=MAX_ATTACHMENTS,
    )


class ReasonSerializer(OrderActionSerializer):
    reason = serializers.CharField(max_length=2000, required=False, allow_blank=True, default="")


class TimelineExtensionRequestSerializer(serializers.Serializer):
    extension_days = serializers.IntegerField(min_value=MIN_EXTENSION_DAYS, max_value=MAX_EXTENSION_DAYS)
    vat_rate = serializers.DecimalField(
        max_digits=5,
        decimal_places=4,
        min_value=Decimal("0"),
        max_value=Decimal("1"),
        required=False,
        allow_null=True,
        default=None,
    )
