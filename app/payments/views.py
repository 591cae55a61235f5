"""
DRF views for payments app.

Endpoints:
    POST /api/v1/payments/promotions/checkout/ - Create promotion payment intent
    GET  /api/v1/payments/revenue/ - Seller revenue summary and recent movements
    GET  /api/v1/payments/withdrawals/ - List the seller's payouts
    POST /api/v1/payments/withdrawals/ - Withdraw available revenue

The Stripe webhook endpoint lives in payments.webhooks.views.

Security:
    - All endpoints require authentication
    - Sellers only ever see their own revenue and payouts
"""

from __future__ import annotations

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import OpenApiResponse, extend_schema

from payments.ledger import RevenueLedgerService
from payments.models import Payout
from payments.serializers import (
    CheckoutResponseSerializer,
    PayoutSerializer,
    PromotionCheckoutSerializer,
    RevenueEntrySerializer,
    RevenueSummarySerializer,
    WithdrawalRequestSerializer,
)
from payments.services import CheckoutService, PayoutService

RECENT_ENTRIES_LIMIT = 50


class PromotionCheckoutView(APIView):
    """
    Create an automatic-capture payment intent for a promotion plan.

    POST /api/v1/payments/promotions/checkout/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_promotion_checkout",
        request=PromotionCheckoutSerializer,
        responses={201: CheckoutResponseSerializer},
        tags=["Payments"],
    )
    def post(self, request):
        serializer = PromotionCheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = CheckoutService.create_promotion_checkout(user=request.user, **serializer.validated_data)
        return Response(result.to_dict(), status=status.HTTP_201_CREATED)


class RevenueView(APIView):
    """
    Seller revenue summary.

    GET /api/v1/payments/revenue/

    Returns:
        {"summary": {...}, "entries": [...]}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_revenue",
        responses={200: OpenApiResponse(description="Revenue buckets and recent ledger movements")},
        tags=["Payments"],
    )
    def get(self, request):
        summary = RevenueLedgerService.get_summary(request.user.pk)
        entries = RevenueLedgerService.entries_for_seller(request.user.pk, limit=RECENT_ENTRIES_LIMIT)
        return Response(
            {
                "summary": RevenueSummarySerializer(summary).data,
                "entries": RevenueEntrySerializer(entries, many=True).data,
            }
        )


class WithdrawalView(APIView):
    """
    List payouts or request a withdrawal.

    GET  /api/v1/payments/withdrawals/
    POST /api/v1/payments/withdrawals/ {"amount": "50.00"}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_withdrawals",
        responses={200: PayoutSerializer(many=True)},
        tags=["Payments"],
    )
    def get(self, request):
        payouts = Payout.objects.filter(seller=request.user)[:100]
        return Response(PayoutSerializer(payouts, many=True).data)

    @extend_schema(
        operation_id="request_withdrawal",
        request=WithdrawalRequestSerializer,
        responses={201: PayoutSerializer},
        tags=["Payments"],
    )
    def post(self, request):
        serializer = WithdrawalRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        payout = PayoutService.request_withdrawal(
            seller=request.user,
            amount=serializer.validated_data["amount"],
            currency=serializer.validated_data.get("currency"),
        )
        return Response(PayoutSerializer(payout).data, status=status.HTTP_201_CREATED)
