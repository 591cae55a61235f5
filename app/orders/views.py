"""
ViewSet for orders API.

URL Structure:
    /api/v1/orders/                               GET, POST (checkout)
    /api/v1/orders/{id}/                          GET
    /api/v1/orders/{id}/payment-status/           GET
    /api/v1/orders/{id}/submit-requirements/      POST (buyer)
    /api/v1/orders/{id}/start/                    POST (seller)
    /api/v1/orders/{id}/halfway/                  POST (seller)
    /api/v1/orders/{id}/deliver/                  POST (seller)
    /api/v1/orders/{id}/request-revision/         POST (buyer)
    /api/v1/orders/{id}/approve/                  POST (buyer)
    /api/v1/orders/{id}/cancel/                   POST (either party)
    /api/v1/orders/{id}/dispute/                  POST (either party)
    /api/v1/orders/{id}/renew-authorization/      POST (buyer)
    /api/v1/orders/{id}/extend-timeline/          POST (buyer)

Design Decisions:
    - Users only see orders they are a party to; other ids are 404
    - Actions call EscrowService; role checks happen there
    - Errors are BaseApplicationError subclasses rendered by the
      project exception handler
    - Replayed actions return 200 with "duplicate": true
"""

from __future__ import annotations

from django.db.models import Q
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from orders.models import Order
from orders.serializers import (
    DeliverSerializer,
    OrderActionSerializer,
    OrderCheckoutSerializer,
    OrderSerializer,
    ReasonSerializer,
    RequirementsSerializer,
    TimelineExtensionRequestSerializer,
)
from payments.serializers import CheckoutResponseSerializer
from payments.services import CheckoutService, EscrowService, TransitionOutcome


def _outcome_response(outcome: TransitionOutcome) -> Response:
    data = OrderSerializer(outcome.order).data
    data["duplicate"] = outcome.duplicate
    if outcome.captured_stage:
        data["captured_stage"] = outcome.captured_stage
    return Response(data)


class OrderViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    ViewSet for order operations.

    list:
        Orders where the current user is buyer or seller.

    create:
        Place an order and get the client secret for card authorization.

    retrieve:
        Order details with escrow breakdown.

    Remaining actions move the order through its workflow.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = OrderSerializer

    def get_queryset(self):
        """Filter to orders the user is a party to."""
        if not self.request.user.is_authenticated:
            return Order.objects.none()

        user = self.request.user
        queryset = Order.objects.filter(Q(buyer=user) | Q(seller=user))
        role = self.request.query_params.get("role")
        if role == "buyer":
            queryset = queryset.filter(buyer=user)
        elif role == "seller":
            queryset = queryset.filter(seller=user)
        status_filter = self.request.query_params.get("status")
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset.order_by("-created_at")

    @extend_schema(
        operation_id="create_order_checkout",
        summary="Place an order",
        request=OrderCheckoutSerializer,
        responses={201: CheckoutResponseSerializer},
        tags=["Orders"],
    )
    def create(self, request):
        serializer = OrderCheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = CheckoutService.create_order_checkout(buyer=request.user, **serializer.validated_data)
        return Response(result.to_dict(), status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="get_order_payment_status",
        summary="Escrow progress of an order",
        responses={200: OpenApiResponse(description="Per-stage capture status and milestone rows")},
        tags=["Orders"],
    )
    @action(detail=True, methods=["get"], url_path="payment-status")
    def payment_status(self, request, pk=None):
        order = self.get_object()
        return Response(EscrowService.get_payment_status(order))

    # =========================================================================
    # Workflow Actions
    # =========================================================================

    def _run_action(self, request, serializer_class, service_method, **fields):
        order = self.get_object()
        serializer = serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        kwargs = {name: data[source] for name, source in fields.items()}
        outcome = service_method(
            order.id,
            user=request.user,
            expected_version=data.get("version"),
            **kwargs,
        )
        return _outcome_response(outcome)

    @extend_schema(
        operation_id="submit_order_requirements",
        request=RequirementsSerializer,
        responses={200: OrderSerializer},
        tags=["Orders"],
    )
    @action(detail=True, methods=["post"], url_path="submit-requirements")
    def submit_requirements(self, request, pk=None):
        return self._run_action(
            request,
            RequirementsSerializer,
            EscrowService.submit_requirements,
            requirements="requirements",
        )

    @extend_schema(
        operation_id="start_order",
        request=OrderActionSerializer,
        responses={200: OrderSerializer},
        tags=["Orders"],
    )
    @action(detail=True, methods=["post"])
    def start(self, request, pk=None):
        return self._run_action(request, OrderActionSerializer, EscrowService.start)

    @extend_schema(
        operation_id="mark_order_halfway",
        request=OrderActionSerializer,
        responses={200: OrderSerializer},
        tags=["Orders"],
    )
    @action(detail=True, methods=["post"])
    def halfway(self, request, pk=None):
        return self._run_action(request, OrderActionSerializer, EscrowService.mark_halfway)

    @extend_schema(
        operation_id="deliver_order",
        request=DeliverSerializer,
        responses={200: OrderSerializer},
        tags=["Orders"],
    )
    @action(detail=True, methods=["post"])
    def deliver(self, request, pk=None):
        return self._run_action(
            request,
            DeliverSerializer,
            EscrowService.deliver,
            description="description",
            attachments="attachments",
        )

    @extend_schema(
        operation_id="request_order_revision",
        request=ReasonSerializer,
        responses={200: OrderSerializer},
        tags=["Orders"],
    )
    @action(detail=True, methods=["post"], url_path="request-revision")
    def request_revision(self, request, pk=None):
        return self._run_action(request, ReasonSerializer, EscrowService.request_revision, reason="reason")

    @extend_schema(
        operation_id="approve_order",
        request=OrderActionSerializer,
        responses={200: OrderSerializer},
        tags=["Orders"],
    )
    @action(detail=True, methods=["post"])
    def approve(self, request, pk=None):
        return self._run_action(request, OrderActionSerializer, EscrowService.approve)

    @extend_schema(
        operation_id="cancel_order",
        request=ReasonSerializer,
        responses={200: OrderSerializer},
        tags=["Orders"],
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        return self._run_action(request, ReasonSerializer, EscrowService.cancel, reason="reason")

    @extend_schema(
        operation_id="dispute_order",
        request=ReasonSerializer,
        responses={200: OrderSerializer},
        tags=["Orders"],
    )
    @action(detail=True, methods=["post"])
    def dispute(self, request, pk=None):
        return self._run_action(request, ReasonSerializer, EscrowService.dispute, reason="reason")

    # =========================================================================
    # Payments on an Existing Order
    # =========================================================================

    @extend_schema(
        operation_id="renew_order_authorization",
        summary="Re-authorize an order whose payment never completed",
        request=None,
        responses={201: CheckoutResponseSerializer},
        tags=["Orders"],
    )
    @action(detail=True, methods=["post"], url_path="renew-authorization")
    def renew_authorization(self, request, pk=None):
        order = self.get_object()
        result = CheckoutService.renew_authorization(order.id, user=request.user)
        return Response(result.to_dict(), status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="extend_order_timeline",
        summary="Pay to extend the delivery deadline",
        request=TimelineExtensionRequestSerializer,
        responses={201: CheckoutResponseSerializer},
        tags=["Orders"],
    )
    @action(detail=True, methods=["post"], url_path="extend-timeline")
    def extend_timeline(self, request, pk=None):
        order = self.get_object()
        serializer = TimelineExtensionRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = CheckoutService.create_timeline_extension_checkout(
            order.id,
            user=request.user,
            extension_days=serializer.validated_data["extension_days"],
            vat_rate=serializer.validated_data["vat_rate"],
        )
        return Response(result.to_dict(), status=status.HTTP_201_CREATED)
