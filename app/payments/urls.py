"""
URL configuration for the payments app.

Routes:
    - POST /promotions/checkout/ - Promotion payment intent
    - GET  /revenue/ - Seller revenue
    - GET/POST /withdrawals/ - Seller payouts

All routes are prefixed with /api/v1/payments/ when included in the main
URLconf. The webhook is mounted separately at /api/v1/webhooks/payments/.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments.views import PromotionCheckoutView, RevenueView, WithdrawalView

app_name = "payments"

urlpatterns = [
    path("promotions/checkout/", PromotionCheckoutView.as_view(), name="promotion-checkout"),
    path("revenue/", RevenueView.as_view(), name="revenue"),
    path("withdrawals/", WithdrawalView.as_view(), name="withdrawals"),
]
