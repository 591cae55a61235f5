"""
URL configuration for the escrow payment service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /api/v1/health/                - Health check endpoint (load balancers, Docker)
    /api/v1/schema/                - OpenAPI schema (YAML)
    /api/v1/auth/                  - JWT token endpoints and current user
    /api/v1/orders/                - Checkout, order detail, workflow actions
    /api/v1/payments/              - Promotions, seller revenue, withdrawals
    /api/v1/notifications/         - In-app notifications
    /api/v1/webhooks/payments/     - Stripe webhook endpoint (POST, no auth)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check
from payments.webhooks import stripe_webhook

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    path("health/", health_check, name="health_check"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Authentication (simplejwt)
    path("auth/", include("authentication.urls")),
    # Orders
    path("", include("orders.urls")),
    # Payments
    path("payments/", include("payments.urls")),
    # Notifications
    path("notifications/", include("notifications.urls")),
    # Provider webhooks
    path("webhooks/payments/", stripe_webhook, name="stripe-webhook"),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    # Admin
    path("admin/", admin.site.urls),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Escrow Admin"
admin.site.site_title = "Escrow Admin Portal"
admin.site.index_title = "Orders, escrow and payouts"
