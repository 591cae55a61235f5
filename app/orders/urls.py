"""
URL configuration for orders API.

URL Structure:
    /orders/                               GET, POST
    /orders/{id}/                          GET
    /orders/{id}/payment-status/           GET
    /orders/{id}/{action}/                 POST

All URLs are prefixed with /api/v1/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from orders.views import OrderViewSet

router = DefaultRouter()
router.register(r"orders", OrderViewSet, basename="order")

app_name = "orders"

urlpatterns = [
    path("", include(router.urls)),
]
