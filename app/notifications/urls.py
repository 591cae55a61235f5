"""
URL configuration for notifications app.

Mounted under /api/v1/notifications/ by config.urls.
"""

from rest_framework.routers import DefaultRouter

from notifications.views import NotificationViewSet

app_name = "notifications"

router = DefaultRouter()
router.register(r"", NotificationViewSet, basename="notification")

urlpatterns = router.urls
