"""
Django admin configuration for notifications.
"""

from django.contrib import admin

from notifications.models import Notification, NotificationDelivery


class NotificationDeliveryInline(admin.StackedInline):
    model = NotificationDelivery
    extra = 0
    can_delete = False
    readonly_fields = ("status", "attempt_count", "sent_at", "failed_at", "failure_reason")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("title", "recipient", "category", "is_read", "created_at")
    list_filter = ("category", "is_read")
    search_fields = ("title", "recipient__email")
    readonly_fields = ("id", "created_at", "updated_at")
    raw_id_fields = ("recipient",)
    inlines = [NotificationDeliveryInline]
