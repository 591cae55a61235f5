"""
Payment admin configuration.

This file imports admin configurations from the ledger submodule
and registers payment domain models with the Django admin. Money and
state fields are read-only: changes go through the service layer.
"""

from django.contrib import admin

from payments.ledger.admin import RevenueEntryAdmin, SellerRevenueAdmin
from payments.models import (
    ConnectedAccount,
    PaymentMilestone,
    Payout,
    PromotionPurchase,
    TimelineExtension,
    WebhookEvent,
)

__all__ = [
    "RevenueEntryAdmin",
    "SellerRevenueAdmin",
    "ConnectedAccountAdmin",
    "PaymentMilestoneAdmin",
    "PayoutAdmin",
    "PromotionPurchaseAdmin",
    "TimelineExtensionAdmin",
    "WebhookEventAdmin",
]


@admin.register(ConnectedAccount)
class ConnectedAccountAdmin(admin.ModelAdmin):
    """
    Admin configuration for ConnectedAccount.

    Provides visibility into Stripe Connect account status.
    """

    list_display = [
        "id",
        "user",
        "stripe_account_id",
        "onboarding_status",
        "payouts_enabled",
        "charges_enabled",
        "created_at",
    ]
    list_filter = ["onboarding_status", "payouts_enabled", "charges_enabled"]
    search_fields = ["id", "stripe_account_id", "user__email"]
    readonly_fields = ["id", "created_at", "updated_at", "version"]
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "user", "stripe_account_id"),
            },
        ),
        (
            "Status",
            {
                "fields": (
                    "onboarding_status",
                    "payouts_enabled",
                    "charges_enabled",
                    "details_submitted",
                ),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata", "version"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )


@admin.register(PaymentMilestone)
class PaymentMilestoneAdmin(admin.ModelAdmin):
    """
    Admin configuration for PaymentMilestone.

    Milestones are append-only; nothing can be edited or deleted.
    """

    list_display = [
        "id",
        "order",
        "stage",
        "payment_status",
        "amount",
        "seller_net_amount",
        "triggered_by_role",
        "created_at",
    ]
    list_filter = ["stage", "payment_status", "triggered_by_role"]
    search_fields = ["id", "order__id", "stripe_payment_intent_id", "stripe_charge_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    raw_id_fields = ["order", "triggered_by"]

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Payout)
class PayoutAdmin(admin.ModelAdmin):
    """Admin configuration for Payout (seller withdrawals)."""

    list_display = [
        "id",
        "seller",
        "amount",
        "currency",
        "status",
        "stripe_payout_id",
        "created_at",
    ]
    list_filter = ["status", "currency", "created_at"]
    search_fields = ["id", "stripe_payout_id", "seller__email"]
    readonly_fields = [
        "id",
        "seller",
        "connected_account",
        "amount",
        "currency",
        "status",
        "stripe_payout_id",
        "paid_at",
        "failed_at",
        "failure_reason",
        "created_at",
        "updated_at",
        "version",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]


@admin.register(PromotionPurchase)
class PromotionPurchaseAdmin(admin.ModelAdmin):
    list_display = ["id", "user", "plan_key", "status", "total_amount", "starts_at", "expires_at"]
    list_filter = ["plan_key", "status"]
    search_fields = ["id", "user__email", "gig_id", "stripe_payment_intent_id"]
    readonly_fields = ["id", "stripe_payment_intent_id", "created_at", "updated_at"]
    ordering = ["-created_at"]


@admin.register(TimelineExtension)
class TimelineExtensionAdmin(admin.ModelAdmin):
    list_display = ["id", "order", "extension_days", "amount", "status", "new_deadline", "created_at"]
    list_filter = ["status"]
    search_fields = ["id", "order__id", "stripe_payment_intent_id"]
    readonly_fields = [
        "id",
        "order",
        "requested_by",
        "amount",
        "seller_revenue_amount",
        "stripe_payment_intent_id",
        "status",
        "completed_at",
        "refunded_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Failed events can be inspected here; retries happen through the
    retry_failed_webhooks task.
    """

    list_display = [
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "created_at",
        "processed_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["stripe_event_id", "event_type", "error_message"]
    readonly_fields = [
        "id",
        "stripe_event_id",
        "event_type",
        "payload",
        "status",
        "processed_at",
        "error_message",
        "retry_count",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
