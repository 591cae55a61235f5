"""
Order admin configuration.

Status and money fields are read-only: orders only move through
EscrowService so captures, ledger and status stay consistent.
"""

from django.contrib import admin

from orders.models import Order
from payments.models import PaymentMilestone


class PaymentMilestoneInline(admin.TabularInline):
    model = PaymentMilestone
    extra = 0
    can_delete = False
    fields = ["stage", "payment_status", "amount", "seller_net_amount", "captured_at", "failure_reason"]
    readonly_fields = fields
    ordering = ["created_at"]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "buyer",
        "seller",
        "status",
        "progress",
        "total_amount",
        "currency",
        "escrow_status",
        "created_at",
    ]
    list_filter = ["status", "payment_status", "escrow_status", "currency"]
    search_fields = ["id", "gig_id", "payment_intent_id", "buyer__email", "seller__email"]
    raw_id_fields = ["buyer", "seller"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [PaymentMilestoneInline]

    readonly_fields = [
        "id",
        "status",
        "progress",
        "price",
        "platform_fee_rate",
        "platform_fee",
        "vat_rate",
        "vat_amount",
        "total_amount",
        "seller_net_payout",
        "currency",
        "payment_intent_id",
        "stripe_charge_id",
        "stripe_transfer_id",
        "payment_status",
        "payment_milestone_stage",
        "escrow_status",
        "authorized_amount",
        "escrow_amount",
        "delivery_amount",
        "review_amount",
        "pending_release_amount",
        "total_released_amount",
        "status_history",
        "timeline",
        "version",
        "created_at",
        "updated_at",
    ]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "buyer", "seller", "gig_id", "gig_title", "status", "progress"),
            },
        ),
        (
            "Pricing",
            {
                "fields": (
                    "price",
                    "platform_fee_rate",
                    "platform_fee",
                    "vat_rate",
                    "vat_amount",
                    "total_amount",
                    "seller_net_payout",
                    "currency",
                ),
            },
        ),
        (
            "Escrow",
            {
                "fields": (
                    "payment_intent_id",
                    "stripe_charge_id",
                    "stripe_transfer_id",
                    "payment_status",
                    "payment_milestone_stage",
                    "escrow_status",
                    "authorized_amount",
                    "escrow_amount",
                    "delivery_amount",
                    "review_amount",
                    "pending_release_amount",
                    "total_released_amount",
                ),
            },
        ),
        (
            "Workflow",
            {
                "fields": (
                    "delivery_date",
                    "auto_deadline_extended",
                    "requirements",
                    "delivery_description",
                    "revision_count",
                    "cancellation_reason",
                    "dispute_reason",
                ),
            },
        ),
        (
            "Audit",
            {
                "fields": ("status_history", "timeline", "version"),
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

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
