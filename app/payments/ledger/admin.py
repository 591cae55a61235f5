"""
Django admin configuration for revenue ledger models.

Key features:
- RevenueEntry is immutable (no add/edit/delete permissions)
- SellerRevenue balances are read-only; they only move through
  RevenueLedgerService.apply_movement()
- Conservation status shown on the account list
"""

from django.contrib import admin

from .models import RevenueEntry, SellerRevenue


class RevenueEntryInline(admin.TabularInline):
    model = RevenueEntry
    extra = 0
    can_delete = False
    fields = ["created_at", "movement_type", "amount", "pending_delta", "available_delta", "withdrawn_delta", "order"]
    readonly_fields = fields
    ordering = ["-created_at"]
    show_change_link = True

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(SellerRevenue)
class SellerRevenueAdmin(admin.ModelAdmin):
    """
    Admin configuration for SellerRevenue.

    Balances are read-only; corrections are new ledger movements.
    """

    list_display = [
        "seller",
        "currency",
        "total",
        "pending",
        "available",
        "withdrawn",
        "balanced_display",
        "updated_at",
    ]
    list_filter = ["currency"]
    search_fields = ["seller__email"]
    readonly_fields = [
        "seller",
        "currency",
        "total",
        "pending",
        "available",
        "withdrawn",
        "created_at",
        "updated_at",
    ]
    ordering = ["-updated_at"]
    inlines = [RevenueEntryInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("seller", "currency"),
            },
        ),
        (
            "Balances",
            {
                "fields": ("total", "pending", "available", "withdrawn"),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def balanced_display(self, obj: SellerRevenue) -> bool:
        return obj.is_balanced

    balanced_display.boolean = True
    balanced_display.short_description = "Balanced"

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(RevenueEntry)
class RevenueEntryAdmin(admin.ModelAdmin):
    """
    Admin configuration for RevenueEntry.

    Entries are immutable - they cannot be added, edited or deleted
    through the admin interface.
    """

    list_display = [
        "id",
        "created_at",
        "movement_type",
        "amount",
        "revenue",
        "order",
        "reference_type",
        "created_by",
    ]
    list_filter = ["movement_type", "reference_type", "created_at"]
    search_fields = [
        "id",
        "idempotency_key",
        "reference_id",
        "description",
        "revenue__seller__email",
    ]
    readonly_fields = [
        "id",
        "created_at",
        "revenue",
        "movement_type",
        "amount",
        "total_delta",
        "pending_delta",
        "available_delta",
        "withdrawn_delta",
        "order",
        "reference_type",
        "reference_id",
        "description",
        "created_by",
        "idempotency_key",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            "Movement",
            {
                "fields": ("id", "revenue", "movement_type", "amount", "created_at"),
            },
        ),
        (
            "Bucket Deltas",
            {
                "fields": ("total_delta", "pending_delta", "available_delta", "withdrawn_delta"),
            },
        ),
        (
            "Reference",
            {
                "fields": ("order", "reference_type", "reference_id", "idempotency_key"),
            },
        ),
        (
            "Additional Info",
            {
                "fields": ("description", "created_by"),
            },
        ),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False
