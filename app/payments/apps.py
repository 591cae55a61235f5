"""
Payments app configuration.

This app provides the escrow payment engine:
- Milestone captures, release and refunds (EscrowService)
- Seller revenue ledger
- Stripe integration and webhook handling
- Withdrawals, promotions and timeline extensions
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
