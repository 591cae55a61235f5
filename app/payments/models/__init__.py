"""
Payment domain models.

- PaymentMilestone: append-only ledger of tranche captures, releases, refunds
- WebhookEvent: provider webhook events for idempotent processing
- ConnectedAccount: seller Stripe Connect accounts
- Payout: seller withdrawals
- PromotionPurchase: paid gig promotions
- TimelineExtension: buyer-paid delivery deadline extensions
- SellerRevenue / RevenueEntry: seller revenue ledger (payments.ledger)
"""

from payments.ledger.models import MovementType, RevenueEntry, SellerRevenue
from payments.models.connected_account import ConnectedAccount
from payments.models.milestone import PaymentMilestone
from payments.models.payout import Payout
from payments.models.promotion import PROMOTION_PLANS, PromotionPurchase
from payments.models.timeline_extension import TimelineExtension
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "PROMOTION_PLANS",
    "ConnectedAccount",
    "MovementType",
    "PaymentMilestone",
    "Payout",
    "PromotionPurchase",
    "RevenueEntry",
    "SellerRevenue",
    "TimelineExtension",
    "WebhookEvent",
]
