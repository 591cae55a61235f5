"""
Payment services for coordinating escrow and payment operations.

This module provides:
- EscrowService: Order transitions and their captures, release and refunds
- CheckoutService: Pricing and payment intent creation
- PromotionService / TimelineExtensionService: Fulfil automatic-capture payments
- PayoutService: Withdrawals, payout settlement and released-fund transfers
- ReconciliationService: Detects broken money invariants

Usage:
    from payments.services import CheckoutService, EscrowService

    checkout = CheckoutService.create_order_checkout(
        buyer=user,
        seller_id=seller.id,
        gig_id="gig_42",
        price=Decimal("100.00"),
    )

    # Seller starts work: captures the 50% tranche
    outcome = EscrowService.start(order.id, user=seller)

    # Withdraw available revenue
    from payments.services import PayoutService

    payout = PayoutService.request_withdrawal(seller=seller, amount=Decimal("50.00"))

    # Run reconciliation
    from payments.services import ReconciliationService

    result = ReconciliationService.run()
"""

from payments.services.checkout_service import (
    CheckoutResult,
    CheckoutService,
    extension_price,
)
from payments.services.escrow_service import (
    EscrowService,
    TransitionOutcome,
    capture_key,
)
from payments.services.extension_service import TimelineExtensionService
from payments.services.payout_service import (
    PayoutExecutionResult,
    PayoutService,
)
from payments.services.promotion_service import PromotionService
from payments.services.reconciliation_service import (
    Discrepancy,
    DiscrepancyType,
    ReconciliationRunResult,
    ReconciliationService,
)

__all__ = [
    "CheckoutResult",
    "CheckoutService",
    "Discrepancy",
    "DiscrepancyType",
    "EscrowService",
    "PayoutExecutionResult",
    "PayoutService",
    "PromotionService",
    "ReconciliationRunResult",
    "ReconciliationService",
    "TimelineExtensionService",
    "TransitionOutcome",
    "capture_key",
    "extension_price",
]
