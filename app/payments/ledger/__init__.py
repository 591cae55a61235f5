"""
Seller revenue ledger.

Public API:
    Models:
        SellerRevenue - Per-seller total/pending/available/withdrawn
        RevenueEntry - Immutable audit row per movement
        MovementType - Enum of movements

    Service:
        RevenueLedgerService - apply_movement() is the single mutation path

    Types:
        RevenueMovementParams - Parameters for a movement
        RevenueSummary - Read model of a seller's balances

Usage:
    from payments.ledger import MovementType, RevenueLedgerService, RevenueMovementParams

    RevenueLedgerService.apply_movement(RevenueMovementParams(
        seller_id=seller.id,
        movement_type=MovementType.WITHDRAWAL,
        amount=Decimal("50.00"),
        idempotency_key=f"withdrawal:{payout.id}",
    ))
"""

from .models import MovementType, RevenueEntry, SellerRevenue
from .services import RevenueLedgerService
from .types import BucketDeltas, RevenueMovementParams, RevenueSummary, deltas_for

__all__ = [
    # Models
    "MovementType",
    "RevenueEntry",
    "SellerRevenue",
    # Service
    "RevenueLedgerService",
    # Types
    "BucketDeltas",
    "RevenueMovementParams",
    "RevenueSummary",
    "deltas_for",
]
