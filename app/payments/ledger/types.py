"""
Data types for revenue ledger operations.

Types:
    BucketDeltas: Signed change per balance bucket
    RevenueMovementParams: Everything apply_movement() needs
    RevenueSummary: Read model returned to the revenue endpoint

Usage:
    from payments.ledger.types import RevenueMovementParams

    params = RevenueMovementParams(
        seller_id=order.seller_id,
        movement_type=MovementType.MILESTONE_CAPTURE,
        amount=Decimal("45.00"),
        idempotency_key=f"capture:{order.id}:in_escrow",
        order_id=order.id,
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

from payments.ledger.models import MovementType

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class BucketDeltas:
    total: Decimal = ZERO
    pending: Decimal = ZERO
    available: Decimal = ZERO
    withdrawn: Decimal = ZERO

    def as_dict(self) -> dict[str, Decimal]:
        return {
            "total": self.total,
            "pending": self.pending,
            "available": self.available,
            "withdrawn": self.withdrawn,
        }

    def debits(self) -> dict[str, Decimal]:
        """Buckets this movement decreases, with the amount each needs."""
        return {bucket: -delta for bucket, delta in self.as_dict().items() if delta < 0}


def deltas_for(movement_type: str, amount: Decimal) -> BucketDeltas:
    """Bucket deltas of a movement of ``amount`` (see MovementType)."""
    if movement_type in (MovementType.MILESTONE_CAPTURE, MovementType.EXTENSION_CREDIT):
        return BucketDeltas(total=amount, pending=amount)
    if movement_type == MovementType.ESCROW_RELEASE:
        return BucketDeltas(pending=-amount, available=amount)
    if movement_type == MovementType.REFUND_REVERSAL:
        return BucketDeltas(total=-amount, pending=-amount)
    if movement_type == MovementType.WITHDRAWAL:
        return BucketDeltas(available=-amount, withdrawn=amount)
    if movement_type == MovementType.WITHDRAWAL_REVERSAL:
        return BucketDeltas(available=amount, withdrawn=-amount)
    raise ValueError(f"Unknown movement type: {movement_type}")


@dataclass
class RevenueMovementParams:
    """
    Parameters for one ledger movement.

    Required Attributes:
        seller_id: Seller whose balances move
        movement_type: One of MovementType
        amount: Positive amount in currency units
        idempotency_key: Unique per logical movement

    Optional Attributes:
        order_id: Order the movement belongs to
        reference_type/reference_id: Other related entity (payout, extension)
        description: Human-readable note
        created_by: Service or job that applied it
    """

    seller_id: uuid.UUID | int
    movement_type: str
    amount: Decimal
    idempotency_key: str

    order_id: uuid.UUID | None = None
    reference_type: str = ""
    reference_id: str = ""
    description: str = ""
    created_by: str = ""
    currency: str = "USD"

    def __post_init__(self) -> None:
        if self.amount is None or Decimal(self.amount) <= 0:
            raise ValueError("amount must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if self.movement_type not in MovementType.values:
            raise ValueError(f"Unknown movement type: {self.movement_type}")

    @property
    def deltas(self) -> BucketDeltas:
        return deltas_for(self.movement_type, Decimal(self.amount))


@dataclass(frozen=True)
class RevenueSummary:
    total: Decimal
    pending: Decimal
    available: Decimal
    withdrawn: Decimal
    currency: str

    def to_dict(self) -> dict[str, str]:
        return {
            "total": str(self.total),
            "pending": str(self.pending),
            "available": str(self.available),
            "withdrawn": str(self.withdrawn),
            "currency": self.currency,
        }
