"""
Reconciliation: detect broken money invariants.

Every write path already guards its own invariants; this is the safety
net that re-checks stored state from scratch. It never corrects
anything. Each discrepancy is logged at CRITICAL as an IntegrityViolation
and returned so an operator can investigate.

Detection Categories:
    1. Seller revenue: buckets vs total (conservation), buckets vs the
       sum of ledger entries (drift)
    2. Orders: planned tranches vs total, released + pending vs total,
       captured milestones vs released + pending escrow

Usage:
    from payments.services import ReconciliationService

    result = ReconciliationService.run()
    if result.discrepancies:
        ...
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from django.utils import timezone

from core.services import BaseService
from orders.models import Order
from payments.exceptions import IntegrityViolation
from payments.ledger import SellerRevenue
from payments.models import PaymentMilestone
from payments.pricing import ZERO
from payments.state_machines import EscrowStatus

if TYPE_CHECKING:
    from typing import Any


logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


# =============================================================================
# Data Types
# =============================================================================


class DiscrepancyType(str, Enum):
    """Invariants reconciliation checks."""

    # Seller revenue
    REVENUE_NOT_CONSERVED = "revenue_not_conserved"
    REVENUE_ENTRIES_DRIFT = "revenue_entries_drift"

    # Orders
    TRANCHES_NOT_SUMMING = "tranches_not_summing"
    ESCROW_EXCEEDS_TOTAL = "escrow_exceeds_total"
    CAPTURED_ESCROW_MISMATCH = "captured_escrow_mismatch"


@dataclass
class Discrepancy:
    """A broken invariant on one record."""

    discrepancy_type: DiscrepancyType
    entity_type: str  # "seller_revenue" or "order"
    entity_id: Any
    expected: str
    actual: str
    details: dict[str, Any] = field(default_factory=dict)
    detected_at: datetime = field(default_factory=timezone.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.discrepancy_type.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id),
            "expected": self.expected,
            "actual": self.actual,
            "details": self.details,
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass
class ReconciliationRunResult:
    """Summary of one reconciliation run."""

    run_id: uuid.UUID
    started_at: datetime
    completed_at: datetime | None = None
    revenue_accounts_checked: int = 0
    orders_checked: int = 0
    discrepancies: list[Discrepancy] = field(default_factory=list)

    @property
    def discrepancies_found(self) -> int:
        return len(self.discrepancies)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": str(self.run_id),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "revenue_accounts_checked": self.revenue_accounts_checked,
            "orders_checked": self.orders_checked,
            "discrepancies_found": self.discrepancies_found,
        }


# =============================================================================
# Reconciliation Service
# =============================================================================


class ReconciliationService(BaseService):
    """
    Read-only invariant checks over revenue accounts and orders.

    Usage:
        discrepancies = ReconciliationService.check_seller(revenue)
        discrepancies = ReconciliationService.check_order(order)
        result = ReconciliationService.run()
    """

    @classmethod
    def check_seller(cls, revenue: SellerRevenue) -> list[Discrepancy]:
        found: list[Discrepancy] = []

        buckets = revenue.pending + revenue.available + revenue.withdrawn
        if revenue.total != buckets:
            found.append(
                Discrepancy(
                    discrepancy_type=DiscrepancyType.REVENUE_NOT_CONSERVED,
                    entity_type="seller_revenue",
                    entity_id=revenue.seller_id,
                    expected=str(revenue.total),
                    actual=str(buckets),
                    details=_buckets(revenue),
                )
            )

        sums = revenue.entry_totals()
        drifted = {
            bucket: {"balance": str(getattr(revenue, bucket)), "entries": str(sums[bucket])}
            for bucket in ("total", "pending", "available", "withdrawn")
            if getattr(revenue, bucket) != sums[bucket]
        }
        if drifted:
            found.append(
                Discrepancy(
                    discrepancy_type=DiscrepancyType.REVENUE_ENTRIES_DRIFT,
                    entity_type="seller_revenue",
                    entity_id=revenue.seller_id,
                    expected="balances equal the sum of ledger entries",
                    actual=", ".join(sorted(drifted)),
                    details=drifted,
                )
            )

        cls._report(found)
        return found

    @classmethod
    def check_order(cls, order: Order) -> list[Discrepancy]:
        found: list[Discrepancy] = []

        tranches = sum(order.planned_tranches().values(), ZERO)
        if tranches != order.total_amount:
            found.append(
                Discrepancy(
                    discrepancy_type=DiscrepancyType.TRANCHES_NOT_SUMMING,
                    entity_type="order",
                    entity_id=order.id,
                    expected=str(order.total_amount),
                    actual=str(tranches),
                    details=order.payment_breakdown,
                )
            )

        held = order.total_released_amount + order.pending_release_amount
        if held > order.total_amount:
            found.append(
                Discrepancy(
                    discrepancy_type=DiscrepancyType.ESCROW_EXCEEDS_TOTAL,
                    entity_type="order",
                    entity_id=order.id,
                    expected=f"<= {order.total_amount}",
                    actual=str(held),
                )
            )

        # After a refund nothing is held, whatever was captured.
        if order.escrow_status != EscrowStatus.REFUNDED:
            captured: Decimal = PaymentMilestone.objects.captured_total(order)
            if captured != held:
                found.append(
                    Discrepancy(
                        discrepancy_type=DiscrepancyType.CAPTURED_ESCROW_MISMATCH,
                        entity_type="order",
                        entity_id=order.id,
                        expected=str(captured),
                        actual=str(held),
                        details={
                            "pending_release_amount": str(order.pending_release_amount),
                            "total_released_amount": str(order.total_released_amount),
                        },
                    )
                )

        cls._report(found)
        return found

    @classmethod
    def run(cls, batch_size: int = DEFAULT_BATCH_SIZE) -> ReconciliationRunResult:
        """Check every revenue account and every order that holds or held escrow."""
        result = ReconciliationRunResult(run_id=uuid.uuid4(), started_at=timezone.now())
        cls.get_logger().info("Starting reconciliation run", extra={"run_id": str(result.run_id)})

        for revenue in SellerRevenue.objects.order_by("pk").iterator(chunk_size=batch_size):
            result.discrepancies.extend(cls.check_seller(revenue))
            result.revenue_accounts_checked += 1

        orders = Order.objects.exclude(escrow_status=EscrowStatus.NONE).order_by("pk")
        for order in orders.iterator(chunk_size=batch_size):
            result.discrepancies.extend(cls.check_order(order))
            result.orders_checked += 1

        result.completed_at = timezone.now()
        cls.get_logger().info(
            "Reconciliation run completed",
            extra=result.to_dict(),
        )
        return result

    @classmethod
    def _report(cls, discrepancies: list[Discrepancy]) -> None:
        for discrepancy in discrepancies:
            violation = IntegrityViolation(
                f"{discrepancy.entity_type} {discrepancy.entity_id}: {discrepancy.discrepancy_type.value}",
                error_code=discrepancy.discrepancy_type.value.upper(),
                details=discrepancy.to_dict(),
            )
            cls.get_logger().critical(violation.message, extra=violation.to_dict())


def _buckets(revenue: SellerRevenue) -> dict[str, str]:
    return {
        "total": str(revenue.total),
        "pending": str(revenue.pending),
        "available": str(revenue.available),
        "withdrawn": str(revenue.withdrawn),
    }


__all__ = [
    "Discrepancy",
    "DiscrepancyType",
    "ReconciliationRunResult",
    "ReconciliationService",
]
