"""
Revenue ledger service: the only code path that changes seller balances.

Every mutation goes through apply_movement(), which:
1. Returns the existing entry if the idempotency key was already applied
2. Inserts the RevenueEntry (the unique key backstops concurrent replays)
3. Applies all bucket deltas in one conditional UPDATE using F()
   expressions, guarded so no debited bucket can go below zero
4. Re-reads the row and checks total == pending + available + withdrawn

Usage:
    from payments.ledger import RevenueLedgerService, RevenueMovementParams, MovementType

    RevenueLedgerService.apply_movement(
        RevenueMovementParams(
            seller_id=order.seller_id,
            movement_type=MovementType.MILESTONE_CAPTURE,
            amount=Decimal("9.00"),
            idempotency_key=f"capture:{order.id}:accepted",
            order_id=order.id,
        )
    )
"""

from __future__ import annotations

import logging
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F, Sum
from django.db.models.functions import Coalesce

from payments.exceptions import InsufficientRevenueError, IntegrityViolation
from payments.ledger.models import RevenueEntry, SellerRevenue
from payments.ledger.types import RevenueMovementParams, RevenueSummary

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class RevenueLedgerService:
    """
    Seller revenue operations.

    All methods are static; no instance state is kept.
    """

    @staticmethod
    def get_or_create_account(seller_id, currency: str | None = None) -> SellerRevenue:
        revenue, created = SellerRevenue.objects.get_or_create(
            seller_id=seller_id,
            defaults={"currency": (currency or settings.DEFAULT_CURRENCY).upper()},
        )
        if created:
            logger.info("Created seller revenue account", extra={"seller_id": str(seller_id)})
        return revenue

    @staticmethod
    def apply_movement(params: RevenueMovementParams) -> RevenueEntry:
        """
        Apply one balance movement exactly once.

        Idempotent: a second call with the same idempotency_key returns
        the first entry and leaves balances untouched.

        Raises:
            InsufficientRevenueError: A debited bucket holds less than the amount
            IntegrityViolation: Balances no longer conserve after the update
        """
        deltas = params.deltas
        log_context = {
            "seller_id": str(params.seller_id),
            "movement_type": params.movement_type,
            "amount": str(params.amount),
            "idempotency_key": params.idempotency_key,
            "order_id": str(params.order_id) if params.order_id else None,
        }

        with transaction.atomic():
            revenue = RevenueLedgerService.get_or_create_account(params.seller_id, params.currency)

            existing = RevenueEntry.objects.filter(idempotency_key=params.idempotency_key).first()
            if existing:
                logger.info("Revenue movement already applied", extra=log_context)
                return existing

            try:
                with transaction.atomic():
                    entry = RevenueEntry.objects.create(
                        revenue=revenue,
                        movement_type=params.movement_type,
                        amount=params.amount,
                        total_delta=deltas.total,
                        pending_delta=deltas.pending,
                        available_delta=deltas.available,
                        withdrawn_delta=deltas.withdrawn,
                        order_id=params.order_id,
                        reference_type=params.reference_type,
                        reference_id=str(params.reference_id or ""),
                        description=params.description,
                        created_by=params.created_by,
                        idempotency_key=params.idempotency_key,
                    )
            except IntegrityError:
                # Concurrent replay inserted the same key first.
                logger.info("Revenue movement applied concurrently", extra=log_context)
                return RevenueEntry.objects.get(idempotency_key=params.idempotency_key)

            guard = {f"{bucket}__gte": need for bucket, need in deltas.debits().items()}
            try:
                updated = SellerRevenue.objects.filter(pk=revenue.pk, **guard).update(
                    total=F("total") + deltas.total,
                    pending=F("pending") + deltas.pending,
                    available=F("available") + deltas.available,
                    withdrawn=F("withdrawn") + deltas.withdrawn,
                )
            except IntegrityError as e:
                logger.critical("Revenue update violated a balance constraint", extra=log_context)
                raise IntegrityViolation(
                    "Revenue balances violated a database constraint",
                    details={**log_context, "error": str(e)},
                )

            if not updated:
                revenue.refresh_from_db()
                raise InsufficientRevenueError(
                    f"Insufficient revenue for {params.movement_type} of {params.amount}",
                    details={
                        **log_context,
                        "pending": str(revenue.pending),
                        "available": str(revenue.available),
                        "withdrawn": str(revenue.withdrawn),
                    },
                )

            revenue.refresh_from_db()
            if not revenue.is_balanced:
                logger.critical(
                    "Revenue conservation broken",
                    extra={
                        **log_context,
                        "total": str(revenue.total),
                        "pending": str(revenue.pending),
                        "available": str(revenue.available),
                        "withdrawn": str(revenue.withdrawn),
                    },
                )
                raise IntegrityViolation(
                    "Revenue total no longer equals pending + available + withdrawn",
                    details={"seller_id": str(params.seller_id)},
                )

        logger.info("Revenue movement applied", extra=log_context)
        return entry

    @staticmethod
    def pending_for_order(seller_id, order_id) -> Decimal:
        """Net pending revenue credited to the seller for one order."""
        result = RevenueEntry.objects.filter(
            revenue__seller_id=seller_id,
            order_id=order_id,
        ).aggregate(pending=Coalesce(Sum("pending_delta"), ZERO))
        return result["pending"]

    @staticmethod
    def get_summary(seller_id) -> RevenueSummary:
        revenue = SellerRevenue.objects.filter(seller_id=seller_id).first()
        if revenue is None:
            return RevenueSummary(ZERO, ZERO, ZERO, ZERO, settings.DEFAULT_CURRENCY)
        return RevenueSummary(
            total=revenue.total,
            pending=revenue.pending,
            available=revenue.available,
            withdrawn=revenue.withdrawn,
            currency=revenue.currency,
        )

    @staticmethod
    def entries_for_seller(seller_id, limit: int = 100, offset: int = 0) -> list[RevenueEntry]:
        return list(
            RevenueEntry.objects.filter(revenue__seller_id=seller_id)
            .select_related("order")
            .order_by("-created_at")[offset : offset + limit]
        )
