"""
Payout service: money leaving the platform to sellers.

Two flows share this module:

1. Withdrawals. A seller asks to withdraw part of their available
   revenue. The ledger is debited (available -> withdrawn) and a pending
   Payout row is written in one transaction; execute_payout then creates
   the provider payout on the seller's connected account. payout.paid /
   payout.failed webhooks settle it, and a failure credits the amount
   back (withdrawal_reversal).

2. Transfers. When an order completes, the seller's released net payout
   is transferred from the platform balance to their connected account.

Provider calls run outside database transactions:
1. Commit the intent to pay (ledger debit + PENDING payout)
2. Call Stripe under a distributed lock, with a stable idempotency key
3. Store the provider id; webhooks advance the state from there

Transient Stripe errors are raised so the Celery task retries; permanent
errors fail the payout and restore the seller's balance.

Usage:
    from payments.services import PayoutService

    payout = PayoutService.request_withdrawal(seller=user, amount=Decimal("50.00"))
    result = PayoutService.execute_payout(payout.id)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction

from core.exceptions import ValidationError
from core.services import BaseService, ServiceResult
from orders.models import Order
from payments.adapters import StripeAdapter
from payments.exceptions import (
    LockAcquisitionError,
    PaymentNotFoundError,
    PreconditionError,
    StripeError,
)
from payments.ledger import MovementType, RevenueLedgerService, RevenueMovementParams
from payments.locks import DistributedLock
from payments.models import ConnectedAccount, Payout
from payments.pricing import quantize, to_decimal, to_minor_units
from payments.services import notifier
from payments.state_machines import EscrowStatus, PayoutState

if TYPE_CHECKING:
    from authentication.models import User


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Distributed lock TTL for payout execution (seconds)
PAYOUT_LOCK_TTL = 120

# Lock acquisition timeout (seconds)
PAYOUT_LOCK_TIMEOUT = 10.0

# Maximum retry attempts for transient errors
MAX_PAYOUT_ATTEMPTS = 5


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class PayoutExecutionResult:
    """
    Result of a payout execution attempt.

    Attributes:
        payout: The Payout model instance
        stripe_payout_id: The Stripe payout ID if successful
    """

    payout: Payout
    stripe_payout_id: str | None = None


# =============================================================================
# Payout Service
# =============================================================================


class PayoutService(BaseService):
    """
    Withdrawals, their settlement, and transfers of released order funds.

    Safety Guarantees:
        - The ledger debit and the payout row commit together
        - Distributed lock prevents concurrent execution of the same payout
        - Stripe is never called inside a transaction that could roll back
        - Idempotency keys derived from row ids prevent duplicate payouts
    """

    # =========================================================================
    # Withdrawals
    # =========================================================================

    @classmethod
    def request_withdrawal(cls, seller: User, amount, currency: str | None = None) -> Payout:
        """
        Withdraw part of the seller's available revenue.

        Raises:
            ValidationError: Amount is not positive
            PreconditionError: No connected account ready for payouts
            InsufficientRevenueError: Amount exceeds the available balance
        """
        value = quantize(to_decimal(amount))
        if value <= 0:
            raise ValidationError(
                "Withdrawal amount must be greater than zero",
                error_code="INVALID_AMOUNT",
                details={"amount": str(amount)},
            )

        account = ConnectedAccount.objects.filter(user=seller).first()
        if account is None or not account.is_ready_for_payouts:
            raise PreconditionError(
                "Connect and verify a payout account before withdrawing",
                error_code="PAYOUT_ACCOUNT_NOT_READY",
                details={
                    "onboarding_status": account.onboarding_status if account else None,
                },
            )

        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        with transaction.atomic():
            payout = Payout.objects.create(
                seller=seller,
                connected_account=account,
                amount=value,
                currency=currency,
            )
            RevenueLedgerService.apply_movement(
                RevenueMovementParams(
                    seller_id=seller.pk,
                    movement_type=MovementType.WITHDRAWAL,
                    amount=value,
                    idempotency_key=f"withdrawal:{payout.id}",
                    reference_type="payout",
                    reference_id=str(payout.id),
                    description="Withdrawal requested",
                    created_by="payout_service",
                    currency=currency,
                )
            )
            payout_id = str(payout.id)
            transaction.on_commit(lambda: _queue_payout(payout_id))

        cls.get_logger().info(
            "Withdrawal requested",
            extra={"payout_id": payout_id, "seller_id": seller.pk, "amount": str(value)},
        )
        return payout

    @classmethod
    def execute_payout(
        cls,
        payout_id: uuid.UUID,
        attempt: int = 1,
    ) -> ServiceResult[PayoutExecutionResult]:
        """
        Create the provider payout for a pending withdrawal.

        Raises:
            LockAcquisitionError: Another worker is executing this payout
            StripeError: Transient provider error (retryable); payout stays PENDING
        """
        cls.get_logger().info(
            "Starting payout execution",
            extra={"payout_id": str(payout_id), "attempt": attempt},
        )

        try:
            with DistributedLock(
                f"payout:execute:{payout_id}",
                ttl=PAYOUT_LOCK_TTL,
                blocking=True,
                timeout=PAYOUT_LOCK_TIMEOUT,
            ):
                return cls._execute_payout_with_lock(payout_id)
        except LockAcquisitionError as e:
            cls.get_logger().warning(
                "Failed to acquire lock for payout execution",
                extra={"payout_id": str(payout_id), "error": str(e)},
            )
            raise

    @classmethod
    def _execute_payout_with_lock(cls, payout_id: uuid.UUID) -> ServiceResult[PayoutExecutionResult]:
        payout = Payout.objects.select_related("connected_account").filter(id=payout_id).first()
        if payout is None:
            raise PaymentNotFoundError(
                f"Payout {payout_id} not found",
                details={"payout_id": str(payout_id)},
            )

        if payout.status != PayoutState.PENDING:
            cls.get_logger().info(
                "Payout already past pending, returning success",
                extra={"payout_id": str(payout_id), "current_state": payout.status},
            )
            return ServiceResult.success(
                PayoutExecutionResult(payout=payout, stripe_payout_id=payout.stripe_payout_id)
            )

        try:
            result = StripeAdapter.create_payout(
                amount_cents=to_minor_units(payout.amount, payout.currency),
                stripe_account_id=payout.connected_account.stripe_account_id,
                idempotency_key=f"payout:{payout.id}",
                currency=payout.currency,
                metadata={"payout_id": str(payout.id), "seller_id": str(payout.seller_id)},
            )
        except StripeError as e:
            if e.is_retryable:
                cls.get_logger().warning(
                    f"Transient Stripe error, will retry: {type(e).__name__}",
                    extra={"payout_id": str(payout_id), "error": str(e)},
                )
                raise
            cls.get_logger().error(
                f"Stripe rejected payout: {type(e).__name__}",
                extra={"payout_id": str(payout_id), "error": str(e), "stripe_code": e.stripe_code},
            )
            payout = cls.settle_failed(payout_id=payout.id, reason=e.message)
            return ServiceResult.failure(e.message, error_code=e.error_code)

        with transaction.atomic():
            payout = Payout.objects.select_for_update().get(id=payout_id)
            # A payout.* webhook may already have settled it.
            if payout.status == PayoutState.PENDING:
                payout.mark_in_transit(stripe_payout_id=result.id)
                payout.save()
            elif not payout.stripe_payout_id:
                payout.stripe_payout_id = result.id
                payout.save(update_fields=["stripe_payout_id", "updated_at"])

        cls.get_logger().info(
            "Payout in transit",
            extra={"payout_id": str(payout_id), "stripe_payout_id": result.id},
        )
        return ServiceResult.success(PayoutExecutionResult(payout=payout, stripe_payout_id=result.id))

    # =========================================================================
    # Settlement (webhooks)
    # =========================================================================

    @classmethod
    def _find_for_update(cls, payout_id=None, stripe_payout_id: str | None = None) -> Payout | None:
        queryset = Payout.objects.select_for_update()
        if payout_id is not None:
            return queryset.filter(id=payout_id).first()
        return queryset.filter(stripe_payout_id=stripe_payout_id).first()

    @classmethod
    def settle_paid(cls, payout_id=None, stripe_payout_id: str | None = None) -> Payout | None:
        """payout.paid: mark the payout paid. Idempotent."""
        with transaction.atomic():
            payout = cls._find_for_update(payout_id, stripe_payout_id)
            if payout is None or payout.is_settled:
                return payout
            payout.mark_paid()
            payout.save()
            notifier.payout_paid(payout)

        cls.get_logger().info(
            "Payout paid",
            extra={"payout_id": str(payout.id), "stripe_payout_id": payout.stripe_payout_id},
        )
        return payout

    @classmethod
    def settle_failed(
        cls,
        payout_id=None,
        stripe_payout_id: str | None = None,
        reason: str = "",
    ) -> Payout | None:
        """
        payout.failed (or a permanent provider rejection): fail the payout
        and return the amount to the seller's available balance.
        """
        with transaction.atomic():
            payout = cls._find_for_update(payout_id, stripe_payout_id)
            if payout is None or payout.is_settled:
                return payout
            payout.mark_failed(reason=reason)
            payout.save()
            RevenueLedgerService.apply_movement(
                RevenueMovementParams(
                    seller_id=payout.seller_id,
                    movement_type=MovementType.WITHDRAWAL_REVERSAL,
                    amount=payout.amount,
                    idempotency_key=f"withdrawal_reversal:{payout.id}",
                    reference_type="payout",
                    reference_id=str(payout.id),
                    description=f"Payout failed: {reason}"[:255],
                    created_by="payout_service",
                    currency=payout.currency,
                )
            )
            notifier.payout_failed(payout)

        cls.get_logger().warning(
            "Payout failed, amount returned to available",
            extra={"payout_id": str(payout.id), "amount": str(payout.amount), "reason": reason},
        )
        return payout

    @classmethod
    def sync_connected_account(cls, account: dict) -> ConnectedAccount | None:
        """account.updated: copy capability flags; notify once on verification."""
        with transaction.atomic():
            connected = ConnectedAccount.objects.select_for_update().filter(stripe_account_id=account["id"]).first()
            if connected is None:
                return None
            became_ready = connected.sync_from_stripe(account)
            connected.save()
            if became_ready:
                notifier.account_verified(connected)

        cls.get_logger().info(
            "Connected account synced",
            extra={
                "stripe_account_id": connected.stripe_account_id,
                "onboarding_status": connected.onboarding_status,
                "became_ready": became_ready,
            },
        )
        return connected

    # =========================================================================
    # Released Order Funds
    # =========================================================================

    @classmethod
    def transfer_released_funds(cls, order_id) -> ServiceResult[str]:
        """
        Transfer a completed order's seller net payout to the connected account.

        Sellers without a ready account keep the funds on the platform
        balance; the revenue ledger already shows them as available.

        Raises:
            StripeError: Transient provider error (retryable)
        """
        order = Order.objects.select_related("seller").filter(pk=order_id).first()
        if order is None:
            return ServiceResult.failure(f"Order {order_id} not found", error_code="ORDER_NOT_FOUND")
        if order.escrow_status != EscrowStatus.RELEASED:
            return ServiceResult.failure("Order funds are not released", error_code="NOT_RELEASED")
        if order.stripe_transfer_id:
            return ServiceResult.success(order.stripe_transfer_id)

        account = ConnectedAccount.objects.filter(user_id=order.seller_id).first()
        if account is None or not account.is_ready_for_payouts:
            cls.get_logger().info(
                "Seller has no payout account, funds stay on platform balance",
                extra={"order_id": str(order.id), "seller_id": order.seller_id},
            )
            return ServiceResult.failure("Seller payout account not ready", error_code="PAYOUT_ACCOUNT_NOT_READY")

        amount: Decimal = order.seller_net_payout
        try:
            transfer = StripeAdapter.create_transfer(
                amount_cents=to_minor_units(amount, order.currency),
                destination_account=account.stripe_account_id,
                idempotency_key=f"transfer:{order.id}",
                currency=order.currency,
                metadata={"order_id": str(order.id)},
                source_transaction=order.stripe_charge_id or None,
            )
        except StripeError as e:
            if e.is_retryable:
                raise
            return cls.handle_exception(e, f"Transfer for order {order.id}")

        Order.objects.filter(pk=order.pk, stripe_transfer_id="").update(stripe_transfer_id=transfer.id)
        cls.get_logger().info(
            "Released funds transferred",
            extra={"order_id": str(order.id), "transfer_id": transfer.id, "amount": str(amount)},
        )
        return ServiceResult.success(transfer.id)


def _queue_payout(payout_id: str) -> None:
    from payments.tasks import execute_payout

    execute_payout.delay(payout_id)


__all__ = [
    "MAX_PAYOUT_ATTEMPTS",
    "PayoutExecutionResult",
    "PayoutService",
]
