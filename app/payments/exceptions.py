"""
Payment-specific exceptions for escrow, ledger and gateway operations.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError - Order/milestone/payout lookup failures
    ├── IntegrityViolation - A money invariant does not hold (alert, never auto-fix)
    └── PaymentProcessingError - Gateway call failed
        ├── CaptureError - Partial capture of a tranche failed
        ├── RefundError - Refund of captured tranches failed
        └── StripeError - Base for all Stripe errors
            ├── StripeCardDeclinedError - Card declined (permanent)
            ├── StripeInsufficientFundsError - Insufficient funds (permanent)
            ├── StripeInvalidAccountError - Invalid Connect account (permanent)
            ├── StripeInvalidRequestError - Invalid request params (permanent)
            ├── StripeRateLimitError - Rate limited (transient, retry)
            ├── StripeAPIUnavailableError - API unavailable (transient, retry)
            └── StripeTimeoutError - Request timeout (transient, retry)

    PreconditionError - Transition not allowed from current state (ConflictError)
    InsufficientRevenueError - Ledger bucket would go negative (ConflictError)
    StaleRecordError - Optimistic locking conflict (ConflictError)
    LockAcquisitionError - Distributed lock timeout (ConflictError)
    InvalidStateTransitionError - django-fsm refused a transition (ConflictError)

    DuplicateEventError - Internal signal that an event was already applied;
        callers resolve it as success and never surface it

Usage:
    from payments.exceptions import CaptureError, PreconditionError

    raise PreconditionError(
        "The in_escrow milestone must be captured before deliver",
        error_code="MILESTONE_OUT_OF_ORDER",
        details={"order_id": str(order.id)},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """Base exception for all payment operations."""

    default_error_code: str = "PAYMENT_ERROR"
    http_status: int = 400


class PaymentNotFoundError(PaymentError):
    """
    Raised when a payment entity cannot be found.

    Example:
        order = Order.objects.filter(payment_intent_id=intent_id).first()
        if not order:
            raise PaymentNotFoundError(
                f"No order for payment intent {intent_id}",
                details={"payment_intent_id": intent_id},
            )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"
    http_status: int = 404


class IntegrityViolation(PaymentError):
    """
    Raised when a money invariant does not hold.

    Examples are revenue buckets that no longer sum to the total, or
    captured milestones that disagree with the order's escrow amounts.
    The operation that detects it aborts; reconciliation reports it and
    leaves the data for a human to correct.
    """

    default_error_code: str = "INTEGRITY_VIOLATION"
    http_status: int = 500


class PaymentProcessingError(PaymentError):
    """Raised when a payment gateway operation fails."""

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"
    http_status: int = 502


class CaptureError(PaymentProcessingError):
    """
    Raised when capturing a tranche fails.

    By the time this surfaces the failed milestone row, the order's
    capture_failed payment status and the timeline entry are committed.
    The capture can be retried with the same idempotency key.
    """

    default_error_code: str = "CAPTURE_FAILED"


class RefundError(PaymentProcessingError):
    """Raised when refunding captured tranches fails; nothing was changed."""

    default_error_code: str = "REFUND_FAILED"


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(PaymentProcessingError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's error code
        decline_code: Card decline code (if applicable)
        is_retryable: True for transient errors (safe to retry with backoff)
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class StripeCardDeclinedError(StripeError):
    """Card was declined by the issuing bank."""

    default_error_code: str = "CARD_DECLINED"
    is_retryable: bool = False


class StripeInsufficientFundsError(StripeError):
    """Card has insufficient funds."""

    default_error_code: str = "INSUFFICIENT_FUNDS"
    is_retryable: bool = False


class StripeInvalidAccountError(StripeError):
    """Connected account is invalid, restricted or missing."""

    default_error_code: str = "INVALID_STRIPE_ACCOUNT"
    is_retryable: bool = False


class StripeInvalidRequestError(StripeError):
    """
    Request parameters were rejected.

    Also raised for webhook signature failures and for captures against
    an intent in an unexpected state.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    """Too many requests; retry with backoff."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """Stripe API unreachable or returned a server error."""

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Request timed out.

    The outcome is unknown; retrying with the same idempotency key
    returns the original result if the first request did go through.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# State and Concurrency Exceptions
# =============================================================================


class PreconditionError(ConflictError):
    """
    Raised when an order transition is not allowed from the current state.

    Error codes:
        INVALID_ORDER_STATUS: Order status is not a source of the trigger
        MILESTONE_OUT_OF_ORDER: Previous tranche not captured yet
        DEADLINE_NOT_PASSED: Cancellation before the delivery deadline
        ORDER_NOT_CANCELLABLE: Work already delivered
    """

    default_error_code: str = "PRECONDITION_FAILED"


class InsufficientRevenueError(ConflictError):
    """Raised when a ledger movement would drive a revenue bucket negative."""

    default_error_code: str = "INSUFFICIENT_REVENUE"


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects a concurrent modification.

    The caller should reload the record and retry, or abort.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """Raised when a distributed lock cannot be acquired within its timeout."""

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """Raised when django-fsm refuses a transition (wraps TransitionNotAllowed)."""

    default_error_code: str = "INVALID_STATE_TRANSITION"


class DuplicateEventError(Exception):
    """
    An event or action was already applied.

    Internal only: raised where a unique constraint proves a replay, caught
    by the coordinator and turned into a successful no-op outcome.
    """

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentNotFoundError",
    "PaymentProcessingError",
    "IntegrityViolation",
    "CaptureError",
    "RefundError",
    # Stripe-specific
    "StripeError",
    "StripeCardDeclinedError",
    "StripeInsufficientFundsError",
    "StripeInvalidAccountError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    "StripeTimeoutError",
    # State and concurrency
    "PreconditionError",
    "InsufficientRevenueError",
    "StaleRecordError",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
    "DuplicateEventError",
]
