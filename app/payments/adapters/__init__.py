"""
Payment provider adapters.

All payment provider calls go through these adapters so timeouts,
idempotency, logging and error translation are handled in one place.

Usage:
    from payments.adapters import StripeAdapter

    StripeAdapter.refund(payment_intent_id, amount_cents=1100, idempotency_key=key)
"""

from payments.adapters.stripe_adapter import (
    CreateAuthorizationParams,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    PayoutResult,
    RefundResult,
    StripeAdapter,
    TransferResult,
    backoff_delay,
    is_retryable_stripe_error,
)

__all__ = [
    "CreateAuthorizationParams",
    "IdempotencyKeyGenerator",
    "PaymentIntentResult",
    "PayoutResult",
    "RefundResult",
    "StripeAdapter",
    "TransferResult",
    "backoff_delay",
    "is_retryable_stripe_error",
]
