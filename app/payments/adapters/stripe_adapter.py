"""
Stripe adapter: the payment intent gateway.

Every Stripe call in the project goes through StripeAdapter so that
timeouts, idempotency keys, structured logging and error translation are
uniform. Amounts cross this boundary as integer minor units; callers
convert with payments.pricing.to_minor_units.

Operations treated as succeeded when Stripe says the work is already done:
- capture_partial: intent no longer capturable but amount_received already
  covers the expected cumulative capture
- cancel_authorization: intent already canceled
- refund: charge already refunded

Configuration (via settings):
- STRIPE_SECRET_KEY: API secret key
- STRIPE_WEBHOOK_SECRET: webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: per-request timeout (default: 10)
- STRIPE_MAX_RETRIES: SDK network retries (default: 3)

Usage:
    from payments.adapters import CreateAuthorizationParams, StripeAdapter

    result = StripeAdapter.create_authorization(
        CreateAuthorizationParams(
            amount_cents=11000,
            currency="usd",
            purpose=OrderPaymentPurpose(order_id=..., buyer_id=..., seller_id=...),
            customer_email=buyer.email,
            idempotency_key=IdempotencyKeyGenerator.generate("authorize", order.id),
        )
    )

    StripeAdapter.capture_partial(
        payment_intent_id=order.payment_intent_id,
        amount_cents=1100,
        idempotency_key=f"capture:{order.id}:accepted",
    )
"""

from __future__ import annotations

import hashlib
import json
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

import stripe
from django.conf import settings

from payments.exceptions import (
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeError,
    StripeInsufficientFundsError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)

if TYPE_CHECKING:
    from payments.purposes import PaymentPurpose

# Stripe error codes with "already done" meaning.
UNEXPECTED_STATE = "payment_intent_unexpected_state"
CHARGE_ALREADY_REFUNDED = "charge_already_refunded"


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreateAuthorizationParams:
    """
    Parameters for creating a payment intent.

    The capture method is not a parameter: it comes from the purpose
    (manual for order payments, automatic for everything else).

    Attributes:
        amount_cents: Total to authorize, in minor units
        currency: ISO currency code
        purpose: Typed payment purpose, written to intent metadata
        idempotency_key: Stable key for this authorization attempt
        customer_email: Used to find or create the Stripe customer
        description: Shown in the Stripe dashboard
    """

    amount_cents: int
    currency: str
    purpose: PaymentPurpose
    idempotency_key: str
    customer_email: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.currency:
            raise ValueError("currency is required")

    @property
    def capture_method(self) -> str:
        return self.purpose.capture_method


@dataclass
class PaymentIntentResult:
    """
    Snapshot of a Stripe PaymentIntent.

    Attributes:
        already_processed: True when Stripe reported the requested
            capture or cancel as already done
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    amount_received_cents: int = 0
    amount_capturable_cents: int = 0
    client_secret: str | None = None
    latest_charge: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    already_processed: bool = False

    @classmethod
    def from_intent(cls, intent: Any, already_processed: bool = False) -> PaymentIntentResult:
        latest_charge = getattr(intent, "latest_charge", None)
        if latest_charge is not None and not isinstance(latest_charge, str):
            latest_charge = getattr(latest_charge, "id", None)
        return cls(
            id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            currency=intent.currency,
            amount_received_cents=getattr(intent, "amount_received", 0) or 0,
            amount_capturable_cents=getattr(intent, "amount_capturable", 0) or 0,
            client_secret=getattr(intent, "client_secret", None),
            latest_charge=latest_charge,
            metadata=dict(intent.metadata or {}),
            already_processed=already_processed,
        )


@dataclass
class RefundResult:
    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str
    already_processed: bool = False


@dataclass
class TransferResult:
    id: str
    amount_cents: int
    currency: str
    destination_account: str


@dataclass
class PayoutResult:
    id: str
    amount_cents: int
    currency: str
    status: str
    stripe_account_id: str


# =============================================================================
# Idempotency Keys & Retry Helpers
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Build idempotency keys for calls whose natural key is not unique enough.

    Format: "{operation}:{entity_id}:{attempt}:{hash}". The hash mixes in
    SECRET_KEY so keys from different environments sharing a Stripe
    account never collide.

    Capture keys do not use this: they are "capture:{order}:{stage}" so a
    retry of the same tranche always reuses the same key.
    """

    @staticmethod
    def generate(operation: str, entity_id: uuid.UUID | str, attempt: int = 1) -> str:
        entity_str = str(entity_id)
        digest = hashlib.sha256(
            f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}".encode()
        ).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{digest}"


def is_retryable_stripe_error(error: Exception) -> bool:
    """True for transient Stripe errors (rate limit, network, 5xx, timeout)."""
    return isinstance(error, StripeError) and error.is_retryable


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """Exponential backoff with up to 25% jitter, for manual Celery retries."""
    delay = min(base * (2**attempt), max_delay)
    return delay + delay * random.uniform(0, 0.25)


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Gateway to the Stripe API.

    All methods are classmethods; no instance state is kept, so the
    adapter is safe to use from web workers and Celery workers alike.
    Tests patch these methods rather than the SDK.
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = settings.STRIPE_MAX_RETRIES
        stripe.default_http_client = stripe.RequestsClient(
            timeout=settings.STRIPE_API_TIMEOUT_SECONDS
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _execute(
        cls,
        log_context: dict[str, Any],
        call: Callable[[], Any],
        level: int = logging.INFO,
    ) -> Any:
        """
        Run one SDK call with timing, logging and error translation.

        Raises:
            StripeError: Translated from the SDK exception
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        start_time = time.time()
        logger.log(level, "Starting Stripe operation", extra=log_context)
        try:
            response = call()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            raise cls._translate_error(e, {**log_context, "duration_ms": duration_ms}) from e

        duration_ms = (time.time() - start_time) * 1000
        logger.log(
            level,
            "Stripe operation completed",
            extra={
                **log_context,
                "stripe_object_id": getattr(response, "id", None),
                "status": getattr(response, "status", None),
                "duration_ms": duration_ms,
            },
        )
        return response

    # =========================================================================
    # Customers
    # =========================================================================

    @classmethod
    def find_or_create_customer(cls, email: str, idempotency_key: str) -> str:
        """Stripe customer ID for ``email``, creating the customer if needed."""
        log_context = {"operation": "find_or_create_customer", "idempotency_key": idempotency_key}

        existing = cls._execute(
            {**log_context, "step": "list"},
            lambda: stripe.Customer.list(email=email, limit=1),
            level=logging.DEBUG,
        )
        if existing.data:
            return existing.data[0].id

        customer = cls._execute(
            {**log_context, "step": "create"},
            lambda: stripe.Customer.create(email=email, idempotency_key=idempotency_key),
        )
        return customer.id

    # =========================================================================
    # Payment Intents
    # =========================================================================

    @classmethod
    def create_authorization(cls, params: CreateAuthorizationParams) -> PaymentIntentResult:
        """
        Create a payment intent for the purpose's amount.

        Order payments use manual capture with multicapture requested so the
        four tranches can be captured separately; other purposes capture
        automatically once the buyer confirms.

        Raises:
            StripeCardDeclinedError, StripeInvalidRequestError,
            StripeAPIUnavailableError, StripeTimeoutError
        """
        log_context = {
            "operation": "create_authorization",
            "amount_cents": params.amount_cents,
            "currency": params.currency,
            "capture_method": params.capture_method,
            "purpose": params.purpose.kind,
            "idempotency_key": params.idempotency_key,
        }

        customer_id = None
        if params.customer_email:
            customer_id = cls.find_or_create_customer(
                params.customer_email,
                idempotency_key=f"customer:{params.idempotency_key}",
            )

        create_kwargs: dict[str, Any] = {
            "amount": params.amount_cents,
            "currency": params.currency.lower(),
            "capture_method": params.capture_method,
            "metadata": params.purpose.to_metadata(),
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_id:
            create_kwargs["customer"] = customer_id
        if params.description:
            create_kwargs["description"] = params.description
        if params.capture_method == "manual":
            create_kwargs["payment_method_options"] = {
                "card": {"request_multicapture": "if_available"}
            }

        intent = cls._execute(
            log_context,
            lambda: stripe.PaymentIntent.create(
                idempotency_key=params.idempotency_key,
                **create_kwargs,
            ),
        )
        return PaymentIntentResult.from_intent(intent)

    @classmethod
    def capture_partial(
        cls,
        payment_intent_id: str,
        amount_cents: int,
        idempotency_key: str,
        final_capture: bool = False,
        expected_received_cents: int | None = None,
    ) -> PaymentIntentResult:
        """
        Capture one tranche of an authorized intent.

        If Stripe answers that the intent is no longer capturable and the
        intent's amount_received already reaches ``expected_received_cents``
        (the cumulative total after this tranche), the capture happened
        earlier and the call succeeds with ``already_processed``.

        Raises:
            StripeInvalidRequestError: Intent not capturable and not captured
            StripeAPIUnavailableError, StripeTimeoutError: Transient, retry
                with the same idempotency key
        """
        log_context = {
            "operation": "capture_partial",
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "final_capture": final_capture,
            "idempotency_key": idempotency_key,
        }
        try:
            intent = cls._execute(
                log_context,
                lambda: stripe.PaymentIntent.capture(
                    payment_intent_id,
                    amount_to_capture=amount_cents,
                    final_capture=final_capture,
                    idempotency_key=idempotency_key,
                ),
            )
        except StripeInvalidRequestError as e:
            if e.stripe_code != UNEXPECTED_STATE or expected_received_cents is None:
                raise
            current = cls.retrieve_payment_intent(payment_intent_id)
            if current.amount_received_cents < expected_received_cents:
                raise
            cls.get_logger().info(
                "Tranche already captured",
                extra={**log_context, "amount_received": current.amount_received_cents},
            )
            current.already_processed = True
            return current
        return PaymentIntentResult.from_intent(intent)

    @classmethod
    def cancel_authorization(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        reason: str = "requested_by_customer",
    ) -> PaymentIntentResult:
        """
        Cancel an intent and release the uncaptured authorization.

        An already-canceled intent counts as success.
        """
        log_context = {
            "operation": "cancel_authorization",
            "payment_intent_id": payment_intent_id,
            "idempotency_key": idempotency_key,
        }
        try:
            intent = cls._execute(
                log_context,
                lambda: stripe.PaymentIntent.cancel(
                    payment_intent_id,
                    cancellation_reason=reason,
                    idempotency_key=idempotency_key,
                ),
            )
        except StripeInvalidRequestError as e:
            if e.stripe_code != UNEXPECTED_STATE:
                raise
            current = cls.retrieve_payment_intent(payment_intent_id)
            if current.status != "canceled":
                raise
            current.already_processed = True
            return current
        return PaymentIntentResult.from_intent(intent)

    @classmethod
    def retrieve_payment_intent(cls, payment_intent_id: str) -> PaymentIntentResult:
        intent = cls._execute(
            {"operation": "retrieve_payment_intent", "payment_intent_id": payment_intent_id},
            lambda: stripe.PaymentIntent.retrieve(payment_intent_id),
            level=logging.DEBUG,
        )
        return PaymentIntentResult.from_intent(intent)

    # =========================================================================
    # Refunds, Transfers, Payouts
    # =========================================================================

    @classmethod
    def refund(
        cls,
        payment_intent_id: str,
        amount_cents: int,
        idempotency_key: str,
        reason: str = "requested_by_customer",
        metadata: dict[str, str] | None = None,
        currency: str = "usd",
    ) -> RefundResult:
        """
        Refund captured funds of an intent.

        ``charge_already_refunded`` counts as success.

        Raises:
            StripeInvalidRequestError: Refund not possible
        """
        log_context = {
            "operation": "refund",
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }
        try:
            refund = cls._execute(
                log_context,
                lambda: stripe.Refund.create(
                    payment_intent=payment_intent_id,
                    amount=amount_cents,
                    reason=reason,
                    metadata=metadata or {},
                    idempotency_key=idempotency_key,
                ),
            )
        except StripeInvalidRequestError as e:
            if e.stripe_code != CHARGE_ALREADY_REFUNDED:
                raise
            cls.get_logger().info("Charge already refunded", extra=log_context)
            return RefundResult(
                id="",
                amount_cents=amount_cents,
                currency=currency.lower(),
                status="succeeded",
                payment_intent_id=payment_intent_id,
                already_processed=True,
            )
        return RefundResult(
            id=refund.id,
            amount_cents=refund.amount,
            currency=refund.currency,
            status=refund.status,
            payment_intent_id=payment_intent_id,
        )

    @classmethod
    def create_transfer(
        cls,
        amount_cents: int,
        destination_account: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: dict[str, str] | None = None,
        source_transaction: str | None = None,
    ) -> TransferResult:
        """Move released funds to a seller's connected account."""
        log_context = {
            "operation": "create_transfer",
            "amount_cents": amount_cents,
            "destination_account": destination_account,
            "idempotency_key": idempotency_key,
        }
        transfer_kwargs: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "destination": destination_account,
            "metadata": metadata or {},
        }
        if source_transaction:
            transfer_kwargs["source_transaction"] = source_transaction

        transfer = cls._execute(
            log_context,
            lambda: stripe.Transfer.create(idempotency_key=idempotency_key, **transfer_kwargs),
        )
        return TransferResult(
            id=transfer.id,
            amount_cents=transfer.amount,
            currency=transfer.currency,
            destination_account=transfer.destination,
        )

    @classmethod
    def create_payout(
        cls,
        amount_cents: int,
        stripe_account_id: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: dict[str, str] | None = None,
    ) -> PayoutResult:
        """Pay out from a connected account's balance to its bank account."""
        log_context = {
            "operation": "create_payout",
            "amount_cents": amount_cents,
            "stripe_account_id": stripe_account_id,
            "idempotency_key": idempotency_key,
        }
        payout = cls._execute(
            log_context,
            lambda: stripe.Payout.create(
                amount=amount_cents,
                currency=currency.lower(),
                metadata=metadata or {},
                stripe_account=stripe_account_id,
                idempotency_key=idempotency_key,
            ),
        )
        return PayoutResult(
            id=payout.id,
            amount_cents=payout.amount,
            currency=payout.currency,
            status=payout.status,
            stripe_account_id=stripe_account_id,
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    @classmethod
    def verify_webhook_signature(cls, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify a webhook payload against STRIPE_WEBHOOK_SECRET and parse it.

        The event is returned as plain JSON data rather than a StripeObject
        so it can be stored on WebhookEvent as-is.

        Raises:
            StripeInvalidRequestError: Signature missing, invalid or payload unparsable
        """
        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
            stripe.WebhookSignature.verify_header(body, signature, settings.STRIPE_WEBHOOK_SECRET)
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            raise StripeInvalidRequestError(
                "Invalid webhook signature",
                stripe_code="signature_verification_failed",
                details={"error": str(e)},
            )
        except ValueError as e:
            raise StripeInvalidRequestError(
                "Invalid webhook payload",
                stripe_code="invalid_payload",
                details={"error": str(e)},
            )
        if not isinstance(event, dict):
            raise StripeInvalidRequestError("Invalid webhook payload", stripe_code="invalid_payload")
        return event

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _translate_error(cls, error: Exception, log_context: dict[str, Any]) -> StripeError:
        """Map an SDK exception to the domain StripeError it stands for."""
        logger = cls.get_logger()
        stripe_code = getattr(error, "code", None)

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            error_class = (
                StripeInsufficientFundsError
                if decline_code == "insufficient_funds"
                else StripeCardDeclinedError
            )
            return error_class(
                str(getattr(error, "user_message", None) or error),
                stripe_code=stripe_code,
                decline_code=decline_code,
            )

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": stripe_code},
            )
            param = getattr(error, "param", None) or ""
            if param in ("destination", "stripe_account") or stripe_code == "account_invalid":
                return StripeInvalidAccountError(str(error), stripe_code=stripe_code)
            return StripeInvalidRequestError(str(error), stripe_code=stripe_code)

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            return StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            )

        if isinstance(error, stripe.APIConnectionError):
            timed_out = "timed out" in str(error).lower() or "timeout" in str(error).lower()
            logger.error(
                "Timeout talking to Stripe" if timed_out else "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            if timed_out:
                return StripeTimeoutError(
                    "Stripe request timed out. Retry with the same idempotency key.",
                    stripe_code="timeout",
                )
            return StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            )

        if isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed, check API key", extra=log_context)
            return StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            )

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            return StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            )

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        return StripeError(f"Unexpected Stripe error: {error}")
