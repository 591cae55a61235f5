"""
Webhook event handlers for Stripe events.

This module provides a handler registry and implementations for the
Stripe events the escrow engine reacts to.

Every handler is idempotent: replays are absorbed by the milestone
uniqueness check, entity status checks, unique payment intent ids on
promotion/extension rows and ledger idempotency keys. A handler returns
a failed ServiceResult (or raises) only for problems a retry could fix;
business-rule refusals such as an order that moved on are logged and
reported as success.

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Callable

from core.services import ServiceResult
from payments.exceptions import PreconditionError
from payments.models import WebhookEvent
from payments.pricing import from_minor_units
from payments.purposes import (
    OrderPaymentPurpose,
    PromotionPurpose,
    TimelineExtensionPurpose,
    parse_purpose,
)
from payments.services import (
    EscrowService,
    PayoutService,
    PromotionService,
    TimelineExtensionService,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler("payment_intent.succeeded")
        def handle_payment_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types succeed as no-ops.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )
    return handler(webhook_event)


def _log_context(webhook_event: WebhookEvent, **extra) -> dict:
    return {
        "stripe_event_id": webhook_event.stripe_event_id,
        "event_type": webhook_event.event_type,
        **extra,
    }


def _authorize_order(webhook_event: WebhookEvent, intent: dict) -> ServiceResult:
    try:
        outcome = EscrowService.authorize(
            payment_intent_id=intent["id"],
            charge_id=intent.get("latest_charge"),
        )
    except PreconditionError as e:
        # Order cancelled or otherwise moved on; a retry would not help.
        logger.warning(
            "Authorization ignored for order in unexpected state",
            extra=_log_context(webhook_event, payment_intent_id=intent["id"], error_code=e.error_code),
        )
        return ServiceResult.success(None)
    return ServiceResult.success(outcome)


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.amount_capturable_updated")
def handle_amount_capturable_updated(webhook_event: WebhookEvent) -> ServiceResult:
    """
    The buyer's card was authorized for a manual-capture intent.

    Only order payments use manual capture; this is where an order is
    accepted and its first tranche captured.
    """
    intent = webhook_event.data_object
    purpose = parse_purpose(intent.get("metadata"))
    if not isinstance(purpose, OrderPaymentPurpose):
        logger.info(
            "Capturable update for a non-order intent, ignoring",
            extra=_log_context(webhook_event, payment_intent_id=intent.get("id")),
        )
        return ServiceResult.success(None)
    return _authorize_order(webhook_event, intent)


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    A payment intent succeeded; what that means depends on its purpose.

    Order payments succeed after captures too, so for orders this is the
    same idempotent authorize step as amount_capturable_updated.
    """
    intent = webhook_event.data_object
    purpose = parse_purpose(intent.get("metadata"))

    match purpose:
        case OrderPaymentPurpose():
            return _authorize_order(webhook_event, intent)
        case PromotionPurpose():
            return PromotionService.activate(intent, purpose)
        case TimelineExtensionPurpose():
            return TimelineExtensionService.complete(intent, purpose)
        case None:
            logger.info(
                "Payment intent without a purpose, ignoring",
                extra=_log_context(webhook_event, payment_intent_id=intent.get("id")),
            )
            return ServiceResult.success(None)


@register_handler("payment_intent.payment_failed")
def handle_payment_intent_failed(webhook_event: WebhookEvent) -> ServiceResult:
    intent = webhook_event.data_object
    purpose = parse_purpose(intent.get("metadata"))
    if not isinstance(purpose, OrderPaymentPurpose):
        return ServiceResult.success(None)

    error = intent.get("last_payment_error") or {}
    order = EscrowService.handle_payment_failed(
        payment_intent_id=intent["id"],
        reason=error.get("message", "Payment failed"),
        code=error.get("decline_code") or error.get("code") or "",
    )
    return ServiceResult.success(order)


@register_handler("payment_intent.canceled")
def handle_payment_intent_canceled(webhook_event: WebhookEvent) -> ServiceResult:
    intent = webhook_event.data_object
    purpose = parse_purpose(intent.get("metadata"))
    if not isinstance(purpose, OrderPaymentPurpose):
        return ServiceResult.success(None)
    return ServiceResult.success(EscrowService.handle_authorization_canceled(intent["id"]))


# =============================================================================
# Charge Handlers
# =============================================================================


@register_handler("charge.refunded")
def handle_charge_refunded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Confirm a refund on the order.

    Refunds are initiated by cancellation, which already reversed the
    seller's revenue; this only records the provider's confirmation.
    """
    charge = webhook_event.data_object
    payment_intent_id = charge.get("payment_intent")
    if not payment_intent_id:
        return ServiceResult.success(None)

    order = EscrowService.handle_charge_refunded(
        payment_intent_id=payment_intent_id,
        amount_refunded_cents=charge.get("amount_refunded", 0),
    )
    if order is not None:
        logger.info(
            "Charge refund confirmed",
            extra=_log_context(
                webhook_event,
                order_id=str(order.id),
                amount=str(from_minor_units(charge.get("amount_refunded", 0), order.currency)),
            ),
        )
    return ServiceResult.success(order)


# =============================================================================
# Payout & Account Handlers
# =============================================================================


@register_handler("payout.paid")
def handle_payout_paid(webhook_event: WebhookEvent) -> ServiceResult:
    payout_data = webhook_event.data_object
    payout_id = (payout_data.get("metadata") or {}).get("payout_id")
    payout = PayoutService.settle_paid(payout_id=payout_id, stripe_payout_id=payout_data.get("id"))
    if payout is None:
        logger.warning(
            "Payout not found for payout.paid",
            extra=_log_context(webhook_event, stripe_payout_id=payout_data.get("id")),
        )
    return ServiceResult.success(payout)


@register_handler("payout.failed")
def handle_payout_failed(webhook_event: WebhookEvent) -> ServiceResult:
    payout_data = webhook_event.data_object
    payout_id = (payout_data.get("metadata") or {}).get("payout_id")
    payout = PayoutService.settle_failed(
        payout_id=payout_id,
        stripe_payout_id=payout_data.get("id"),
        reason=payout_data.get("failure_message") or payout_data.get("failure_code") or "Payout failed",
    )
    if payout is None:
        logger.warning(
            "Payout not found for payout.failed",
            extra=_log_context(webhook_event, stripe_payout_id=payout_data.get("id")),
        )
    return ServiceResult.success(payout)


@register_handler("account.updated")
def handle_account_updated(webhook_event: WebhookEvent) -> ServiceResult:
    account = webhook_event.data_object
    if not account.get("id"):
        return ServiceResult.failure(
            "account.updated without an account id",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )
    return ServiceResult.success(PayoutService.sync_connected_account(account))


__all__ = [
    "WEBHOOK_HANDLERS",
    "dispatch_webhook",
    "register_handler",
]
