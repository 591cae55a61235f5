"""
Fan-out of payment events to in-app notifications and e-mail.

Every function here schedules its work with transaction.on_commit, so a
rolled-back transition notifies nobody, and swallows (and logs) any
error, so a notification problem never affects a money movement.
Idempotency keys make replays notify once.

Usage:
    from payments.services import notifier

    notifier.milestone_captured(order, stage, gross, net)
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import transaction

from notifications.models import NotificationCategory
from notifications.services import NotificationService

if TYPE_CHECKING:
    from orders.models import Order
    from payments.models import ConnectedAccount, Payout, PromotionPurchase, TimelineExtension

logger = logging.getLogger(__name__)


def _notify(recipient, title: str, body: str, category: str, link: str, data: dict, key: str) -> None:
    def send() -> None:
        try:
            NotificationService.create_notification(
                recipient=recipient,
                title=title,
                body=body,
                category=category,
                link=link,
                data=data,
                idempotency_key=key,
            )
        except Exception:
            logger.exception(
                "Failed to send notification",
                extra={"idempotency_key": key, "recipient_id": recipient.pk},
            )

    transaction.on_commit(send)


def _order_link(order: Order) -> str:
    return f"/orders/{order.id}"


# =============================================================================
# Orders
# =============================================================================


def milestone_captured(order: Order, stage: str, gross: Decimal, net: Decimal) -> None:
    data = {"order_id": str(order.id), "stage": stage, "amount": str(gross)}
    _notify(
        order.buyer,
        "Payment milestone captured",
        f"{gross} {order.currency} was captured for the '{stage}' milestone of your order.",
        NotificationCategory.PAYMENT,
        _order_link(order),
        data,
        f"milestone:{order.id}:{stage}:buyer",
    )
    _notify(
        order.seller,
        "Escrow funded",
        f"{net} {order.currency} was added to your pending revenue.",
        NotificationCategory.PAYMENT,
        _order_link(order),
        {**data, "net_amount": str(net)},
        f"milestone:{order.id}:{stage}:seller",
    )


def capture_failed(order: Order, stage: str, reason: str) -> None:
    _notify(
        order.buyer,
        "Payment capture failed",
        f"We could not capture the '{stage}' milestone: {reason}",
        NotificationCategory.PAYMENT,
        _order_link(order),
        {"order_id": str(order.id), "stage": stage},
        f"capture_failed:{order.id}:{stage}:{order.version}",
    )


def funds_released(order: Order, amount: Decimal) -> None:
    _notify(
        order.seller,
        "Funds released",
        f"{amount} {order.currency} from your completed order is now available.",
        NotificationCategory.PAYMENT,
        _order_link(order),
        {"order_id": str(order.id), "amount": str(amount)},
        f"released:{order.id}",
    )
    _notify(
        order.buyer,
        "Order completed",
        "Thank you! Your order is complete.",
        NotificationCategory.ORDER,
        _order_link(order),
        {"order_id": str(order.id)},
        f"completed:{order.id}",
    )


def order_cancelled(order: Order, refunded: Decimal) -> None:
    body = (
        f"{refunded} {order.currency} was refunded to your card."
        if refunded > 0
        else "Your card authorization was released."
    )
    _notify(
        order.buyer,
        "Order cancelled",
        body,
        NotificationCategory.ORDER,
        _order_link(order),
        {"order_id": str(order.id), "refunded": str(refunded)},
        f"cancelled:{order.id}:buyer",
    )
    _notify(
        order.seller,
        "Order cancelled",
        "The buyer cancelled the order after the delivery deadline passed.",
        NotificationCategory.ORDER,
        _order_link(order),
        {"order_id": str(order.id)},
        f"cancelled:{order.id}:seller",
    )


def order_status_changed(order: Order, trigger: str, recipient) -> None:
    _notify(
        recipient,
        "Order updated",
        f"Order status is now '{order.status}'.",
        NotificationCategory.ORDER,
        _order_link(order),
        {"order_id": str(order.id), "trigger": trigger, "status": order.status},
        f"status:{order.id}:{trigger}:{order.version}",
    )


def payment_failed(order: Order, reason: str) -> None:
    _notify(
        order.buyer,
        "Payment failed",
        reason or "Your payment could not be processed.",
        NotificationCategory.PAYMENT,
        _order_link(order),
        {"order_id": str(order.id)},
        f"payment_failed:{order.id}:{order.version}",
    )


def deadline_extended(order: Order, days: int) -> None:
    for party in (order.buyer, order.seller):
        _notify(
            party,
            "Delivery deadline extended",
            f"The delivery date was extended by {days} days to {order.delivery_date:%Y-%m-%d %H:%M}.",
            NotificationCategory.ORDER,
            _order_link(order),
            {"order_id": str(order.id), "days": days},
            f"deadline:{order.id}:{order.delivery_date.isoformat()}:{party.pk}",
        )


def timeline_extended(extension: TimelineExtension) -> None:
    order = extension.order
    _notify(
        order.seller,
        "Buyer extended the deadline",
        f"The buyer paid for {extension.extension_days} more days.",
        NotificationCategory.ORDER,
        _order_link(order),
        {"order_id": str(order.id), "extension_id": str(extension.id)},
        f"extension:{extension.id}",
    )


# =============================================================================
# Promotions, Payouts, Accounts
# =============================================================================


def promotion_activated(purchase: PromotionPurchase) -> None:
    _notify(
        purchase.user,
        "Promotion active",
        f"Your {purchase.plan_name} runs until {purchase.expires_at:%Y-%m-%d}.",
        NotificationCategory.PROMOTION,
        "/promotions",
        {"promotion_id": str(purchase.id)},
        f"promotion:{purchase.id}",
    )


def payout_paid(payout: Payout) -> None:
    _notify(
        payout.seller,
        "Withdrawal paid",
        f"{payout.amount} {payout.currency} is on its way to your bank.",
        NotificationCategory.PAYOUT,
        "/revenue",
        {"payout_id": str(payout.id)},
        f"payout_paid:{payout.id}",
    )


def payout_failed(payout: Payout) -> None:
    _notify(
        payout.seller,
        "Withdrawal failed",
        f"{payout.amount} {payout.currency} was returned to your available balance.",
        NotificationCategory.PAYOUT,
        "/revenue",
        {"payout_id": str(payout.id), "reason": payout.failure_reason},
        f"payout_failed:{payout.id}",
    )


def account_verified(account: ConnectedAccount) -> None:
    _notify(
        account.user,
        "Payout account verified",
        "You can now withdraw your available revenue.",
        NotificationCategory.ACCOUNT,
        "/revenue",
        {"stripe_account_id": account.stripe_account_id},
        f"account_verified:{account.stripe_account_id}",
    )
