"""
Order and payment state enums plus the escrow transition table.

Enums live in states.py (TextChoices for storage and admin); the order
lifecycle itself is declared in escrow.py.
"""

from payments.state_machines.states import (
    TERMINAL_ORDER_STATUSES,
    ActorRole,
    CaptureStage,
    EscrowStatus,
    MilestonePaymentStatus,
    OnboardingStatus,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMilestoneStage,
    PaymentPurposeType,
    PayoutState,
    PromotionStatus,
    TimelineExtensionStatus,
    WebhookEventStatus,
)

__all__ = [
    "TERMINAL_ORDER_STATUSES",
    "ActorRole",
    "CaptureStage",
    "EscrowStatus",
    "MilestonePaymentStatus",
    "OnboardingStatus",
    "OrderPaymentStatus",
    "OrderStatus",
    "PaymentMilestoneStage",
    "PaymentPurposeType",
    "PayoutState",
    "PromotionStatus",
    "TimelineExtensionStatus",
    "WebhookEventStatus",
]
