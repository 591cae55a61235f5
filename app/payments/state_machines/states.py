"""
State enums for orders and payment models.

These are Django TextChoices for database storage and admin integration.
The Order status column is a django-fsm FSMField; its allowed moves are
declared once in payments.state_machines.escrow.

State Machines Overview:

Order status:
    created -> accepted -> requirements_submitted -> started
        -> halfway_done (optional) -> delivered
        -> requested_revision -> delivered (revision loop)
        -> waiting_review -> completed
    created/accepted/requirements_submitted/started/halfway_done -> cancelled
    any non-terminal -> disputed

Payment milestone stage (how far the escrow has advanced):
    order_placed -> accepted -> in_escrow -> delivered -> reviewed -> completed
    any pre-delivery stage -> cancelled

Payout states:
    pending -> in_transit -> paid
    pending/in_transit -> failed
"""

from django.db import models


class OrderStatus(models.TextChoices):
    """
    Workflow status of an order.

    Terminal states: COMPLETED, CANCELLED, DISPUTED
    """

    CREATED = "created", "Created"
    ACCEPTED = "accepted", "Accepted"
    REQUIREMENTS_SUBMITTED = "requirements_submitted", "Requirements Submitted"
    STARTED = "started", "Started"
    HALFWAY_DONE = "halfway_done", "Halfway Done"
    DELIVERED = "delivered", "Delivered"
    REQUESTED_REVISION = "requested_revision", "Requested Revision"
    WAITING_REVIEW = "waiting_review", "Waiting Review"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    DISPUTED = "disputed", "Disputed"


TERMINAL_ORDER_STATUSES = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.DISPUTED}
)


class PaymentMilestoneStage(models.TextChoices):
    """Furthest escrow stage an order has reached."""

    ORDER_PLACED = "order_placed", "Order Placed"
    ACCEPTED = "accepted", "Accepted"
    IN_ESCROW = "in_escrow", "In Escrow"
    DELIVERED = "delivered", "Delivered"
    REVIEWED = "reviewed", "Reviewed"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class CaptureStage(models.TextChoices):
    """
    The four capture tranches of an order total.

    Declaration order is capture order.
    """

    ACCEPTED = "accepted", "Accepted"
    IN_ESCROW = "in_escrow", "In Escrow"
    DELIVERED = "delivered", "Delivered"
    REVIEWED = "reviewed", "Reviewed"


class OrderPaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"
    REFUNDED = "refunded", "Refunded"
    CAPTURE_FAILED = "capture_failed", "Capture Failed"


class EscrowStatus(models.TextChoices):
    """
    How much of the order total is held.

    NONE before the first capture, PARTIAL while tranches remain
    uncaptured, FULL once all four are captured, then RELEASED or REFUNDED.
    """

    NONE = "none", "None"
    PARTIAL = "partial", "Partial"
    FULL = "full", "Full"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"


class MilestonePaymentStatus(models.TextChoices):
    """
    Status of a PaymentMilestone row.

    Rows are never updated: a release or refund of a captured tranche is
    recorded as a new row with RELEASED or REFUNDED.
    """

    CAPTURED = "captured", "Captured"
    FAILED = "failed", "Failed"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"


class ActorRole(models.TextChoices):
    BUYER = "buyer", "Buyer"
    SELLER = "seller", "Seller"
    SYSTEM = "system", "System"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for webhook events.

    State Flow:
        PENDING -> PROCESSING -> PROCESSED
        PENDING -> PROCESSING -> FAILED -> PROCESSING (retry)
        FAILED -> DEAD_LETTER (retries exhausted, needs an operator)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
    DEAD_LETTER = "dead_letter", "Dead Letter"


class PayoutState(models.TextChoices):
    """
    States for a seller withdrawal.

    PENDING: funds moved to withdrawn, provider payout not created yet
    IN_TRANSIT: provider accepted the payout
    PAID / FAILED: reported by payout.paid / payout.failed webhooks
    """

    PENDING = "pending", "Pending"
    IN_TRANSIT = "in_transit", "In Transit"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"


class OnboardingStatus(models.TextChoices):
    """Stripe Connect onboarding status for sellers."""

    NOT_STARTED = "not_started", "Not Started"
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETE = "complete", "Complete"
    RESTRICTED = "restricted", "Restricted"


class PromotionStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    EXPIRED = "expired", "Expired"


class TimelineExtensionStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    REFUNDED = "refunded", "Refunded"


class PaymentPurposeType(models.TextChoices):
    """What a payment intent pays for; stored in intent metadata."""

    ORDER_PAYMENT = "order_payment", "Order Payment"
    PROMOTION = "promotion", "Promotion"
    TIMELINE_EXTENSION = "timeline_extension", "Timeline Extension"
