"""
Typed payment-purpose metadata.

Every payment intent this service creates says what it pays for. The
purpose is written to the intent's metadata at checkout and parsed back
when webhooks arrive, so handlers branch on a closed set of types instead
of comparing metadata strings.

Purposes:
    OrderPaymentPurpose: Escrowed order total (manual capture, 4 tranches)
    PromotionPurpose: Gig promotion plan (automatic capture)
    TimelineExtensionPurpose: Paid delivery deadline extension (automatic capture)

Usage:
    from payments.purposes import OrderPaymentPurpose, parse_purpose

    metadata = OrderPaymentPurpose(order_id=..., buyer_id=..., seller_id=...).to_metadata()

    purpose = parse_purpose(intent["metadata"])
    if isinstance(purpose, OrderPaymentPurpose):
        ...
    elif purpose is None:
        ...  # not ours
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import ClassVar, Union

from core.exceptions import ValidationError
from payments.state_machines.states import PaymentPurposeType

PURPOSE_KEY = "purpose"

MANUAL_CAPTURE = "manual"
AUTOMATIC_CAPTURE = "automatic"


@dataclass(frozen=True)
class OrderPaymentPurpose:
    order_id: str
    buyer_id: str
    seller_id: str

    kind: ClassVar[str] = PaymentPurposeType.ORDER_PAYMENT
    capture_method: ClassVar[str] = MANUAL_CAPTURE

    def to_metadata(self) -> dict[str, str]:
        return {
            PURPOSE_KEY: self.kind,
            "order_id": str(self.order_id),
            "buyer_id": str(self.buyer_id),
            "seller_id": str(self.seller_id),
        }

    @classmethod
    def from_metadata(cls, metadata: dict) -> OrderPaymentPurpose:
        return cls(
            order_id=_require(metadata, "order_id"),
            buyer_id=_require(metadata, "buyer_id"),
            seller_id=_require(metadata, "seller_id"),
        )


@dataclass(frozen=True)
class PromotionPurpose:
    user_id: str
    plan_key: str
    gig_id: str = ""
    promotion_scope: str = "gig"

    kind: ClassVar[str] = PaymentPurposeType.PROMOTION
    capture_method: ClassVar[str] = AUTOMATIC_CAPTURE

    def to_metadata(self) -> dict[str, str]:
        return {
            PURPOSE_KEY: self.kind,
            "user_id": str(self.user_id),
            "plan_key": self.plan_key,
            "gig_id": self.gig_id,
            "promotion_scope": self.promotion_scope,
        }

    @classmethod
    def from_metadata(cls, metadata: dict) -> PromotionPurpose:
        return cls(
            user_id=_require(metadata, "user_id"),
            plan_key=_require(metadata, "plan_key"),
            gig_id=metadata.get("gig_id", ""),
            promotion_scope=metadata.get("promotion_scope") or "gig",
        )


@dataclass(frozen=True)
class TimelineExtensionPurpose:
    order_id: str
    user_id: str
    extension_days: int
    previous_deadline: datetime
    new_deadline: datetime
    seller_revenue_amount: Decimal

    kind: ClassVar[str] = PaymentPurposeType.TIMELINE_EXTENSION
    capture_method: ClassVar[str] = AUTOMATIC_CAPTURE

    def to_metadata(self) -> dict[str, str]:
        return {
            PURPOSE_KEY: self.kind,
            "order_id": str(self.order_id),
            "user_id": str(self.user_id),
            "extension_days": str(self.extension_days),
            "previous_deadline": self.previous_deadline.isoformat(),
            "new_deadline": self.new_deadline.isoformat(),
            "seller_revenue_amount": str(self.seller_revenue_amount),
        }

    @classmethod
    def from_metadata(cls, metadata: dict) -> TimelineExtensionPurpose:
        try:
            return cls(
                order_id=_require(metadata, "order_id"),
                user_id=_require(metadata, "user_id"),
                extension_days=int(_require(metadata, "extension_days")),
                previous_deadline=datetime.fromisoformat(_require(metadata, "previous_deadline")),
                new_deadline=datetime.fromisoformat(_require(metadata, "new_deadline")),
                seller_revenue_amount=Decimal(_require(metadata, "seller_revenue_amount")),
            )
        except (ValueError, InvalidOperation) as e:
            raise ValidationError(
                "Malformed timeline extension metadata",
                error_code="INVALID_PAYMENT_METADATA",
                details={"error": str(e)},
            )


PaymentPurpose = Union[OrderPaymentPurpose, PromotionPurpose, TimelineExtensionPurpose]

_PURPOSES: dict[str, type] = {
    PaymentPurposeType.ORDER_PAYMENT: OrderPaymentPurpose,
    PaymentPurposeType.PROMOTION: PromotionPurpose,
    PaymentPurposeType.TIMELINE_EXTENSION: TimelineExtensionPurpose,
}


def parse_purpose(metadata: dict | None) -> PaymentPurpose | None:
    """
    Parse intent metadata into its typed purpose.

    Intents created elsewhere on the Stripe account carry no purpose
    and are returned as None.

    Raises:
        ValidationError: Unknown purpose or missing required keys
    """
    metadata = dict(metadata or {})
    kind = metadata.get(PURPOSE_KEY)

    if not kind:
        return None

    purpose_class = _PURPOSES.get(kind)
    if purpose_class is None:
        raise ValidationError(
            f"Unknown payment purpose '{kind}'",
            error_code="INVALID_PAYMENT_METADATA",
            details={PURPOSE_KEY: kind},
        )
    return purpose_class.from_metadata(metadata)


def _require(metadata: dict, key: str) -> str:
    value = metadata.get(key)
    if value in (None, ""):
        raise ValidationError(
            f"Payment metadata is missing '{key}'",
            error_code="INVALID_PAYMENT_METADATA",
            details={"missing": key},
        )
    return value
