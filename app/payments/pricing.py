"""
Order pricing: platform fee, VAT and the milestone split.

All arithmetic is Decimal, rounded to cents with ROUND_HALF_UP. Amounts
are stored and passed around in currency units; conversion to integer
minor units happens only at the Stripe boundary (to_minor_units).

Formulas:
    platform_fee      = base * fee_rate
    vat_amount        = (base + platform_fee) * vat_rate
    total_amount      = base + platform_fee + vat_amount
    seller_net_payout = base * (1 - fee_rate)

Milestone split:
    accepted 10%, in_escrow 50%, delivered 20%, reviewed 20%.
    The first three tranches are rounded; the review tranche takes the
    remainder so the four always sum to exactly the amount split. The
    same split applies to the gross total (capture amounts) and to the
    seller's net payout (revenue credited per capture).

Usage:
    from payments.pricing import calculate_price, split_milestones

    price = calculate_price(Decimal("100.00"), vat_rate=Decimal("0.20"))
    tranches = split_milestones(price.total_amount)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.conf import settings

from core.exceptions import ValidationError
from payments.state_machines.states import CaptureStage

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Share of the order total captured at each stage, in percent.
MILESTONE_PERCENTAGES: dict[str, int] = {
    CaptureStage.ACCEPTED: 10,
    CaptureStage.IN_ESCROW: 50,
    CaptureStage.DELIVERED: 20,
    CaptureStage.REVIEWED: 20,
}

# Minor units per major unit; currencies not listed use 100.
_ZERO_DECIMAL_CURRENCIES = frozenset({"jpy", "krw", "vnd", "clp", "isk", "ugx", "xaf", "xof"})


@dataclass(frozen=True)
class PriceBreakdown:
    """
    Priced order.

    Attributes:
        base_amount: Gig price before fee and VAT
        platform_fee_rate: Fee as a fraction (0.05 for 5%)
        platform_fee: base_amount * platform_fee_rate
        vat_rate: VAT as a fraction (0.20 for 20%)
        vat_amount: VAT on base plus fee
        total_amount: What the buyer is charged
        seller_net_payout: What the seller earns for the whole order
        currency: ISO currency code
    """

    base_amount: Decimal
    platform_fee_rate: Decimal
    platform_fee: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    total_amount: Decimal
    seller_net_payout: Decimal
    currency: str

    def to_dict(self) -> dict[str, str]:
        return {key: str(value) for key, value in asdict(self).items()}


def quantize(amount: Decimal) -> Decimal:
    """Round to cents, half-up."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value, field_name: str = "amount") -> Decimal:
    """
    Coerce a user-supplied number to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1") rather than its
    binary expansion.

    Raises:
        ValidationError: value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(
            f"{field_name} must be a number",
            error_code="INVALID_AMOUNT",
            details={field_name: str(value)},
        )


def default_platform_fee_rate() -> Decimal:
    """Platform fee rate from settings.PLATFORM_FEE_PERCENT (integer percent)."""
    return Decimal(settings.PLATFORM_FEE_PERCENT) / Decimal(100)


def normalize_vat_rate(vat_rate) -> Decimal:
    """
    Validate a VAT rate fraction.

    Rates outside [0, 1] or non-numeric rates are logged and treated as 0
    rather than blocking checkout.
    """
    if vat_rate is None:
        return ZERO
    try:
        rate = Decimal(str(vat_rate))
    except (InvalidOperation, TypeError, ValueError):
        rate = None

    if rate is None or rate.is_nan() or rate < 0 or rate > 1:
        logger.warning("Invalid VAT rate, using 0", extra={"vat_rate": str(vat_rate)})
        return ZERO
    return rate


def calculate_price(
    base_amount,
    vat_rate=None,
    platform_fee_rate: Decimal | None = None,
    currency: str | None = None,
) -> PriceBreakdown:
    """
    Price an order.

    Args:
        base_amount: Gig price (> 0)
        vat_rate: VAT fraction; invalid values fall back to 0
        platform_fee_rate: Fee fraction; defaults to PLATFORM_FEE_PERCENT
        currency: ISO code; defaults to DEFAULT_CURRENCY

    Raises:
        ValidationError: base_amount is not a positive number
    """
    base = to_decimal(base_amount, "base_amount")
    if not base.is_finite() or base <= 0:
        raise ValidationError(
            "Base amount must be greater than zero",
            error_code="INVALID_BASE_AMOUNT",
            details={"base_amount": str(base_amount)},
        )
    base = quantize(base)

    fee_rate = default_platform_fee_rate() if platform_fee_rate is None else Decimal(platform_fee_rate)
    if fee_rate < 0 or fee_rate >= 1:
        raise ValidationError(
            "Platform fee rate must be in [0, 1)",
            error_code="INVALID_FEE_RATE",
            details={"platform_fee_rate": str(fee_rate)},
        )
    rate = normalize_vat_rate(vat_rate)

    platform_fee = quantize(base * fee_rate)
    vat_amount = quantize((base + platform_fee) * rate)
    total = base + platform_fee + vat_amount
    seller_net = quantize(base * (Decimal(1) - fee_rate))

    return PriceBreakdown(
        base_amount=base,
        platform_fee_rate=fee_rate,
        platform_fee=platform_fee,
        vat_rate=rate,
        vat_amount=vat_amount,
        total_amount=total,
        seller_net_payout=seller_net,
        currency=(currency or settings.DEFAULT_CURRENCY).upper(),
    )


def split_milestones(amount: Decimal) -> dict[str, Decimal]:
    """
    Split an amount into the four tranches.

    The review tranche receives the remainder, so the values always sum
    to ``quantize(amount)``.

    Example:
        split_milestones(Decimal("99.99"))
        # {accepted: 10.00, in_escrow: 50.00, delivered: 20.00, reviewed: 19.99}
    """
    total = quantize(amount)
    shares: dict[str, Decimal] = {}
    allocated = ZERO
    for stage in (CaptureStage.ACCEPTED, CaptureStage.IN_ESCROW, CaptureStage.DELIVERED):
        share = quantize(total * MILESTONE_PERCENTAGES[stage] / Decimal(100))
        shares[stage] = share
        allocated += share
    shares[CaptureStage.REVIEWED] = total - allocated
    return shares


def to_minor_units(amount: Decimal, currency: str = "usd") -> int:
    """Convert currency units to the integer minor units Stripe expects."""
    if currency.lower() in _ZERO_DECIMAL_CURRENCIES:
        return int(quantize(amount).to_integral_value(rounding=ROUND_HALF_UP))
    return int((quantize(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str = "usd") -> Decimal:
    """Convert Stripe minor units back to currency units."""
    if currency.lower() in _ZERO_DECIMAL_CURRENCIES:
        return quantize(Decimal(amount))
    return quantize(Decimal(amount) / Decimal(100))
