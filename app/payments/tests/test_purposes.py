"""
Tests for payment purposes carried in payment intent metadata.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core.exceptions import ValidationError
from payments.purposes import (
    OrderPaymentPurpose,
    PromotionPurpose,
    TimelineExtensionPurpose,
    parse_purpose,
)


class TestCaptureMethod:
    def test_orders_capture_manually(self):
        assert OrderPaymentPurpose.capture_method == "manual"

    def test_promotions_and_extensions_capture_automatically(self):
        assert PromotionPurpose.capture_method == "automatic"
        assert TimelineExtensionPurpose.capture_method == "automatic"


class TestParsePurpose:
    def test_order_payment(self):
        purpose = OrderPaymentPurpose(order_id="o-1", buyer_id="7", seller_id="8")

        parsed = parse_purpose(purpose.to_metadata())

        assert parsed == purpose

    def test_promotion_defaults_scope(self):
        parsed = parse_purpose({"purpose": "promotion", "user_id": "3", "plan_key": "basic"})

        assert parsed == PromotionPurpose(user_id="3", plan_key="basic", gig_id="", promotion_scope="gig")

    def test_timeline_extension_keeps_types(self):
        purpose = TimelineExtensionPurpose(
            order_id="o-1",
            user_id="7",
            extension_days=3,
            previous_deadline=datetime(2026, 3, 1, tzinfo=timezone.utc),
            new_deadline=datetime(2026, 3, 4, tzinfo=timezone.utc),
            seller_revenue_amount=Decimal("15.00"),
        )

        parsed = parse_purpose(purpose.to_metadata())

        assert parsed == purpose
        assert parsed.extension_days == 3
        assert parsed.seller_revenue_amount == Decimal("15.00")

    @pytest.mark.parametrize("metadata", [None, {}, {"order_id": "o-1"}])
    def test_no_purpose_means_foreign_intent(self, metadata):
        assert parse_purpose(metadata) is None

    def test_unknown_purpose_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_purpose({"purpose": "gift_card"})

        assert exc_info.value.error_code == "INVALID_PAYMENT_METADATA"

    def test_missing_key_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_purpose({"purpose": "order_payment", "order_id": "o-1", "buyer_id": "7"})

        assert exc_info.value.details == {"missing": "seller_id"}

    def test_malformed_extension_rejected(self):
        metadata = {
            "purpose": "timeline_extension",
            "order_id": "o-1",
            "user_id": "7",
            "extension_days": "three",
            "previous_deadline": "2026-03-01T00:00:00+00:00",
            "new_deadline": "2026-03-04T00:00:00+00:00",
            "seller_revenue_amount": "15.00",
        }

        with pytest.raises(ValidationError) as exc_info:
            parse_purpose(metadata)

        assert exc_info.value.error_code == "INVALID_PAYMENT_METADATA"
