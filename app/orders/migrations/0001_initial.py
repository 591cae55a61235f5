import uuid
from decimal import Decimal

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(default=1, help_text="Row version for optimistic concurrency control"),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
                ),
                ("gig_id", models.CharField(db_index=True, max_length=64)),
                ("gig_title", models.CharField(blank=True, default="", max_length=255)),
                (
                    "price",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Gig price before platform fee and VAT",
                        max_digits=12,
                    ),
                ),
                (
                    "platform_fee_rate",
                    models.DecimalField(
                        decimal_places=4,
                        default=Decimal("0.0500"),
                        help_text="Platform fee as a fraction of the price",
                        max_digits=5,
                    ),
                ),
                (
                    "platform_fee",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Platform fee charged to the buyer",
                        max_digits=12,
                    ),
                ),
                (
                    "vat_rate",
                    models.DecimalField(
                        decimal_places=4,
                        default=Decimal("0.0000"),
                        help_text="VAT rate as a fraction",
                        max_digits=5,
                    ),
                ),
                (
                    "vat_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="VAT on price plus platform fee",
                        max_digits=12,
                    ),
                ),
                (
                    "total_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Amount authorized on the buyer's card",
                        max_digits=12,
                    ),
                ),
                (
                    "seller_net_payout",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="What the seller earns for the whole order",
                        max_digits=12,
                    ),
                ),
                ("currency", models.CharField(default="USD", max_length=3)),
                (
                    "payment_intent_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe PaymentIntent ID (pi_xxx)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                ("stripe_charge_id", models.CharField(blank=True, default="", max_length=255)),
                ("stripe_transfer_id", models.CharField(blank=True, default="", max_length=255)),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                            ("refunded", "Refunded"),
                            ("capture_failed", "Capture Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "payment_milestone_stage",
                    models.CharField(
                        choices=[
                            ("order_placed", "Order Placed"),
                            ("accepted", "Accepted"),
                            ("in_escrow", "In Escrow"),
                            ("delivered", "Delivered"),
                            ("reviewed", "Reviewed"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="order_placed",
                        max_length=20,
                    ),
                ),
                (
                    "escrow_status",
                    models.CharField(
                        choices=[
                            ("none", "None"),
                            ("partial", "Partial"),
                            ("full", "Full"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                        ],
                        default="none",
                        max_length=20,
                    ),
                ),
                ("last_payment_error", models.TextField(blank=True, default="")),
                (
                    "authorized_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Tranche captured when the order is accepted (10%)",
                        max_digits=12,
                    ),
                ),
                (
                    "escrow_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Tranche captured when work starts (50%)",
                        max_digits=12,
                    ),
                ),
                (
                    "delivery_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Tranche captured on delivery (20%)",
                        max_digits=12,
                    ),
                ),
                (
                    "review_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Tranche captured on approval, plus rounding remainder (20%)",
                        max_digits=12,
                    ),
                ),
                (
                    "pending_release_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Captured and held, not yet released",
                        max_digits=12,
                    ),
                ),
                (
                    "total_released_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Released to the seller",
                        max_digits=12,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("created", "Created"),
                            ("accepted", "Accepted"),
                            ("requirements_submitted", "Requirements Submitted"),
                            ("started", "Started"),
                            ("halfway_done", "Halfway Done"),
                            ("delivered", "Delivered"),
                            ("requested_revision", "Requested Revision"),
                            ("waiting_review", "Waiting Review"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                            ("disputed", "Disputed"),
                        ],
                        db_index=True,
                        default="created",
                        help_text="Current order status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("progress", models.PositiveSmallIntegerField(default=0)),
                ("status_history", models.JSONField(blank=True, default=list)),
                ("timeline", models.JSONField(blank=True, default=list)),
                ("delivery_date", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("auto_deadline_extended", models.BooleanField(default=False)),
                ("requirements", models.TextField(blank=True, default="")),
                ("delivery_description", models.TextField(blank=True, default="")),
                ("delivery_attachments", models.JSONField(blank=True, default=list)),
                ("revision_count", models.PositiveSmallIntegerField(default=0)),
                ("revision_reason", models.TextField(blank=True, default="")),
                ("cancellation_reason", models.TextField(blank=True, default="")),
                ("dispute_reason", models.TextField(blank=True, default="")),
                ("accepted_at", models.DateTimeField(blank=True, null=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("escrow_locked_at", models.DateTimeField(blank=True, null=True)),
                ("funds_released_at", models.DateTimeField(blank=True, null=True)),
                ("is_completed", models.BooleanField(default=False)),
                (
                    "buyer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders_placed",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "seller",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders_received",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["buyer", "status"], name="orders_orde_buyer_i_3b1f0a_idx"),
                    models.Index(fields=["seller", "status"], name="orders_orde_seller__8c2d4e_idx"),
                    models.Index(fields=["status", "delivery_date"], name="orders_orde_status_5e7a91_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("price__gt", 0)), name="order_price_positive"),
                    models.CheckConstraint(
                        condition=models.Q(("total_amount__gte", models.F("price"))),
                        name="order_total_covers_price",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("pending_release_amount__gte", 0), ("total_released_amount__gte", 0)),
                        name="order_escrow_amounts_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            (
                                "total_released_amount__lte",
                                models.F("total_amount") - models.F("pending_release_amount"),
                            )
                        ),
                        name="order_escrow_within_total",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("progress__lte", 100)),
                        name="order_progress_at_most_100",
                    ),
                ],
            },
        ),
    ]
