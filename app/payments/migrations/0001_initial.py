import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models


def _id_field():
    return models.UUIDField(
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
        primary_key=True,
        serialize=False,
    )


def _created_at():
    return models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")


def _updated_at():
    return models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")


def _version():
    return models.PositiveIntegerField(default=1, help_text="Row version for optimistic concurrency control")


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="ConnectedAccount",
            fields=[
                ("id", _id_field()),
                ("version", _version()),
                ("created_at", _created_at()),
                ("updated_at", _updated_at()),
                (
                    "stripe_account_id",
                    models.CharField(help_text="Stripe Account ID (acct_xxx)", max_length=255, unique=True),
                ),
                (
                    "onboarding_status",
                    models.CharField(
                        choices=[
                            ("not_started", "Not Started"),
                            ("in_progress", "In Progress"),
                            ("complete", "Complete"),
                            ("restricted", "Restricted"),
                        ],
                        db_index=True,
                        default="not_started",
                        max_length=20,
                    ),
                ),
                ("charges_enabled", models.BooleanField(default=False)),
                ("payouts_enabled", models.BooleanField(default=False)),
                ("details_submitted", models.BooleanField(default=False)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="connected_account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Connected Account",
                "verbose_name_plural": "Connected Accounts",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="PaymentMilestone",
            fields=[
                ("id", _id_field()),
                ("created_at", _created_at()),
                ("updated_at", _updated_at()),
                (
                    "stage",
                    models.CharField(
                        choices=[
                            ("accepted", "Accepted"),
                            ("in_escrow", "In Escrow"),
                            ("delivered", "Delivered"),
                            ("reviewed", "Reviewed"),
                        ],
                        max_length=20,
                    ),
                ),
                ("percentage_of_total", models.PositiveSmallIntegerField()),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "seller_net_amount",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12),
                ),
                ("currency", models.CharField(default="USD", max_length=3)),
                ("stripe_payment_intent_id", models.CharField(blank=True, default="", max_length=255)),
                ("stripe_charge_id", models.CharField(blank=True, default="", max_length=255)),
                ("stripe_refund_id", models.CharField(blank=True, default="", max_length=255)),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("captured", "Captured"),
                            ("failed", "Failed"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        max_length=20,
                    ),
                ),
                ("captured_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True, default="")),
                ("failure_code", models.CharField(blank=True, default="", max_length=100)),
                (
                    "triggered_by_role",
                    models.CharField(
                        choices=[("buyer", "Buyer"), ("seller", "Seller"), ("system", "System")],
                        default="system",
                        max_length=10,
                    ),
                ),
                ("triggered_by_action", models.CharField(blank=True, default="", max_length=50)),
                ("notes", models.TextField(blank=True, default="")),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_milestones",
                        to="orders.order",
                    ),
                ),
                (
                    "triggered_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Milestone",
                "verbose_name_plural": "Payment Milestones",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["order", "payment_status"], name="pay_milestone_order_status_idx"),
                    models.Index(fields=["stripe_payment_intent_id"], name="pay_milestone_intent_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("payment_status__in", ["captured", "released", "refunded"])),
                        fields=("order", "stage", "payment_status"),
                        name="milestone_unique_settled_stage",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount__gte", 0), ("seller_net_amount__gte", 0)),
                        name="milestone_amounts_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payout",
            fields=[
                ("id", _id_field()),
                ("version", _version()),
                ("created_at", _created_at()),
                ("updated_at", _updated_at()),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(default="USD", max_length=3)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("in_transit", "In Transit"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the payout (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "stripe_payout_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Payout ID (po_xxx)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True, default="")),
                (
                    "connected_account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payouts",
                        to="payments.connectedaccount",
                    ),
                ),
                (
                    "seller",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payouts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout",
                "verbose_name_plural": "Payouts",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["seller", "status"], name="pay_payout_seller_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", Decimal("0"))),
                        name="payout_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PromotionPurchase",
            fields=[
                ("id", _id_field()),
                ("created_at", _created_at()),
                ("updated_at", _updated_at()),
                ("gig_id", models.CharField(blank=True, db_index=True, default="", max_length=64)),
                ("promotion_scope", models.CharField(default="gig", max_length=20)),
                ("plan_key", models.CharField(max_length=20)),
                ("plan_name", models.CharField(max_length=100)),
                ("priority", models.PositiveSmallIntegerField(default=1)),
                ("duration_days", models.PositiveSmallIntegerField()),
                ("base_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("platform_fee", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("vat_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(default="USD", max_length=3)),
                ("stripe_payment_intent_id", models.CharField(max_length=255, unique=True)),
                (
                    "status",
                    models.CharField(
                        choices=[("active", "Active"), ("expired", "Expired")],
                        db_index=True,
                        default="active",
                        max_length=20,
                    ),
                ),
                ("starts_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("expires_at", models.DateTimeField(db_index=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="promotion_purchases",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Promotion Purchase",
                "verbose_name_plural": "Promotion Purchases",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="TimelineExtension",
            fields=[
                ("id", _id_field()),
                ("created_at", _created_at()),
                ("updated_at", _updated_at()),
                ("extension_days", models.PositiveSmallIntegerField()),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Total charged to the buyer, fee and VAT included",
                        max_digits=12,
                    ),
                ),
                (
                    "seller_revenue_amount",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12),
                ),
                ("currency", models.CharField(default="USD", max_length=3)),
                ("stripe_payment_intent_id", models.CharField(max_length=255, unique=True)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("completed", "Completed"), ("refunded", "Refunded")],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("previous_deadline", models.DateTimeField()),
                ("new_deadline", models.DateTimeField()),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="timeline_extensions",
                        to="orders.order",
                    ),
                ),
                (
                    "requested_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Timeline Extension",
                "verbose_name_plural": "Timeline Extensions",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("extension_days__gte", 1), ("extension_days__lte", 90)),
                        name="timeline_extension_days_range",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("id", _id_field()),
                ("created_at", _created_at()),
                ("updated_at", _updated_at()),
                (
                    "stripe_event_id",
                    models.CharField(help_text="Stripe Event ID (evt_xxx)", max_length=255, unique=True),
                ),
                ("event_type", models.CharField(db_index=True, max_length=100)),
                ("payload", models.JSONField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="pay_webhook_status_created_idx"),
                    models.Index(fields=["status", "retry_count"], name="pay_webhook_status_retry_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SellerRevenue",
            fields=[
                ("id", _id_field()),
                ("created_at", _created_at()),
                ("updated_at", _updated_at()),
                ("currency", models.CharField(default="USD", max_length=3)),
                (
                    "total",
                    models.DecimalField(
                        decimal_places=2, default=Decimal("0.00"), help_text="Earned and not reversed", max_digits=14
                    ),
                ),
                (
                    "pending",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Held in escrow until order completion",
                        max_digits=14,
                    ),
                ),
                (
                    "available",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Released and withdrawable",
                        max_digits=14,
                    ),
                ),
                (
                    "withdrawn",
                    models.DecimalField(
                        decimal_places=2, default=Decimal("0.00"), help_text="Requested for payout", max_digits=14
                    ),
                ),
                (
                    "seller",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="revenue",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Seller Revenue",
                "verbose_name_plural": "Seller Revenue",
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            ("total__gte", 0),
                            ("pending__gte", 0),
                            ("available__gte", 0),
                            ("withdrawn__gte", 0),
                        ),
                        name="seller_revenue_buckets_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("total", models.F("pending") + models.F("available") + models.F("withdrawn"))
                        ),
                        name="seller_revenue_conserved",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="RevenueEntry",
            fields=[
                ("id", _id_field()),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "movement_type",
                    models.CharField(
                        choices=[
                            ("milestone_capture", "Milestone Capture"),
                            ("extension_credit", "Extension Credit"),
                            ("escrow_release", "Escrow Release"),
                            ("refund_reversal", "Refund Reversal"),
                            ("withdrawal", "Withdrawal"),
                            ("withdrawal_reversal", "Withdrawal Reversal"),
                        ],
                        max_length=30,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("total_delta", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("pending_delta", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("available_delta", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("withdrawn_delta", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("reference_type", models.CharField(blank=True, default="", max_length=50)),
                ("reference_id", models.CharField(blank=True, default="", max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("created_by", models.CharField(blank=True, default="", max_length=100)),
                ("idempotency_key", models.CharField(max_length=255, unique=True)),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="revenue_entries",
                        to="orders.order",
                    ),
                ),
                (
                    "revenue",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="entries",
                        to="payments.sellerrevenue",
                    ),
                ),
            ],
            options={
                "verbose_name": "Revenue Entry",
                "verbose_name_plural": "Revenue Entries",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["revenue", "movement_type"], name="pay_entry_revenue_type_idx"),
                    models.Index(fields=["order", "movement_type"], name="pay_entry_order_type_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="revenue_entry_amount_positive",
                    ),
                ],
            },
        ),
    ]
