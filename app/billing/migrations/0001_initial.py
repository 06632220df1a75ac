import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="BillingCustomer",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
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
                    "email",
                    models.EmailField(
                        help_text="Lower-cased customer email (dedup key)",
                        max_length=254,
                        unique=True,
                    ),
                ),
                (
                    "display_name",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Customer name shown on Stripe receipts",
                        max_length=255,
                    ),
                ),
                (
                    "stripe_customer_id",
                    models.CharField(
                        help_text="Stripe Customer ID (cus_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Billing Customer",
                "verbose_name_plural": "Billing Customers",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="BillingJob",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
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
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Optimistic locking version, incremented on every save",
                    ),
                ),
                (
                    "external_job_id",
                    models.CharField(
                        help_text="Job ID in the case-management system",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "payment_method_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe PaymentMethod ID (pm_xxx) saved by card setup",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "amount_cents",
                    models.IntegerField(
                        default=0,
                        help_text="Amount to bill in smallest currency unit",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "affidavit_signed",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the affidavit of service has been signed upstream",
                    ),
                ),
                (
                    "due_for_billing_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Earliest time automatic billing may charge this job",
                        null=True,
                    ),
                ),
                (
                    "billing_state",
                    django_fsm.FSMField(
                        choices=[
                            ("unbilled", "Unbilled"),
                            ("charge_in_flight", "Charge In Flight"),
                            ("charged", "Charged"),
                            ("charge_failed", "Charge Failed"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="unbilled",
                        help_text="Current billing state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "last_unmet_condition",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("NO_PAYMENT_METHOD", "No payment method"),
                            ("NON_POSITIVE_AMOUNT", "Non-positive amount"),
                            ("AFFIDAVIT_NOT_SIGNED", "Affidavit not signed"),
                            ("INELIGIBLE_STATE", "Ineligible billing state"),
                            ("RETRY_LIMIT_REACHED", "Automatic retry limit reached"),
                            ("NOT_YET_DUE", "Not yet due for billing"),
                        ],
                        help_text="First unmet condition from the last trigger evaluation",
                        max_length=32,
                        null=True,
                    ),
                ),
                (
                    "last_evaluated_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the billing trigger last evaluated this job",
                        null=True,
                    ),
                ),
                ("charged_at", models.DateTimeField(blank=True, null=True)),
                ("charge_failed_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "external_invoice_id",
                    models.CharField(
                        blank=True,
                        help_text="Invoice ID in the case-management system",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "invoice_marked_paid_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the upstream invoice was marked paid",
                        null=True,
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        blank=True,
                        help_text="Customer billed for this job",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="jobs",
                        to="billing.billingcustomer",
                    ),
                ),
            ],
            options={
                "verbose_name": "Billing Job",
                "verbose_name_plural": "Billing Jobs",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["billing_state", "due_for_billing_at"],
                        name="billing_bil_billing_5d1c0e_idx",
                    ),
                    models.Index(
                        fields=["customer", "billing_state"],
                        name="billing_bil_custome_8a7f42_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ChargeAttempt",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
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
                    "payment_intent_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe PaymentIntent ID (pi_xxx)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        help_text="Stripe idempotency key reused on re-submission",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "payment_method_id",
                    models.CharField(
                        help_text="Payment method charged; re-submissions must reuse it",
                        max_length=255,
                    ),
                ),
                ("amount_cents", models.PositiveIntegerField()),
                ("currency", models.CharField(default="usd", max_length=3)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("in_flight", "In Flight"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="in_flight",
                        max_length=20,
                    ),
                ),
                (
                    "trigger",
                    models.CharField(
                        help_text="Source that initiated the attempt (affidavit_signed, manual, ...)",
                        max_length=50,
                    ),
                ),
                ("is_manual", models.BooleanField(default=False)),
                ("failure_code", models.CharField(blank=True, max_length=100, null=True)),
                ("failure_message", models.TextField(blank=True, null=True)),
                ("amount_refunded_cents", models.PositiveIntegerField(default=0)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="charge_attempts",
                        to="billing.billingjob",
                    ),
                ),
            ],
            options={
                "verbose_name": "Charge Attempt",
                "verbose_name_plural": "Charge Attempts",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="billing_cha_status_3b9e71_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "succeeded")),
                        fields=("job",),
                        name="charge_attempt_one_succeeded_per_job",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("status", "in_flight")),
                        fields=("job",),
                        name="charge_attempt_one_in_flight_per_job",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="charge_attempt_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Refund",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
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
                    "stripe_refund_id",
                    models.CharField(
                        help_text="Stripe Refund ID (re_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                ("amount_cents", models.PositiveIntegerField()),
                ("reason", models.CharField(blank=True, default="", max_length=100)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("canceled", "Canceled"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "is_full",
                    models.BooleanField(
                        default=False,
                        help_text="Whether this refund completed the refunded total",
                    ),
                ),
                (
                    "source",
                    models.CharField(
                        default="api",
                        help_text="api for refunds issued here, dashboard for webhook-reconciled ones",
                        max_length=20,
                    ),
                ),
                (
                    "charge_attempt",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="billing.chargeattempt",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund",
                "verbose_name_plural": "Refunds",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
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
                    "stripe_event_id",
                    models.CharField(
                        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe event type (e.g., 'payment_intent.succeeded')",
                        max_length=100,
                    ),
                ),
                ("payload", models.JSONField(help_text="Full webhook payload from Stripe (JSON)")),
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
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Number of processing attempts",
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "updated_at"],
                        name="billing_web_status_c41d2a_idx",
                    ),
                    models.Index(
                        fields=["event_type", "created_at"],
                        name="billing_web_event_t_7e0b93_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CrossSystemDrift",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
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
                    "kind",
                    models.CharField(
                        choices=[
                            ("invoice_mark_paid_failed", "Invoice Mark Paid Failed"),
                            ("refund_not_propagated", "Refund Not Propagated"),
                        ],
                        max_length=40,
                    ),
                ),
                (
                    "external_invoice_id",
                    models.CharField(blank=True, max_length=255, null=True),
                ),
                ("error_message", models.TextField(blank=True, default="")),
                ("attempts", models.PositiveIntegerField(default=1)),
                (
                    "last_attempted_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                (
                    "resolution",
                    models.CharField(
                        choices=[
                            ("open", "Open"),
                            ("auto_healed", "Auto Healed"),
                            ("manually_resolved", "Manually Resolved"),
                        ],
                        db_index=True,
                        default="open",
                        max_length=20,
                    ),
                ),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="drift_records",
                        to="billing.billingjob",
                    ),
                ),
            ],
            options={
                "verbose_name": "Cross-System Drift",
                "verbose_name_plural": "Cross-System Drift",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("resolution", "open")),
                        fields=("job", "kind"),
                        name="drift_one_open_per_job_and_kind",
                    ),
                ],
            },
        ),
    ]
