"""
Billing admin configuration.

Billing state, attempts and webhook events are read-only here: they
change only through BillingTrigger and the webhook reconciler. Drift
records can be closed by an operator once the upstream invoice has been
fixed by hand.
"""

from django.contrib import admin

from billing.models import (
    BillingCustomer,
    BillingJob,
    ChargeAttempt,
    CrossSystemDrift,
    Refund,
    WebhookEvent,
)
from billing.state_machines import DriftResolution


@admin.register(BillingCustomer)
class BillingCustomerAdmin(admin.ModelAdmin):
    list_display = ["email", "display_name", "stripe_customer_id", "created_at"]
    search_fields = ["email", "display_name", "stripe_customer_id"]
    readonly_fields = ["id", "stripe_customer_id", "created_at", "updated_at"]
    ordering = ["-created_at"]


class ChargeAttemptInline(admin.TabularInline):
    model = ChargeAttempt
    extra = 0
    can_delete = False
    fields = [
        "id",
        "status",
        "amount_cents",
        "amount_refunded_cents",
        "payment_intent_id",
        "trigger",
        "failure_code",
        "created_at",
    ]
    readonly_fields = fields


@admin.register(BillingJob)
class BillingJobAdmin(admin.ModelAdmin):
    """
    Admin configuration for BillingJob.

    billing_state is a protected FSM field and is shown read-only.
    """

    list_display = [
        "external_job_id",
        "customer",
        "billing_state",
        "amount_cents",
        "affidavit_signed",
        "last_unmet_condition",
        "invoice_marked_paid_at",
        "updated_at",
    ]
    list_filter = ["billing_state", "affidavit_signed", "last_unmet_condition"]
    search_fields = ["id", "external_job_id", "external_invoice_id", "customer__email"]
    readonly_fields = [
        "id",
        "billing_state",
        "version",
        "last_unmet_condition",
        "last_evaluated_at",
        "charged_at",
        "charge_failed_at",
        "refunded_at",
        "invoice_marked_paid_at",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["customer"]
    inlines = [ChargeAttemptInline]
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "external_job_id", "customer", "payment_method_id")}),
        (
            "Billing",
            {
                "fields": (
                    "amount_cents",
                    "currency",
                    "affidavit_signed",
                    "due_for_billing_at",
                    "billing_state",
                    "last_unmet_condition",
                    "last_evaluated_at",
                ),
            },
        ),
        (
            "Invoice",
            {"fields": ("external_invoice_id", "invoice_marked_paid_at")},
        ),
        (
            "Timestamps",
            {
                "fields": (
                    "charged_at",
                    "charge_failed_at",
                    "refunded_at",
                    "version",
                    "created_at",
                    "updated_at",
                ),
                "classes": ("collapse",),
            },
        ),
    )


class RefundInline(admin.TabularInline):
    model = Refund
    extra = 0
    can_delete = False
    fields = ["stripe_refund_id", "amount_cents", "status", "is_full", "source", "created_at"]
    readonly_fields = fields


@admin.register(ChargeAttempt)
class ChargeAttemptAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "job",
        "status",
        "amount_cents",
        "amount_refunded_cents",
        "payment_intent_id",
        "is_manual",
        "created_at",
    ]
    list_filter = ["status", "is_manual", "trigger"]
    search_fields = ["id", "payment_intent_id", "idempotency_key", "job__external_job_id"]
    readonly_fields = [field.name for field in ChargeAttempt._meta.fields]
    inlines = [RefundInline]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request):
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Webhook events are immutable once received.
    """

    list_display = [
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "stripe_event_id", "event_type"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "stripe_event_id",
        "event_type",
        "payload",
        "processed_at",
        "error_message",
        "retry_count",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]


@admin.register(CrossSystemDrift)
class CrossSystemDriftAdmin(admin.ModelAdmin):
    list_display = [
        "job",
        "kind",
        "external_invoice_id",
        "attempts",
        "resolution",
        "last_attempted_at",
        "created_at",
    ]
    list_filter = ["kind", "resolution"]
    search_fields = ["job__external_job_id", "external_invoice_id"]
    readonly_fields = [
        "id",
        "job",
        "kind",
        "external_invoice_id",
        "error_message",
        "attempts",
        "last_attempted_at",
        "resolution",
        "resolved_at",
        "created_at",
        "updated_at",
    ]
    actions = ["mark_manually_resolved"]
    ordering = ["-created_at"]

    @admin.action(description="Mark selected drift as manually resolved")
    def mark_manually_resolved(self, request, queryset):
        resolved = 0
        for drift in queryset.filter(resolution=DriftResolution.OPEN):
            drift.resolve(DriftResolution.MANUALLY_RESOLVED)
            drift.save(update_fields=["resolution", "resolved_at", "updated_at"])
            resolved += 1
        self.message_user(request, f"{resolved} drift record(s) resolved.")
