"""
DRF serializers for the billing app.

This module provides serializers for:
- Card setup requests and responses
- Stored payment methods
- Manual charge, refund and payment status
- Cross-system drift records

Related files:
    - services/: PaymentMethodVault, BillingTrigger
    - views.py: Billing API views
"""

from __future__ import annotations

from rest_framework import serializers

from billing.models import ChargeAttempt, CrossSystemDrift, Refund


# =============================================================================
# Card Setup
# =============================================================================


class BeginSetupSerializer(serializers.Serializer):
    """
    Request body for POST /setup/.

    job_id is optional; when given, the saved card is recorded on that job.
    """

    email = serializers.EmailField()
    name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    job_id = serializers.UUIDField(required=False, allow_null=True)


class SetupSessionSerializer(serializers.Serializer):
    setup_token = serializers.CharField()
    client_secret = serializers.CharField()
    customer_id = serializers.CharField()
    publishable_key = serializers.CharField()


class ConfirmSetupSerializer(serializers.Serializer):
    setup_token = serializers.CharField(max_length=255)


class PaymentMethodSerializer(serializers.Serializer):
    """Card payment method as stored at Stripe."""

    id = serializers.CharField()
    customer_id = serializers.CharField(allow_null=True)
    brand = serializers.CharField(allow_null=True)
    last4 = serializers.CharField(allow_null=True)
    exp_month = serializers.IntegerField(allow_null=True)
    exp_year = serializers.IntegerField(allow_null=True)
    created_at = serializers.DateTimeField(allow_null=True)


class GatewayConfigSerializer(serializers.Serializer):
    publishable_key = serializers.CharField()
    currency = serializers.CharField()


# =============================================================================
# Charges & Refunds
# =============================================================================


class TriggerDecisionSerializer(serializers.Serializer):
    job_id = serializers.CharField()
    outcome = serializers.CharField()
    unmet_condition = serializers.CharField(allow_null=True)
    charge_attempt_id = serializers.CharField(allow_null=True)
    payment_intent_id = serializers.CharField(allow_null=True)
    detail = serializers.CharField(allow_null=True)


class RefundRequestSerializer(serializers.Serializer):
    """
    Request body for POST /charges/<id>/refund/.

    Omit amount_cents for a full refund of the remaining amount.
    """

    amount_cents = serializers.IntegerField(required=False, min_value=1)
    reason = serializers.ChoiceField(
        choices=["duplicate", "fraudulent", "requested_by_customer"],
        default="requested_by_customer",
    )


class RefundSerializer(serializers.ModelSerializer):
    class Meta:
        model = Refund
        fields = [
            "id",
            "charge_attempt",
            "stripe_refund_id",
            "amount_cents",
            "reason",
            "status",
            "is_full",
            "source",
            "created_at",
        ]
        read_only_fields = fields


class ChargeAttemptSerializer(serializers.ModelSerializer):
    class Meta:
        model = ChargeAttempt
        fields = [
            "id",
            "status",
            "amount_cents",
            "amount_refunded_cents",
            "currency",
            "payment_intent_id",
            "trigger",
            "is_manual",
            "failure_code",
            "failure_message",
            "created_at",
            "resolved_at",
        ]
        read_only_fields = fields


class PaymentStatusSerializer(serializers.Serializer):
    job_id = serializers.CharField()
    external_job_id = serializers.CharField()
    billing_state = serializers.CharField()
    amount_cents = serializers.IntegerField()
    currency = serializers.CharField()
    is_paid = serializers.BooleanField()
    total_paid_cents = serializers.IntegerField()
    total_refunded_cents = serializers.IntegerField()
    last_unmet_condition = serializers.CharField(allow_null=True)
    last_evaluated_at = serializers.DateTimeField(allow_null=True)
    invoice_marked_paid_at = serializers.DateTimeField(allow_null=True)
    open_drift_count = serializers.IntegerField()
    attempts = serializers.ListField(child=serializers.DictField())


# =============================================================================
# Drift
# =============================================================================


class CrossSystemDriftSerializer(serializers.ModelSerializer):
    external_job_id = serializers.CharField(source="job.external_job_id", read_only=True)

    class Meta:
        model = CrossSystemDrift
        fields = [
            "id",
            "job",
            "external_job_id",
            "kind",
            "external_invoice_id",
            "error_message",
            "attempts",
            "last_attempted_at",
            "resolution",
            "resolved_at",
            "created_at",
        ]
        read_only_fields = fields
