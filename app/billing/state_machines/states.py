"""
State enums for billing models.

This module defines all state enums used by billing models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

BillingJob States:
    unbilled → charge_in_flight → charged (off-session charge succeeded)
    unbilled → charge_in_flight → charge_failed (declined or failed)
    charge_failed → charge_in_flight (retry)
    charged → refunded (refunded total reaches the charged amount)

ChargeAttempt Statuses:
    in_flight → succeeded
    in_flight → failed

WebhookEvent Statuses:
    pending → processing → processed
    pending → processing → failed → processing (retry)
"""

from django.db import models


class BillingState(models.TextChoices):
    """
    States for the BillingJob lifecycle.

    Terminal states: REFUNDED
    CHARGED is terminal for charging but may still move to REFUNDED.

    State Flow:
        UNBILLED → CHARGE_IN_FLIGHT → CHARGED
        UNBILLED → CHARGE_IN_FLIGHT → CHARGE_FAILED

    Recovery Flow:
        CHARGE_FAILED → CHARGE_IN_FLIGHT (retry)

    Refund Flow:
        CHARGED → REFUNDED
    """

    UNBILLED = "unbilled", "Unbilled"
    CHARGE_IN_FLIGHT = "charge_in_flight", "Charge In Flight"
    CHARGED = "charged", "Charged"
    CHARGE_FAILED = "charge_failed", "Charge Failed"
    REFUNDED = "refunded", "Refunded"

    @classmethod
    def chargeable(cls) -> tuple[str, ...]:
        """States from which a new charge attempt may start."""
        return (cls.UNBILLED, cls.CHARGE_FAILED)


class ChargeAttemptStatus(models.TextChoices):
    """
    Status of a single off-session charge attempt.

    A job receives a new attempt only after the previous one FAILED.
    At most one attempt per job may reach SUCCEEDED.
    """

    IN_FLIGHT = "in_flight", "In Flight"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"


class RefundStatus(models.TextChoices):
    """Status of a refund as reported by Stripe."""

    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    CANCELED = "canceled", "Canceled"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for Stripe webhook events.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED → PROCESSING (retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class DriftKind(models.TextChoices):
    """What failed to propagate to the case-management system."""

    INVOICE_MARK_PAID_FAILED = "invoice_mark_paid_failed", "Invoice Mark Paid Failed"
    REFUND_NOT_PROPAGATED = "refund_not_propagated", "Refund Not Propagated"


class DriftResolution(models.TextChoices):
    """
    Resolution status for a cross-system drift record.

    AUTO_HEALED is set by the retry_invoice_drift task,
    MANUALLY_RESOLVED by an operator in the admin.
    """

    OPEN = "open", "Open"
    AUTO_HEALED = "auto_healed", "Auto Healed"
    MANUALLY_RESOLVED = "manually_resolved", "Manually Resolved"


class UnmetCondition(models.TextChoices):
    """
    First unmet billing condition recorded on a job.

    Conditions are evaluated in declaration order, so a job missing
    both a payment method and a signed affidavit records
    NO_PAYMENT_METHOD.
    """

    NO_PAYMENT_METHOD = "NO_PAYMENT_METHOD", "No payment method"
    NON_POSITIVE_AMOUNT = "NON_POSITIVE_AMOUNT", "Non-positive amount"
    AFFIDAVIT_NOT_SIGNED = "AFFIDAVIT_NOT_SIGNED", "Affidavit not signed"
    INELIGIBLE_STATE = "INELIGIBLE_STATE", "Ineligible billing state"
    RETRY_LIMIT_REACHED = "RETRY_LIMIT_REACHED", "Automatic retry limit reached"
    NOT_YET_DUE = "NOT_YET_DUE", "Not yet due for billing"
