"""
BillingJob model: the billing view of a case-management job.

The case-management system owns the job itself (attempts, documents,
affidavit). This model holds what billing needs: the amount, the stored
payment method reference, the affidavit flag mirrored from upstream, and
the billing state machine.

Usage:
    from billing.models import BillingJob
    from billing.state_machines import BillingState

    job = BillingJob.objects.create(
        external_job_id="sm-48213",
        customer=customer,
        amount_cents=8500,
    )

    # Entering CHARGE_IN_FLIGHT is a compare-and-set, never a transition call
    claimed = BillingJob.objects.claim_for_charge(job.pk, job.version)

    # Resolution uses the protected FSM transitions
    job.mark_charged()
    job.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from billing.state_machines import BillingState, UnmetCondition


class BillingJobQuerySet(models.QuerySet):
    def claim_for_charge(self, pk, expected_version: int) -> bool:
        """
        Atomically move a chargeable job to CHARGE_IN_FLIGHT.

        A single UPDATE guarded by version and state. Returns False when
        another caller changed the row first, in which case nothing happened.
        """
        updated = self.filter(
            pk=pk,
            version=expected_version,
            billing_state__in=BillingState.chargeable(),
        ).update(
            billing_state=BillingState.CHARGE_IN_FLIGHT,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        return updated == 1

    def awaiting_affidavit_billing(self):
        """Jobs that may become chargeable on the next evaluation."""
        return self.filter(
            affidavit_signed=True,
            billing_state__in=BillingState.chargeable(),
            amount_cents__gt=0,
        )


class BillingJob(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Billing record for one process-service job.

    State Flow:
        UNBILLED -> CHARGE_IN_FLIGHT -> CHARGED | CHARGE_FAILED
        CHARGE_FAILED -> CHARGE_IN_FLIGHT (retry)
        CHARGED -> REFUNDED

    Fields:
        external_job_id: Job ID in the case-management system
        customer: Paying customer (None until card setup starts)
        payment_method_id: Weak reference to a Stripe payment method
        amount_cents: Amount to bill, mirrored from the upstream invoice
        affidavit_signed: Mirrored upstream flag; the billing trigger
        billing_state: Current FSM state (protected)
        external_invoice_id: Upstream invoice to mark paid after charging
        last_unmet_condition: First unmet condition from the last evaluation
        invoice_marked_paid_at: Set once the upstream invoice is marked paid

    Note:
        billing_state is protected. Re-fetch the instance instead of
        calling refresh_from_db() after a compare-and-set.
    """

    # ==========================================================================
    # Identity & Ownership
    # ==========================================================================

    external_job_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Job ID in the case-management system",
    )

    customer = models.ForeignKey(
        "billing.BillingCustomer",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="jobs",
        help_text="Customer billed for this job",
    )

    payment_method_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe PaymentMethod ID (pm_xxx) saved by card setup",
    )

    # ==========================================================================
    # Amount & Trigger Inputs
    # ==========================================================================

    amount_cents = models.IntegerField(
        default=0,
        help_text="Amount to bill in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    affidavit_signed = models.BooleanField(
        default=False,
        help_text="Whether the affidavit of service has been signed upstream",
    )

    due_for_billing_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Earliest time automatic billing may charge this job",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    billing_state = FSMField(
        default=BillingState.UNBILLED,
        choices=BillingState.choices,
        db_index=True,
        protected=True,
        help_text="Current billing state (managed by FSM)",
    )

    last_unmet_condition = models.CharField(
        max_length=32,
        choices=UnmetCondition.choices,
        null=True,
        blank=True,
        help_text="First unmet condition from the last trigger evaluation",
    )

    last_evaluated_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the billing trigger last evaluated this job",
    )

    charged_at = models.DateTimeField(null=True, blank=True)
    charge_failed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Case-Management Invoice
    # ==========================================================================

    external_invoice_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Invoice ID in the case-management system",
    )

    invoice_marked_paid_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the upstream invoice was marked paid",
    )

    objects = BillingJobQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Billing Job"
        verbose_name_plural = "Billing Jobs"
        indexes = [
            models.Index(
                fields=["billing_state", "due_for_billing_at"],
                name="billing_bil_billing_5d1c0e_idx",
            ),
            models.Index(
                fields=["customer", "billing_state"],
                name="billing_bil_custome_8a7f42_idx",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"BillingJob({self.external_job_id}, {self.billing_state}, {amount_display})"

    @property
    def is_chargeable_state(self) -> bool:
        return self.billing_state in BillingState.chargeable()

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=billing_state,
        source=BillingState.CHARGE_IN_FLIGHT,
        target=BillingState.CHARGED,
    )
    def mark_charged(self):
        """Transition: CHARGE_IN_FLIGHT -> CHARGED"""
        self.charged_at = timezone.now()
        self.last_unmet_condition = None

    @transition(
        field=billing_state,
        source=BillingState.CHARGE_IN_FLIGHT,
        target=BillingState.CHARGE_FAILED,
    )
    def mark_charge_failed(self):
        """Transition: CHARGE_IN_FLIGHT -> CHARGE_FAILED"""
        self.charge_failed_at = timezone.now()

    @transition(
        field=billing_state,
        source=BillingState.CHARGED,
        target=BillingState.REFUNDED,
    )
    def mark_refunded(self):
        """Transition: CHARGED -> REFUNDED"""
        self.refunded_at = timezone.now()
