"""
ChargeAttempt and Refund models.

A ChargeAttempt is one off-session PaymentIntent submission for a job.
It is created in the same transaction as the compare-and-set that moves
the job to CHARGE_IN_FLIGHT, before Stripe is called, so its id can be
carried in the PaymentIntent metadata and in the idempotency key.

Refunds annotate a succeeded attempt. A refund that brings the refunded
total up to the charged amount moves the job to REFUNDED.
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from billing.state_machines import ChargeAttemptStatus, RefundStatus


class ChargeAttempt(UUIDPrimaryKeyMixin, BaseModel):
    """
    One submission of an off-session charge for a job.

    Constraints:
        - At most one SUCCEEDED attempt per job
        - At most one IN_FLIGHT attempt per job

    Fields:
        job: The billed job
        payment_intent_id: Stripe PaymentIntent ID, set once Stripe answers
        idempotency_key: Key used for every (re-)submission of this attempt
        payment_method_id: Payment method submitted with the attempt
        amount_cents/currency: Amount submitted
        status: in_flight, succeeded or failed
        trigger: What started the attempt (affidavit_signed, manual, ...)
        is_manual: Manual attempts do not count against the automatic cap
        failure_code/failure_message: Decline details for failed attempts
        amount_refunded_cents: Running total of refunds against this attempt
        resolved_at: When the attempt reached a terminal status
    """

    job = models.ForeignKey(
        "billing.BillingJob",
        on_delete=models.PROTECT,
        related_name="charge_attempts",
    )

    payment_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe PaymentIntent ID (pi_xxx)",
    )

    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe idempotency key reused on re-submission",
    )

    payment_method_id = models.CharField(
        max_length=255,
        help_text="Payment method charged; re-submissions must reuse it",
    )

    amount_cents = models.PositiveIntegerField()

    currency = models.CharField(max_length=3, default="usd")

    status = models.CharField(
        max_length=20,
        choices=ChargeAttemptStatus.choices,
        default=ChargeAttemptStatus.IN_FLIGHT,
        db_index=True,
    )

    trigger = models.CharField(
        max_length=50,
        help_text="Source that initiated the attempt (affidavit_signed, manual, ...)",
    )

    is_manual = models.BooleanField(default=False)

    failure_code = models.CharField(max_length=100, null=True, blank=True)

    failure_message = models.TextField(null=True, blank=True)

    amount_refunded_cents = models.PositiveIntegerField(default=0)

    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Charge Attempt"
        verbose_name_plural = "Charge Attempts"
        indexes = [
            models.Index(
                fields=["status", "created_at"],
                name="billing_cha_status_3b9e71_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["job"],
                condition=Q(status=ChargeAttemptStatus.SUCCEEDED),
                name="charge_attempt_one_succeeded_per_job",
            ),
            models.UniqueConstraint(
                fields=["job"],
                condition=Q(status=ChargeAttemptStatus.IN_FLIGHT),
                name="charge_attempt_one_in_flight_per_job",
            ),
            models.CheckConstraint(
                condition=Q(amount_cents__gt=0),
                name="charge_attempt_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"ChargeAttempt({self.id}, {self.status}, {self.amount_cents})"

    @property
    def is_terminal(self) -> bool:
        return self.status != ChargeAttemptStatus.IN_FLIGHT

    @property
    def refundable_cents(self) -> int:
        return self.amount_cents - self.amount_refunded_cents

    def mark_succeeded(self) -> None:
        """
        Mark attempt as succeeded.

        Note: Does not save - caller must save after calling.
        """
        self.status = ChargeAttemptStatus.SUCCEEDED
        self.failure_code = None
        self.failure_message = None
        self.resolved_at = timezone.now()

    def mark_failed(self, code: str | None, message: str | None) -> None:
        """
        Mark attempt as failed with the decline details.

        Note: Does not save - caller must save after calling.
        """
        self.status = ChargeAttemptStatus.FAILED
        self.failure_code = code
        self.failure_message = message
        self.resolved_at = timezone.now()


class Refund(UUIDPrimaryKeyMixin, BaseModel):
    """
    A refund issued against a succeeded charge attempt.

    Refunds issued in the Stripe dashboard are recorded from the
    charge.refunded webhook with source="dashboard".
    """

    charge_attempt = models.ForeignKey(
        ChargeAttempt,
        on_delete=models.PROTECT,
        related_name="refunds",
    )

    stripe_refund_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Refund ID (re_xxx)",
    )

    amount_cents = models.PositiveIntegerField()

    reason = models.CharField(max_length=100, blank=True, default="")

    status = models.CharField(
        max_length=20,
        choices=RefundStatus.choices,
        default=RefundStatus.PENDING,
    )

    is_full = models.BooleanField(
        default=False,
        help_text="Whether this refund completed the refunded total",
    )

    source = models.CharField(
        max_length=20,
        default="api",
        help_text="api for refunds issued here, dashboard for webhook-reconciled ones",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund"
        verbose_name_plural = "Refunds"

    def __str__(self) -> str:
        return f"Refund({self.stripe_refund_id}, {self.amount_cents}, {self.status})"
