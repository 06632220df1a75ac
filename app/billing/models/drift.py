"""
CrossSystemDrift model: failed propagation to the case-management system.

A drift row exists when Stripe says a job is paid (or refunded) but the
case-management invoice does not reflect it. Rows are queryable by
operators and re-driven by the retry_invoice_drift task.
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from billing.state_machines import DriftKind, DriftResolution


class CrossSystemDriftQuerySet(models.QuerySet):
    def open(self):
        return self.filter(resolution=DriftResolution.OPEN)


class CrossSystemDrift(UUIDPrimaryKeyMixin, BaseModel):
    """
    Record of one unresolved mismatch between Stripe and the upstream invoice.

    At most one OPEN row exists per (job, kind); repeated failures bump
    attempts on the same row.
    """

    job = models.ForeignKey(
        "billing.BillingJob",
        on_delete=models.PROTECT,
        related_name="drift_records",
    )

    kind = models.CharField(
        max_length=40,
        choices=DriftKind.choices,
    )

    external_invoice_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
    )

    error_message = models.TextField(blank=True, default="")

    attempts = models.PositiveIntegerField(default=1)

    last_attempted_at = models.DateTimeField(default=timezone.now)

    resolution = models.CharField(
        max_length=20,
        choices=DriftResolution.choices,
        default=DriftResolution.OPEN,
        db_index=True,
    )

    resolved_at = models.DateTimeField(null=True, blank=True)

    objects = CrossSystemDriftQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Cross-System Drift"
        verbose_name_plural = "Cross-System Drift"
        constraints = [
            models.UniqueConstraint(
                fields=["job", "kind"],
                condition=Q(resolution=DriftResolution.OPEN),
                name="drift_one_open_per_job_and_kind",
            ),
        ]

    def __str__(self) -> str:
        return f"CrossSystemDrift({self.kind}, job={self.job_id}, {self.resolution})"

    def resolve(self, resolution: str) -> None:
        """
        Close the drift record.

        Note: Does not save - caller must save after calling.
        """
        self.resolution = resolution
        self.resolved_at = timezone.now()
