"""
JobSnapshot model: last canonical observation of a watched job.

The poll transport diffs each fresh observation against this row, so
change detection survives restarts and is shared between workers.

Usage:
    from jobfeed.models import JobSnapshot

    JobSnapshot.objects.watch("48213", ttl_minutes=60)
    for snapshot in JobSnapshot.objects.watched().due()[:5]:
        ...
"""

from __future__ import annotations

from datetime import timedelta

from django.db import models
from django.db.models import F
from django.utils import timezone

from casemanager.normalizer import NORMALIZER_VERSION, NormalizedJob
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class JobSnapshotQuerySet(models.QuerySet):
    def watched(self):
        """Snapshots with at least one recent subscriber."""
        return self.filter(watched_until__gt=timezone.now())

    def due(self):
        """Least recently polled first; never-polled jobs lead."""
        return self.order_by(F("last_polled_at").asc(nulls_first=True), "created_at")

    def watch(self, external_job_id: str, ttl_minutes: int) -> JobSnapshot:
        """Create or extend the watch window for a job."""
        watched_until = timezone.now() + timedelta(minutes=ttl_minutes)
        snapshot, created = self.get_or_create(
            external_job_id=str(external_job_id),
            defaults={"watched_until": watched_until},
        )
        if not created:
            self.filter(pk=snapshot.pk).update(
                watched_until=watched_until,
                updated_at=timezone.now(),
            )
            snapshot.watched_until = watched_until
        return snapshot


class JobSnapshot(UUIDPrimaryKeyMixin, BaseModel):
    """
    Fields:
        external_job_id: Job ID in the case-management system
        snapshot: NormalizedJob.to_dict() of the last observation
        normalizer_version: Normalizer version that produced the snapshot
        watched_until: Poll the job until this time
        last_polled_at: When the job was last fetched
    """

    external_job_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Job ID in the case-management system",
    )

    snapshot = models.JSONField(
        null=True,
        blank=True,
        help_text="Last normalized observation of the job",
    )

    normalizer_version = models.PositiveSmallIntegerField(
        default=NORMALIZER_VERSION,
        help_text="Normalizer version that produced the snapshot",
    )

    watched_until = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Poll the job until this time",
    )

    last_polled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the job was last fetched from case management",
    )

    objects = JobSnapshotQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Job Snapshot"
        verbose_name_plural = "Job Snapshots"

    def __str__(self) -> str:
        return f"JobSnapshot({self.external_job_id}, v{self.normalizer_version})"

    @property
    def is_watched(self) -> bool:
        return self.watched_until is not None and self.watched_until > timezone.now()

    def baseline(self) -> NormalizedJob | None:
        """
        The stored observation to diff against.

        None when nothing was stored yet or the snapshot was written by a
        different normalizer version; the next observation then becomes
        the new baseline.
        """
        if not self.snapshot or self.normalizer_version != NORMALIZER_VERSION:
            return None
        return NormalizedJob.from_dict(self.snapshot)
