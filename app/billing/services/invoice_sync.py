"""
Propagation of billing outcomes to the case-management invoice.

InvoiceSync marks the upstream invoice paid after a job is CHARGED. It
never raises: any failure is persisted as a CrossSystemDrift row and
logged at ERROR with event="cross_system_drift", and the caller (usually
webhook processing) carries on.

At most one invoice side effect per charge: invoice_marked_paid_at is
checked under a per-job lock before calling upstream and set after.

Usage:
    from billing.services.invoice_sync import InvoiceSync

    result = InvoiceSync().mark_paid(job)
    if not result.success:
        # Drift recorded; retry_invoice_drift will try again
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from core.services import BaseService, ServiceResult

from billing.exceptions import CrossSystemDriftError, LockAcquisitionError
from billing.locks import DistributedLock
from billing.models import BillingJob, CrossSystemDrift
from billing.state_machines import ChargeAttemptStatus, DriftKind, DriftResolution

if TYPE_CHECKING:
    from casemanager.client import CaseManagementClient


class InvoiceSync(BaseService):
    """
    Marks case-management invoices paid and records drift on failure.

    Args:
        client: Case-management client (defaults to one built from settings)
    """

    def __init__(self, client: CaseManagementClient | None = None) -> None:
        self._client = client

    @property
    def client(self) -> CaseManagementClient:
        if self._client is None:
            from casemanager.client import CaseManagementClient

            self._client = CaseManagementClient.from_settings()
        return self._client

    def mark_paid(self, job: BillingJob) -> ServiceResult[dict]:
        """
        Mark the job's upstream invoice paid, at most once.

        Returns:
            ServiceResult.success with status synced, already_synced,
            in_progress or no_invoice; ServiceResult.failure when drift
            was recorded
        """
        logger = self.get_logger()

        if job.invoice_marked_paid_at:
            return ServiceResult.success({"status": "already_synced"})

        if not job.external_invoice_id:
            logger.info(
                "No upstream invoice to mark paid",
                extra={"job_id": str(job.id), "external_job_id": job.external_job_id},
            )
            return ServiceResult.success({"status": "no_invoice"})

        try:
            with DistributedLock(f"billing:invoice:{job.id}", ttl=60, blocking=False):
                current = BillingJob.objects.get(pk=job.pk)
                if current.invoice_marked_paid_at:
                    job.invoice_marked_paid_at = current.invoice_marked_paid_at
                    return ServiceResult.success({"status": "already_synced"})
                return self._propagate(current, job)
        except LockAcquisitionError:
            logger.info(
                "Invoice sync already running for job",
                extra={"job_id": str(job.id)},
            )
            return ServiceResult.success({"status": "in_progress"})

    def _propagate(self, current: BillingJob, job: BillingJob) -> ServiceResult[dict]:
        logger = self.get_logger()
        attempt = current.charge_attempts.filter(status=ChargeAttemptStatus.SUCCEEDED).first()
        amount_cents = attempt.amount_cents if attempt else current.amount_cents

        try:
            self.client.mark_invoice_paid(
                current.external_invoice_id,
                amount_cents,
                paid_on=timezone.localdate(),
            )
        except Exception as e:
            drift_error = CrossSystemDriftError(
                f"Could not mark invoice {current.external_invoice_id} paid: {e}",
                details={"job_id": str(current.id), "cause": type(e).__name__},
            )
            self.record_drift(
                current,
                DriftKind.INVOICE_MARK_PAID_FAILED,
                drift_error.message,
            )
            return ServiceResult.from_exception(drift_error)

        now = timezone.now()
        with transaction.atomic():
            BillingJob.objects.filter(
                pk=current.pk, invoice_marked_paid_at__isnull=True
            ).update(invoice_marked_paid_at=now)
            healed = CrossSystemDrift.objects.open().filter(
                job=current, kind=DriftKind.INVOICE_MARK_PAID_FAILED
            ).update(resolution=DriftResolution.AUTO_HEALED, resolved_at=now)

        job.invoice_marked_paid_at = now
        logger.info(
            "Upstream invoice marked paid",
            extra={
                "job_id": str(current.id),
                "external_invoice_id": current.external_invoice_id,
                "amount_cents": amount_cents,
                "healed_drift": healed,
            },
        )
        return ServiceResult.success({"status": "synced", "healed_drift": healed})

    @classmethod
    def record_drift(cls, job: BillingJob, kind: str, message: str) -> CrossSystemDrift:
        """
        Persist (or bump) the open drift record for this job and kind.

        Logged at ERROR with event="cross_system_drift" for alerting.
        """
        now = timezone.now()
        with transaction.atomic():
            drift = (
                CrossSystemDrift.objects.select_for_update()
                .open()
                .filter(job=job, kind=kind)
                .first()
            )
            if drift is None:
                try:
                    with transaction.atomic():
                        drift = CrossSystemDrift.objects.create(
                            job=job,
                            kind=kind,
                            external_invoice_id=job.external_invoice_id,
                            error_message=message,
                            last_attempted_at=now,
                        )
                except IntegrityError:
                    drift = CrossSystemDrift.objects.open().get(job=job, kind=kind)
                    drift = cls._bump(drift, message, now)
            else:
                drift = cls._bump(drift, message, now)

        cls.get_logger().error(
            "Cross-system drift recorded",
            extra={
                "event": "cross_system_drift",
                "kind": kind,
                "job_id": str(job.id),
                "external_invoice_id": job.external_invoice_id,
                "drift_id": str(drift.id),
                "attempts": drift.attempts,
                "error": message,
            },
        )
        return drift

    @staticmethod
    def _bump(drift: CrossSystemDrift, message: str, now) -> CrossSystemDrift:
        CrossSystemDrift.objects.filter(pk=drift.pk).update(
            attempts=F("attempts") + 1,
            error_message=message,
            last_attempted_at=now,
        )
        drift.refresh_from_db()
        return drift
