"""
JobWatcher: fetch, diff and fan out case-management job changes.

Both transports end up in refresh():

    fetch -> normalize -> diff against JobSnapshot -> billing sink
          -> store snapshot -> publish to subscribers

The snapshot is stored only after the billing sink has run, so a crash
in between re-detects the same changes on the next refresh. Publishing
comes last and is fire and forget: a failed publish is logged and
never fails the refresh.

Usage:
    from jobfeed.services import JobWatcher

    result = JobWatcher().refresh("48213")
    JobWatcher().poll_due()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from django.utils import timezone

from casemanager.normalizer import NORMALIZER_VERSION
from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult

from jobfeed.bus import publish
from jobfeed.change_feed import ChangeKind, JobChangeEvent, diff
from jobfeed.config import JobFeedConfig, get_jobfeed_config
from jobfeed.models import JobSnapshot

if TYPE_CHECKING:
    from billing.models import BillingJob
    from billing.services import BillingTrigger, TriggerDecision
    from casemanager.client import CaseManagementClient
    from casemanager.normalizer import NormalizedJob


# Events that prompt a billing evaluation
BILLING_EVENT_KINDS = frozenset({ChangeKind.STATUS_CHANGE, ChangeKind.NEW_ATTEMPT})


class JobWatcher(BaseService):
    """
    Args:
        client: Case-management client (defaults to one built from settings)
        publisher: Callable(job_id, event) used to broadcast events
        trigger: BillingTrigger for the billing sink
        config: Job feed settings
    """

    def __init__(
        self,
        client: CaseManagementClient | None = None,
        publisher: Callable[[str, JobChangeEvent], Any] = publish,
        trigger: BillingTrigger | None = None,
        config: JobFeedConfig | None = None,
    ) -> None:
        self._client = client
        self._trigger = trigger
        self.publisher = publisher
        self.config = config or get_jobfeed_config()

    @property
    def client(self) -> CaseManagementClient:
        if self._client is None:
            from casemanager.client import CaseManagementClient

            self._client = CaseManagementClient.from_settings()
        return self._client

    @property
    def trigger(self) -> BillingTrigger:
        if self._trigger is None:
            from billing.services import BillingTrigger

            self._trigger = BillingTrigger()
        return self._trigger

    # =========================================================================
    # Watch List
    # =========================================================================

    def watch(self, external_job_id: str) -> JobSnapshot:
        return JobSnapshot.objects.watch(
            external_job_id, ttl_minutes=self.config.watch_ttl_minutes
        )

    # =========================================================================
    # Refresh
    # =========================================================================

    def refresh(self, external_job_id: str) -> ServiceResult[dict]:
        """
        Re-observe one job and fan out whatever changed.

        Returns:
            ServiceResult.success with events, baseline (True on first
            observation) and the billing decision, if any

        Raises:
            CaseManagementError: The job could not be fetched
        """
        logger = self.get_logger()
        external_job_id = str(external_job_id)
        now = timezone.now()

        current = self.client.fetch_job(external_job_id)

        snapshot, _ = JobSnapshot.objects.get_or_create(external_job_id=external_job_id)
        previous = snapshot.baseline()
        events = diff(previous, current, observed_at=now.isoformat())

        decision = self._sync_billing(current, events)

        snapshot.snapshot = current.to_dict()
        snapshot.normalizer_version = NORMALIZER_VERSION
        snapshot.last_polled_at = now
        snapshot.save(
            update_fields=["snapshot", "normalizer_version", "last_polled_at", "updated_at"]
        )

        for event in events:
            try:
                self.publisher(external_job_id, event)
            except Exception as e:
                logger.warning(
                    f"Could not publish {event.kind.value} for job {external_job_id}: {e}",
                    extra={"external_job_id": external_job_id, "kind": event.kind.value},
                )

        if events:
            logger.info(
                "Job changes detected",
                extra={
                    "external_job_id": external_job_id,
                    "kinds": [event.kind.value for event in events],
                },
            )

        return ServiceResult.success(
            {
                "external_job_id": external_job_id,
                "baseline": previous is None,
                "events": [event.to_dict() for event in events],
                "billing": decision.to_dict() if decision else None,
            }
        )

    def poll_due(self, batch_size: int | None = None) -> dict[str, int]:
        """
        Refresh the least recently polled watched jobs.

        A failing job is logged and skipped, whether the fetch or the
        billing sink failed. It is still marked polled so it does not
        starve the rest of the watch list.
        """
        logger = self.get_logger()
        batch_size = batch_size or self.config.poll_batch_size
        counts = {"refreshed": 0, "failed": 0, "events": 0}

        due = list(
            JobSnapshot.objects.watched().due().values_list("external_job_id", flat=True)[
                :batch_size
            ]
        )
        for external_job_id in due:
            try:
                result = self.refresh(external_job_id)
            except (BaseApplicationError, ValueError) as e:
                counts["failed"] += 1
                JobSnapshot.objects.filter(external_job_id=external_job_id).update(
                    last_polled_at=timezone.now()
                )
                logger.warning(
                    f"Could not refresh job {external_job_id}: {e}",
                    extra={"external_job_id": external_job_id},
                )
                continue
            counts["refreshed"] += 1
            counts["events"] += len(result.data["events"])

        return counts

    # =========================================================================
    # Billing Sink
    # =========================================================================

    def _sync_billing(
        self,
        current: NormalizedJob,
        events: list[JobChangeEvent],
    ) -> TriggerDecision | None:
        """
        Mirror upstream-owned fields onto the BillingJob and evaluate it.

        Evaluates when a status change or new attempt arrived, or when the
        affidavit flag flipped to signed.
        """
        job, affidavit_flipped = self._upsert_billing_job(current)

        kinds = {event.kind for event in events}
        if not affidavit_flipped and not kinds & BILLING_EVENT_KINDS:
            return None

        source = "affidavit_signed" if affidavit_flipped else "job_change"
        return self.trigger.initiate_charge(job, source=source)

    def _upsert_billing_job(self, current: NormalizedJob) -> tuple[BillingJob, bool]:
        from billing.models import BillingCustomer, BillingJob

        customer = (
            BillingCustomer.objects.for_email(current.client_email)
            if current.client_email
            else None
        )

        job, created = BillingJob.objects.get_or_create(
            external_job_id=current.id,
            defaults={
                "customer": customer,
                "amount_cents": current.amount_cents,
                "affidavit_signed": current.affidavit_signed,
                "external_invoice_id": current.invoice_id,
            },
        )
        if created:
            return job, job.affidavit_signed

        update_fields = []
        affidavit_flipped = current.affidavit_signed and not job.affidavit_signed

        if job.affidavit_signed != current.affidavit_signed:
            job.affidavit_signed = current.affidavit_signed
            update_fields.append("affidavit_signed")
        # The amount is frozen once a charge has been submitted
        if job.is_chargeable_state and job.amount_cents != current.amount_cents:
            job.amount_cents = current.amount_cents
            update_fields.append("amount_cents")
        if current.invoice_id and job.external_invoice_id != current.invoice_id:
            job.external_invoice_id = current.invoice_id
            update_fields.append("external_invoice_id")
        if job.customer_id is None and customer is not None:
            job.customer = customer
            update_fields.append("customer")

        if update_fields:
            job.save(update_fields=[*update_fields, "updated_at"])
            self.get_logger().info(
                "Billing job updated from case management",
                extra={"job_id": str(job.id), "fields": update_fields},
            )
        return job, affidavit_flipped
