"""
Tests for InvoiceSync.

mark_paid never raises: upstream failures become CrossSystemDrift rows,
and a later success heals them.
"""

import pytest

from billing.exceptions import LockAcquisitionError
from billing.models import BillingJob, CrossSystemDrift
from billing.services import InvoiceSync
from billing.state_machines import DriftKind, DriftResolution
from billing.tests.factories import BillingJobFactory, SucceededChargeAttemptFactory
from casemanager.exceptions import CaseManagementUnavailable


@pytest.fixture
def charged_job(db, customer):
    job = BillingJobFactory(
        customer=customer,
        external_invoice_id="inv-2001",
        billing_state="charged",
    )
    SucceededChargeAttemptFactory(job=job, amount_cents=8500)
    return job


@pytest.mark.django_db
class TestMarkPaid:
    """Tests for InvoiceSync.mark_paid."""

    def test_marks_invoice_paid_once(self, invoice_sync, case_management, charged_job):
        first = invoice_sync.mark_paid(charged_job)
        second = invoice_sync.mark_paid(BillingJob.objects.get(pk=charged_job.pk))

        assert first.data["status"] == "synced"
        assert second.data["status"] == "already_synced"
        case_management.mark_invoice_paid.assert_called_once()
        assert case_management.mark_invoice_paid.call_args[0] == ("inv-2001", 8500)
        assert charged_job.invoice_marked_paid_at is not None

    def test_stale_copy_rechecks_under_lock(self, invoice_sync, case_management, charged_job):
        stale = BillingJob.objects.get(pk=charged_job.pk)
        invoice_sync.mark_paid(charged_job)

        result = invoice_sync.mark_paid(stale)

        assert result.data["status"] == "already_synced"
        assert stale.invoice_marked_paid_at is not None
        case_management.mark_invoice_paid.assert_called_once()

    def test_job_without_invoice(self, invoice_sync, case_management, customer):
        job = BillingJobFactory(customer=customer, external_invoice_id=None)

        result = invoice_sync.mark_paid(job)

        assert result.data["status"] == "no_invoice"
        case_management.mark_invoice_paid.assert_not_called()

    def test_concurrent_sync_is_in_progress(self, invoice_sync, case_management, charged_job, mock_redis):
        mock_redis.set.return_value = False

        result = invoice_sync.mark_paid(charged_job)

        assert result.success is True
        assert result.data["status"] == "in_progress"
        case_management.mark_invoice_paid.assert_not_called()

    def test_upstream_failure_records_drift(self, invoice_sync, case_management, charged_job):
        case_management.mark_invoice_paid.side_effect = CaseManagementUnavailable("timeout")

        result = invoice_sync.mark_paid(charged_job)

        assert result.success is False
        assert result.error_code == "CROSS_SYSTEM_DRIFT"
        drift = CrossSystemDrift.objects.open().get(job=charged_job)
        assert drift.kind == DriftKind.INVOICE_MARK_PAID_FAILED
        assert drift.external_invoice_id == "inv-2001"
        assert drift.attempts == 1
        assert BillingJob.objects.get(pk=charged_job.pk).invoice_marked_paid_at is None

    def test_repeated_failure_bumps_same_drift(self, invoice_sync, case_management, charged_job):
        case_management.mark_invoice_paid.side_effect = CaseManagementUnavailable("timeout")

        invoice_sync.mark_paid(charged_job)
        invoice_sync.mark_paid(charged_job)

        drift = CrossSystemDrift.objects.open().get(job=charged_job)
        assert drift.attempts == 2

    def test_success_heals_open_drift(self, invoice_sync, case_management, charged_job):
        case_management.mark_invoice_paid.side_effect = CaseManagementUnavailable("timeout")
        invoice_sync.mark_paid(charged_job)

        case_management.mark_invoice_paid.side_effect = None
        result = invoice_sync.mark_paid(charged_job)

        assert result.data == {"status": "synced", "healed_drift": 1}
        drift = CrossSystemDrift.objects.get(job=charged_job)
        assert drift.resolution == DriftResolution.AUTO_HEALED
        assert drift.resolved_at is not None

    def test_client_built_lazily_from_settings(self, mocker):
        from_settings = mocker.patch("casemanager.client.CaseManagementClient.from_settings")

        sync = InvoiceSync()

        from_settings.assert_not_called()
        assert sync.client is from_settings.return_value


@pytest.mark.django_db
class TestRecordDrift:
    def test_logs_at_error_for_alerting(self, charged_job, mocker):
        logger = mocker.patch.object(InvoiceSync, "get_logger").return_value

        drift = InvoiceSync.record_drift(
            charged_job,
            DriftKind.REFUND_NOT_PROPAGATED,
            "Refund re_1 not reflected",
        )

        logger.error.assert_called_once()
        extra = logger.error.call_args[1]["extra"]
        assert extra["event"] == "cross_system_drift"
        assert extra["kind"] == DriftKind.REFUND_NOT_PROPAGATED
        assert extra["drift_id"] == str(drift.id)

    def test_lock_errors_are_not_raised(self, invoice_sync, charged_job, mocker):
        mocker.patch(
            "billing.services.invoice_sync.DistributedLock.acquire",
            side_effect=LockAcquisitionError("held"),
        )

        result = invoice_sync.mark_paid(charged_job)

        assert result.data["status"] == "in_progress"
