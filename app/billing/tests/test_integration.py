"""
End-to-end billing scenarios.

A case-management job is observed by the JobWatcher, charged by the
BillingTrigger once its affidavit is signed, and settled by Stripe
webhooks. Only Stripe and the case-management HTTP API are mocked.
"""

import json

import pytest

from billing.adapters import PaymentIntentResult
from billing.models import BillingJob, ChargeAttempt
from billing.state_machines import BillingState, ChargeAttemptStatus, UnmetCondition
from billing.webhooks.reconciler import WebhookReconciler
from casemanager.normalizer import NormalizedAttempt, NormalizedJob
from jobfeed.change_feed import ChangeKind
from jobfeed.services import JobWatcher


FIRST_ATTEMPT = NormalizedAttempt(id="a1", attempted_at="2026-10-17", result="not home")


def upstream_job(**overrides):
    values = {
        "id": "48213",
        "status": "Attempted",
        "amount_cents": 8500,
        "affidavit_signed": False,
        "invoice_id": "9921",
        "client_email": "ops@firm.test",
        "updated_at": "2026-10-17T09:00:00Z",
        "attempts": (FIRST_ATTEMPT,),
    }
    values.update(overrides)
    return NormalizedJob(**values)


def processing_intent(params):
    return PaymentIntentResult(
        id="pi_test_e2e",
        status="processing",
        amount_cents=params.amount_cents,
        currency=params.currency,
        customer_id=params.customer_id,
        payment_method_id=params.payment_method_id,
        metadata=params.metadata,
    )


def intent_event(event_type, attempt, event_id):
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": attempt.payment_intent_id,
                "object": "payment_intent",
                "amount": attempt.amount_cents,
                "metadata": {
                    "job_id": str(attempt.job_id),
                    "charge_attempt_id": str(attempt.id),
                },
            }
        },
    }


@pytest.fixture
def published():
    return []


@pytest.fixture
def watcher(case_management, trigger, published):
    return JobWatcher(
        client=case_management,
        publisher=lambda job_id, event: published.append(event),
        trigger=trigger,
    )


@pytest.fixture
def deliver(trigger, gateway):
    reconciler = WebhookReconciler(trigger=trigger, gateway=gateway)

    def _deliver(event):
        gateway.verify_webhook_signature.return_value = event
        return reconciler.handle(json.dumps(event).encode(), "t=1,v1=signed")

    return _deliver


@pytest.mark.django_db
class TestAffidavitToInvoice:
    def test_unsigned_job_without_card_is_not_charged(self, watcher, trigger, case_management, gateway, customer):
        case_management.fetch_job.return_value = upstream_job()

        result = watcher.refresh("48213")

        assert result.data["baseline"] is True
        job = BillingJob.objects.get(external_job_id="48213")
        assert job.customer == customer
        assert job.amount_cents == 8500

        decision = trigger.initiate_charge(job)

        assert decision.unmet_condition == UnmetCondition.NO_PAYMENT_METHOD
        job = BillingJob.objects.get(pk=job.pk)
        assert job.last_unmet_condition == UnmetCondition.NO_PAYMENT_METHOD
        assert job.billing_state == BillingState.UNBILLED
        assert not ChargeAttempt.objects.exists()
        gateway.create_off_session_payment_intent.assert_not_called()

    def test_signed_affidavit_charges_once_and_marks_invoice_paid(
        self, watcher, deliver, case_management, gateway, published, customer
    ):
        gateway.create_off_session_payment_intent.side_effect = processing_intent
        case_management.fetch_job.return_value = upstream_job()
        watcher.refresh("48213")
        BillingJob.objects.filter(external_job_id="48213").update(payment_method_id="pm_test_visa")

        # Service completed: status flips and the affidavit is signed
        case_management.fetch_job.return_value = upstream_job(
            status="Served",
            affidavit_signed=True,
            updated_at="2026-10-18T14:02:11Z",
        )
        result = watcher.refresh("48213")

        assert result.data["billing"]["outcome"] == "submitted"
        assert [event.kind for event in published] == [ChangeKind.STATUS_CHANGE, ChangeKind.JOB_UPDATED]
        job = BillingJob.objects.get(external_job_id="48213")
        assert job.billing_state == BillingState.CHARGE_IN_FLIGHT
        attempt = ChargeAttempt.objects.get(job=job)
        assert attempt.payment_intent_id == "pi_test_e2e"
        assert attempt.trigger == "affidavit_signed"

        # A repeated refresh with nothing new must not charge again
        watcher.refresh("48213")
        assert ChargeAttempt.objects.filter(job=job).count() == 1

        success = intent_event("payment_intent.succeeded", attempt, "evt_test_success")
        ack = deliver(success)

        assert ack.status == "processed"
        job = BillingJob.objects.get(pk=job.pk)
        assert job.billing_state == BillingState.CHARGED
        assert job.invoice_marked_paid_at is not None
        case_management.mark_invoice_paid.assert_called_once()

        # Redelivery: no second invoice call, no new attempt
        assert deliver(success).status == "duplicate"
        case_management.mark_invoice_paid.assert_called_once()
        assert ChargeAttempt.objects.filter(job=job).count() == 1

        # A late failure for the settled attempt is stale
        stale = deliver(intent_event("payment_intent.payment_failed", attempt, "evt_test_late_failure"))

        assert stale.detail["resolution"] == "stale"
        job = BillingJob.objects.get(pk=job.pk)
        assert job.billing_state == BillingState.CHARGED
        assert ChargeAttempt.objects.get(pk=attempt.pk).status == ChargeAttemptStatus.SUCCEEDED
