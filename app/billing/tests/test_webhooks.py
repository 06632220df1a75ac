"""
Tests for Stripe webhook processing.

Covers the reconciler's claim/dispatch/ack cycle, replay idempotency,
the individual handlers and the HTTP endpoint.
"""

import hashlib
import hmac
import json
import time
from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone

from billing.exceptions import SignatureInvalid
from billing.models import BillingJob, ChargeAttempt, Refund, WebhookEvent
from billing.state_machines import BillingState, ChargeAttemptStatus, WebhookEventStatus
from billing.tests.factories import WebhookEventFactory
from billing.webhooks.handlers import WEBHOOK_HANDLERS
from billing.webhooks.reconciler import WebhookReconciler
from core.services import ServiceResult


def stripe_event(event_type, data_object, event_id="evt_test_1"):
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": data_object},
    }


def intent_object(attempt, **overrides):
    data = {
        "id": attempt.payment_intent_id,
        "object": "payment_intent",
        "amount": attempt.amount_cents,
        "metadata": {
            "job_id": str(attempt.job_id),
            "charge_attempt_id": str(attempt.id),
        },
    }
    data.update(overrides)
    return data


def sign(payload, secret="whsec_test_dummy", timestamp=None):
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed_payload = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def reconciler(trigger, gateway):
    return WebhookReconciler(trigger=trigger, gateway=gateway)


@pytest.fixture
def deliver(reconciler, gateway):
    """Deliver an already-verified event through the reconciler."""

    def _deliver(event):
        gateway.verify_webhook_signature.return_value = event
        return reconciler.handle(json.dumps(event).encode(), "t=1,v1=signed")

    return _deliver


# =============================================================================
# Reconciler
# =============================================================================


@pytest.mark.django_db
class TestWebhookReconciler:
    """Tests for claim, dispatch and acknowledgement."""

    def test_success_event_charges_job(self, deliver, case_management, in_flight_attempt):
        ack = deliver(stripe_event("payment_intent.succeeded", intent_object(in_flight_attempt)))

        assert ack.status == "processed"
        assert ack.should_retry is False
        assert ack.detail["resolution"] == "applied"

        event = WebhookEvent.objects.get(stripe_event_id="evt_test_1")
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.retry_count == 1
        assert event.processed_at is not None
        assert BillingJob.objects.get(pk=in_flight_attempt.job_id).billing_state == BillingState.CHARGED
        case_management.mark_invoice_paid.assert_called_once()

    def test_replay_is_acknowledged_without_side_effects(self, deliver, case_management, in_flight_attempt):
        event = stripe_event("payment_intent.succeeded", intent_object(in_flight_attempt))
        deliver(event)

        ack = deliver(event)

        assert ack.status == "duplicate"
        assert WebhookEvent.objects.get(stripe_event_id="evt_test_1").retry_count == 1
        case_management.mark_invoice_paid.assert_called_once()

    def test_same_outcome_under_new_event_id_is_stale(self, deliver, case_management, in_flight_attempt):
        deliver(stripe_event("payment_intent.succeeded", intent_object(in_flight_attempt)))

        ack = deliver(
            stripe_event(
                "payment_intent.succeeded",
                intent_object(in_flight_attempt),
                event_id="evt_test_2",
            )
        )

        assert ack.status == "processed"
        assert ack.detail["resolution"] == "stale"
        case_management.mark_invoice_paid.assert_called_once()

    def test_event_processing_elsewhere_is_acknowledged(self, deliver):
        WebhookEventFactory(stripe_event_id="evt_test_1", status=WebhookEventStatus.PROCESSING)

        ack = deliver(stripe_event("payment_intent.succeeded", {"id": "pi_x"}))

        assert ack.status == "in_progress"

    def test_stuck_processing_event_is_reclaimed(self, deliver):
        stuck = WebhookEventFactory(
            stripe_event_id="evt_test_1",
            status=WebhookEventStatus.PROCESSING,
            retry_count=1,
        )
        WebhookEvent.objects.filter(pk=stuck.pk).update(
            updated_at=timezone.now() - timedelta(hours=2)
        )

        ack = deliver(stripe_event("payment_intent.succeeded", {"id": "pi_unknown"}))

        assert ack.status == "processed"
        assert WebhookEvent.objects.get(pk=stuck.pk).retry_count == 2

    def test_missing_signature_changes_nothing(self, reconciler):
        with pytest.raises(SignatureInvalid):
            reconciler.handle(b"{}", "")

        assert WebhookEvent.objects.count() == 0

    def test_invalid_signature_changes_nothing(self, reconciler, gateway):
        gateway.verify_webhook_signature.side_effect = SignatureInvalid("Invalid webhook signature")

        with pytest.raises(SignatureInvalid):
            reconciler.handle(b"{}", "t=1,v1=forged")

        assert WebhookEvent.objects.count() == 0

    def test_event_without_id_is_rejected(self, reconciler, gateway):
        gateway.verify_webhook_signature.return_value = {"type": "payment_intent.succeeded"}

        with pytest.raises(SignatureInvalid):
            reconciler.handle(b"{}", "t=1,v1=signed")

    def test_unexpected_error_marks_event_failed(self, deliver, mocker):
        mocker.patch(
            "billing.webhooks.reconciler.dispatch_webhook",
            side_effect=RuntimeError("database went away"),
        )

        with pytest.raises(RuntimeError):
            deliver(stripe_event("payment_intent.succeeded", {"id": "pi_x"}))

        event = WebhookEvent.objects.get(stripe_event_id="evt_test_1")
        assert event.status == WebhookEventStatus.FAILED
        assert "database went away" in event.error_message

    def test_handler_failure_result_asks_for_redelivery(self, deliver, mocker):
        mocker.patch(
            "billing.webhooks.reconciler.dispatch_webhook",
            return_value=ServiceResult.failure("Could not resolve", error_code="RESOLVE_FAILED"),
        )

        ack = deliver(stripe_event("payment_intent.succeeded", {"id": "pi_x"}))

        assert ack.status == "failed"
        assert ack.should_retry is True
        assert WebhookEvent.objects.get(stripe_event_id="evt_test_1").status == WebhookEventStatus.FAILED

    def test_unhandled_event_type_is_acknowledged(self, deliver):
        ack = deliver(stripe_event("customer.updated", {"id": "cus_test_firm"}))

        assert ack.status == "processed"
        assert ack.detail == {"handled": False}

    def test_process_stored_redrives_failed_event(self, reconciler, in_flight_attempt):
        event = WebhookEventFactory(
            status=WebhookEventStatus.FAILED,
            retry_count=1,
            payload_object=intent_object(in_flight_attempt),
        )

        ack = reconciler.process_stored(event.pk)

        assert ack.status == "processed"
        event = WebhookEvent.objects.get(pk=event.pk)
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.retry_count == 2

    def test_process_stored_skips_processed_event(self, reconciler):
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        assert reconciler.process_stored(event.pk).status == "duplicate"

    def test_process_stored_unknown_event(self, reconciler):
        assert reconciler.process_stored("00000000-0000-0000-0000-000000000000") is None


# =============================================================================
# Handlers
# =============================================================================


@pytest.mark.django_db
class TestPaymentIntentHandlers:
    def test_handlers_registered(self):
        assert {
            "payment_intent.succeeded",
            "payment_intent.payment_failed",
            "setup_intent.succeeded",
            "setup_intent.setup_failed",
            "charge.refunded",
        } <= set(WEBHOOK_HANDLERS)

    def test_payment_failed_marks_job_failed(self, deliver, case_management, in_flight_attempt):
        failed = intent_object(
            in_flight_attempt,
            last_payment_error={
                "code": "card_declined",
                "decline_code": "insufficient_funds",
                "message": "Your card has insufficient funds.",
            },
        )

        deliver(stripe_event("payment_intent.payment_failed", failed))

        attempt = ChargeAttempt.objects.get(pk=in_flight_attempt.pk)
        assert attempt.status == ChargeAttemptStatus.FAILED
        assert attempt.failure_code == "insufficient_funds"
        assert attempt.failure_message == "Your card has insufficient funds."
        assert BillingJob.objects.get(pk=attempt.job_id).billing_state == BillingState.CHARGE_FAILED
        case_management.mark_invoice_paid.assert_not_called()

    def test_failure_for_charged_job_is_ignored(self, deliver, succeeded_attempt):
        ack = deliver(stripe_event("payment_intent.payment_failed", intent_object(succeeded_attempt)))

        assert ack.detail["resolution"] == "stale"
        assert BillingJob.objects.get(pk=succeeded_attempt.job_id).billing_state == BillingState.CHARGED

    def test_correlates_without_metadata(self, deliver, in_flight_attempt):
        deliver(
            stripe_event(
                "payment_intent.succeeded",
                {"id": "pi_test_in_flight", "object": "payment_intent", "metadata": {}},
            )
        )

        attempt = ChargeAttempt.objects.get(pk=in_flight_attempt.pk)
        assert attempt.status == ChargeAttemptStatus.SUCCEEDED

    def test_event_without_intent_id_is_ignored(self, deliver):
        ack = deliver(stripe_event("payment_intent.succeeded", {"object": "payment_intent"}))

        assert ack.detail == {"handled": False, "ignored": "no payment_intent_id"}

    def test_setup_events_are_informational(self, deliver):
        ack = deliver(
            stripe_event(
                "setup_intent.setup_failed",
                {
                    "id": "seti_test_1",
                    "metadata": {"job_id": "x"},
                    "last_setup_error": {"code": "card_declined", "message": "Declined"},
                },
            )
        )

        assert ack.status == "processed"
        assert ack.detail == {"handled": True}


@pytest.mark.django_db
class TestChargeRefundedHandler:
    """Refunds issued in the Stripe dashboard are reconciled from charge.refunded."""

    def _charge(self, attempt, amount_refunded, refunds=None):
        return {
            "id": "ch_test_1",
            "object": "charge",
            "payment_intent": attempt.payment_intent_id,
            "amount": attempt.amount_cents,
            "amount_refunded": amount_refunded,
            "refunds": {"data": refunds or []},
        }

    def test_books_listed_refunds(self, deliver, succeeded_attempt):
        charge = self._charge(
            succeeded_attempt,
            8500,
            refunds=[{"id": "re_dash_1", "amount": 8500, "status": "succeeded", "reason": None}],
        )

        ack = deliver(stripe_event("charge.refunded", charge))

        assert ack.detail["refund_ids"] == ["re_dash_1"]
        refund = Refund.objects.get(stripe_refund_id="re_dash_1")
        assert refund.source == "dashboard"
        assert refund.is_full is True
        assert BillingJob.objects.get(pk=succeeded_attempt.job_id).billing_state == BillingState.REFUNDED

    def test_refund_already_booked_is_not_duplicated(self, deliver, trigger, succeeded_attempt):
        trigger.record_refund(
            succeeded_attempt.id,
            stripe_refund_id="re_api_1",
            amount_cents=3000,
            status="succeeded",
        )
        charge = self._charge(
            succeeded_attempt,
            3000,
            refunds=[{"id": "re_api_1", "amount": 3000, "status": "succeeded"}],
        )

        deliver(stripe_event("charge.refunded", charge))

        assert Refund.objects.filter(charge_attempt=succeeded_attempt).count() == 1
        assert ChargeAttempt.objects.get(pk=succeeded_attempt.pk).amount_refunded_cents == 3000

    def test_books_delta_when_refunds_not_listed(self, deliver, succeeded_attempt):
        deliver(stripe_event("charge.refunded", self._charge(succeeded_attempt, 2000)))

        refund = Refund.objects.get(charge_attempt=succeeded_attempt)
        assert refund.amount_cents == 2000
        assert refund.stripe_refund_id == "ch_test_1:2000"
        assert BillingJob.objects.get(pk=succeeded_attempt.job_id).billing_state == BillingState.CHARGED

    def test_unknown_payment_intent_is_ignored(self, deliver, succeeded_attempt):
        charge = self._charge(succeeded_attempt, 100)
        charge["payment_intent"] = "pi_elsewhere"

        ack = deliver(stripe_event("charge.refunded", charge))

        assert ack.detail["ignored"] == "unknown payment_intent"


# =============================================================================
# HTTP Endpoint
# =============================================================================


@pytest.mark.django_db
class TestStripeWebhookView:
    """Tests for POST /api/v1/billing/webhooks/stripe/."""

    @pytest.fixture
    def url(self):
        return reverse("billing:stripe-webhook")

    @pytest.fixture(autouse=True)
    def signed_reconciler(self, mocker, trigger):
        # Real signature verification, test doubles behind it
        return mocker.patch(
            "billing.webhooks.views.WebhookReconciler",
            return_value=WebhookReconciler(trigger=trigger),
        )

    def _post(self, client, url, event, secret="whsec_test_dummy"):
        payload = json.dumps(event).encode()
        return client.post(
            url,
            data=payload,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=sign(payload, secret),
        )

    def test_signed_event_is_processed(self, client, url, in_flight_attempt):
        event = stripe_event("payment_intent.succeeded", intent_object(in_flight_attempt))

        response = self._post(client, url, event)

        assert response.status_code == 200
        assert response.json() == {"event_id": "evt_test_1", "status": "processed"}
        assert BillingJob.objects.get(pk=in_flight_attempt.job_id).billing_state == BillingState.CHARGED

    def test_replay_returns_200(self, client, url, in_flight_attempt):
        event = stripe_event("payment_intent.succeeded", intent_object(in_flight_attempt))
        self._post(client, url, event)

        response = self._post(client, url, event)

        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"

    def test_wrong_secret_is_rejected(self, client, url):
        event = stripe_event("payment_intent.succeeded", {"id": "pi_x"})

        response = self._post(client, url, event, secret="whsec_attacker")

        assert response.status_code == 400
        assert response.json()["error_code"] == "SIGNATURE_INVALID"
        assert WebhookEvent.objects.count() == 0

    def test_missing_signature_is_rejected(self, client, url):
        response = client.post(url, data=b"{}", content_type="application/json")

        assert response.status_code == 400

    def test_processing_error_returns_500(self, client, url, mocker):
        mocker.patch(
            "billing.webhooks.reconciler.dispatch_webhook",
            side_effect=RuntimeError("boom"),
        )

        response = self._post(client, url, stripe_event("payment_intent.succeeded", {"id": "pi_x"}))

        assert response.status_code == 500
        assert WebhookEvent.objects.get().status == WebhookEventStatus.FAILED

    def test_get_not_allowed(self, client, url):
        assert client.get(url).status_code == 405
