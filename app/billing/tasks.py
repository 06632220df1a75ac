"""
Celery tasks for deferred billing.

This module provides async tasks for:
- Re-driving a stored Stripe webhook event
- Retrying failed and stuck webhook events
- Settling charge attempts whose outcome was never learned
- Retrying failed invoice propagation (drift auto-heal)
- Evaluating jobs whose billing date has arrived

Periodic schedules are seeded into django-celery-beat by migration
0002_seed_beat_schedules.

Usage:
    from billing.tasks import evaluate_job

    evaluate_job.delay(str(job.id), source="payment_method_attached")
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from billing.exceptions import BillingError, UpstreamUnavailable
from billing.models import BillingJob, ChargeAttempt, CrossSystemDrift, WebhookEvent
from billing.state_machines import (
    BillingState,
    ChargeAttemptStatus,
    DriftKind,
    WebhookEventStatus,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

RETRY_BATCH_SIZE = 100


def _max_webhook_retries() -> int:
    return getattr(settings, "WEBHOOK_MAX_RETRIES", 5)


def _stuck_processing_minutes() -> int:
    return getattr(settings, "WEBHOOK_STUCK_PROCESSING_MINUTES", 30)


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 5},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Re-drive a stored webhook event through the reconciler.

    Raises:
        Exception: Re-raised to trigger Celery retry mechanism
    """
    from billing.webhooks.reconciler import WebhookReconciler

    ack = WebhookReconciler().process_stored(webhook_event_id)
    if ack is None:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    return {
        "status": ack.status,
        "webhook_event_id": str(webhook_event_id),
        "stripe_event_id": ack.stripe_event_id,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to retry failed and stuck webhook events.

    Picks FAILED events under the retry cap and PROCESSING events older
    than WEBHOOK_STUCK_PROCESSING_MINUTES (worker crashed mid-processing).
    """
    stuck_before = timezone.now() - timedelta(minutes=_stuck_processing_minutes())

    candidates = WebhookEvent.objects.filter(
        Q(status=WebhookEventStatus.FAILED)
        | Q(status=WebhookEventStatus.PROCESSING, updated_at__lt=stuck_before),
        retry_count__lt=_max_webhook_retries(),
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in candidates:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1
        logger.info(
            "Queued webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "stripe_event_id": webhook.stripe_event_id,
                "status": webhook.status,
                "retry_count": webhook.retry_count,
            },
        )

    if queued_count:
        logger.info(
            f"Queued {queued_count} webhooks for retry",
            extra={"queued_count": queued_count},
        )
    return {"queued_count": queued_count}


# =============================================================================
# Charge Tasks
# =============================================================================


@shared_task
def reconcile_stale_charges() -> dict:
    """
    Settle in-flight attempts older than BILLING_STALE_CHARGE_MINUTES.

    Re-submission reuses each attempt's idempotency key, so Stripe
    returns the original PaymentIntent rather than charging again.
    Attempts past the key lifetime are reported as unknown and left for
    an operator.
    """
    from billing.services import BillingTrigger

    trigger = BillingTrigger()
    cutoff = timezone.now() - timedelta(minutes=trigger.config.stale_charge_minutes)
    stale = ChargeAttempt.objects.filter(
        status=ChargeAttemptStatus.IN_FLIGHT,
        created_at__lt=cutoff,
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    outcomes: dict[str, int] = {}
    for attempt in stale:
        try:
            decision = trigger.reconcile_in_flight(attempt)
            outcome = decision.outcome.value
        except UpstreamUnavailable:
            outcome = "unknown"
        except BillingError as e:
            logger.error(
                "Could not reconcile in-flight charge",
                extra={"charge_attempt_id": str(attempt.id), "error_code": e.error_code},
            )
            outcome = "error"
        outcomes[outcome] = outcomes.get(outcome, 0) + 1

    if outcomes:
        logger.info("Reconciled stale charges", extra={"outcomes": outcomes})
    return outcomes


@shared_task
def evaluate_job(job_id: str, source: str = "scheduled") -> dict:
    """Evaluate one job and charge it if every condition holds."""
    from billing.services import BillingTrigger

    job = BillingJob.objects.select_related("customer").filter(pk=job_id).first()
    if job is None:
        logger.warning("BillingJob not found", extra={"job_id": str(job_id)})
        return {"status": "not_found", "job_id": str(job_id)}

    try:
        decision = BillingTrigger().initiate_charge(job, source=source)
    except UpstreamUnavailable:
        return {"status": "unknown", "job_id": str(job_id)}
    return decision.to_dict()


@shared_task
def evaluate_due_jobs() -> dict:
    """
    Periodic task: evaluate chargeable jobs whose billing date has arrived.

    Covers jobs deferred with NOT_YET_DUE and failed charges waiting for
    an automatic retry.
    """
    now = timezone.now()
    due = (
        BillingJob.objects.awaiting_affidavit_billing()
        .filter(Q(due_for_billing_at__isnull=True) | Q(due_for_billing_at__lte=now))
        .exclude(payment_method_id__isnull=True)
        .exclude(payment_method_id="")
        .values_list("id", flat=True)[:RETRY_BATCH_SIZE]
    )

    queued_count = 0
    for job_id in due:
        evaluate_job.delay(str(job_id), source="due_date")
        queued_count += 1

    return {"queued_count": queued_count}


# =============================================================================
# Drift Tasks
# =============================================================================


@shared_task
def retry_invoice_drift() -> dict:
    """
    Periodic task: retry marking invoices paid for open drift records.

    A successful retry auto-heals the drift row. Refund drift is left
    for an operator.
    """
    from billing.services import InvoiceSync

    open_drift = (
        CrossSystemDrift.objects.open()
        .filter(kind=DriftKind.INVOICE_MARK_PAID_FAILED)
        .select_related("job")
        .order_by("last_attempted_at")[:RETRY_BATCH_SIZE]
    )

    invoice_sync = InvoiceSync()
    healed = failed = 0
    for drift in open_drift:
        job = BillingJob.objects.get(pk=drift.job_id)
        if job.billing_state != BillingState.CHARGED:
            continue
        result = invoice_sync.mark_paid(job)
        if result.success:
            healed += 1
        else:
            failed += 1

    if healed or failed:
        logger.info(
            "Retried invoice drift",
            extra={"healed": healed, "failed": failed},
        )
    return {"healed": healed, "failed": failed}
