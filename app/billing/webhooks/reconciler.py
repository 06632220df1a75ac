"""
WebhookReconciler: verified, idempotent processing of Stripe events.

Processing Flow:
    1. Verify the Stripe signature (SignatureInvalid -> 400, no state change)
    2. Claim the event in the WebhookEvent ledger under a row lock:
       - PROCESSED -> duplicate, ack
       - PROCESSING and younger than WEBHOOK_STUCK_PROCESSING_MINUTES -> ack
       - otherwise -> PROCESSING
    3. Dispatch to the registered handler
    4. PROCESSED, or FAILED on an unexpected error (view answers 500 so
       Stripe redelivers; retry_failed_webhooks re-drives it too)

Invoice propagation happens inside the payment_intent.succeeded handler
and never raises, so it cannot fail the acknowledgement.

Usage:
    from billing.webhooks.reconciler import WebhookReconciler

    ack = WebhookReconciler().handle(request.body, signature)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from django.conf import settings
from django.db import transaction

from core.services import BaseService

from billing.adapters import StripeAdapter
from billing.exceptions import SignatureInvalid
from billing.models import WebhookEvent
from billing.services import BillingTrigger
from billing.state_machines import WebhookEventStatus
from billing.webhooks.handlers import dispatch_webhook


@dataclass(frozen=True)
class WebhookAck:
    """
    Acknowledgement returned for one delivery.

    status is one of processed, duplicate, in_progress or failed.
    """

    stripe_event_id: str
    event_type: str
    status: str
    detail: Any = None

    @property
    def should_retry(self) -> bool:
        return self.status == "failed"


class WebhookReconciler(BaseService):
    """
    Verifies, records and dispatches Stripe webhook events.

    Args:
        trigger: BillingTrigger used by the charge handlers
        gateway: Stripe adapter class (signature verification)
    """

    def __init__(
        self,
        trigger: BillingTrigger | None = None,
        gateway: type[StripeAdapter] = StripeAdapter,
    ) -> None:
        self._trigger = trigger
        self.gateway = gateway

    @property
    def trigger(self) -> BillingTrigger:
        if self._trigger is None:
            self._trigger = BillingTrigger()
        return self._trigger

    @property
    def stuck_threshold_minutes(self) -> int:
        return getattr(settings, "WEBHOOK_STUCK_PROCESSING_MINUTES", 30)

    def handle(self, payload: bytes, signature: str) -> WebhookAck:
        """
        Verify and process one webhook delivery.

        Raises:
            SignatureInvalid: Missing or bad signature, or malformed event
            Exception: Unexpected handler error, after marking the event FAILED
        """
        if not signature:
            raise SignatureInvalid("Missing Stripe-Signature header")

        event_data = self.gateway.verify_webhook_signature(payload, signature)

        stripe_event_id = event_data.get("id")
        event_type = event_data.get("type")
        if not stripe_event_id or not event_type:
            raise SignatureInvalid("Webhook event is missing id or type")

        self.get_logger().info(
            f"Received Stripe webhook: {event_type}",
            extra={"stripe_event_id": stripe_event_id, "event_type": event_type},
        )

        webhook_event, ack = self._claim(stripe_event_id, event_type, event_data)
        if ack is not None:
            return ack
        return self.process(webhook_event)

    def _claim(
        self,
        stripe_event_id: str,
        event_type: str,
        event_data: dict[str, Any],
    ) -> tuple[WebhookEvent, WebhookAck | None]:
        logger = self.get_logger()
        with transaction.atomic():
            webhook_event, created = WebhookEvent.objects.get_or_create(
                stripe_event_id=stripe_event_id,
                defaults={
                    "event_type": event_type,
                    "payload": event_data,
                    "status": WebhookEventStatus.PENDING,
                },
            )
            webhook_event = WebhookEvent.objects.select_for_update().get(pk=webhook_event.pk)

            if webhook_event.is_processed:
                logger.info(
                    "Webhook already processed, returning success",
                    extra={"stripe_event_id": stripe_event_id},
                )
                return webhook_event, WebhookAck(stripe_event_id, event_type, "duplicate")

            if webhook_event.status == WebhookEventStatus.PROCESSING and not (
                webhook_event.is_stale_processing(self.stuck_threshold_minutes)
            ):
                logger.info(
                    "Webhook is being processed elsewhere",
                    extra={"stripe_event_id": stripe_event_id},
                )
                return webhook_event, WebhookAck(stripe_event_id, event_type, "in_progress")

            webhook_event.mark_processing()
            webhook_event.save()

        return webhook_event, None

    def process(self, webhook_event: WebhookEvent) -> WebhookAck:
        """
        Dispatch a claimed (PROCESSING) event and record the outcome.

        Also used by process_webhook_event to re-drive FAILED events.
        """
        logger = self.get_logger()
        log_context = {
            "webhook_event_id": str(webhook_event.id),
            "stripe_event_id": webhook_event.stripe_event_id,
            "event_type": webhook_event.event_type,
            "retry_count": webhook_event.retry_count,
        }

        try:
            result = dispatch_webhook(webhook_event, self.trigger)
        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            webhook_event.mark_failed(error_msg)
            webhook_event.save()
            logger.exception(
                "Webhook processing failed with exception",
                extra={**log_context, "error": error_msg},
            )
            raise

        if not result.success:
            error_msg = result.error or "Handler returned failure"
            webhook_event.mark_failed(error_msg)
            webhook_event.save()
            logger.warning(
                f"Webhook handler failed: {error_msg}",
                extra={**log_context, "error_code": result.error_code},
            )
            return WebhookAck(
                webhook_event.stripe_event_id,
                webhook_event.event_type,
                "failed",
                detail=error_msg,
            )

        webhook_event.mark_processed()
        webhook_event.save()
        logger.info("Webhook processed successfully", extra=log_context)
        return WebhookAck(
            webhook_event.stripe_event_id,
            webhook_event.event_type,
            "processed",
            detail=result.data,
        )

    def process_stored(self, webhook_event_id) -> WebhookAck | None:
        """
        Re-drive a stored event by id (FAILED or stuck PROCESSING).

        Returns None when the event does not exist.
        """
        with transaction.atomic():
            webhook_event = (
                WebhookEvent.objects.select_for_update().filter(pk=webhook_event_id).first()
            )
            if webhook_event is None:
                return None
            if webhook_event.is_processed:
                return WebhookAck(
                    webhook_event.stripe_event_id, webhook_event.event_type, "duplicate"
                )
            if webhook_event.status == WebhookEventStatus.PROCESSING and not (
                webhook_event.is_stale_processing(self.stuck_threshold_minutes)
            ):
                return WebhookAck(
                    webhook_event.stripe_event_id, webhook_event.event_type, "in_progress"
                )
            webhook_event.mark_processing()
            webhook_event.save()

        return self.process(webhook_event)
