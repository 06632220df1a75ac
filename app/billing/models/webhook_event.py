"""
WebhookEvent model: the idempotency ledger for Stripe webhooks.

Stores every webhook event received from Stripe. The unique
stripe_event_id constraint makes redelivery of a processed event a no-op.

Usage:
    from billing.models import WebhookEvent

    event, created = WebhookEvent.objects.get_or_create(
        stripe_event_id="evt_1234567890",
        defaults={
            "event_type": "payment_intent.succeeded",
            "payload": event_payload,
        },
    )
"""

from __future__ import annotations

from datetime import timedelta

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from billing.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    One row per Stripe event id; the reconciler's idempotency ledger.

    Lifecycle: pending -> processing -> processed | failed. A processed
    row makes redelivery a no-op. A processing row younger than
    WEBHOOK_STUCK_PROCESSING_MINUTES means another worker owns the event.
    Failed and stuck rows are re-driven by retry_failed_webhooks, and
    retry_count counts every claim.

    created_at doubles as the received-at timestamp.
    """

    stripe_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Stripe event type (e.g., 'payment_intent.succeeded')",
    )

    payload = models.JSONField(
        help_text="Full webhook payload from Stripe (JSON)",
    )

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    error_message = models.TextField(null=True, blank=True)

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(
                fields=["status", "updated_at"],
                name="billing_web_status_c41d2a_idx",
            ),
            models.Index(
                fields=["event_type", "created_at"],
                name="billing_web_event_t_7e0b93_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.stripe_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def received_at(self):
        return self.created_at

    def is_stale_processing(self, threshold_minutes: int) -> bool:
        """True if a PROCESSING claim is older than the threshold."""
        if self.status != WebhookEventStatus.PROCESSING:
            return False
        return self.updated_at < timezone.now() - timedelta(minutes=threshold_minutes)

    # The mark_* helpers only mutate; the reconciler saves under its row lock

    def mark_processing(self) -> None:
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message

    def get_object(self) -> dict:
        """The event's data.object, or an empty dict."""
        try:
            return self.payload.get("data", {}).get("object", {}) or {}
        except (AttributeError, TypeError):
            return {}

    def get_object_id(self) -> str | None:
        return self.get_object().get("id")
