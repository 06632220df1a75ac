"""
Webhook event handlers for Stripe events.

This module provides a handler registry and implementations for
processing the Stripe events the billing engine cares about.

Charge outcomes are correlated to a ChargeAttempt by, in order, the
charge_attempt_id metadata, the PaymentIntent id, and the job_id
metadata. Events that correlate to nothing are acknowledged and ignored:
they are either foreign (created outside this engine) or stale.

Usage:
    from billing.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event, trigger) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event, BillingTrigger())
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from core.services import ServiceResult

from billing.models import ChargeAttempt, WebhookEvent

if TYPE_CHECKING:
    from billing.services import BillingTrigger


logger = logging.getLogger(__name__)

Handler = Callable[[WebhookEvent, "BillingTrigger"], ServiceResult]


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Handler] = {}


def register_handler(event_type: str) -> Callable[[Handler], Handler]:
    """
    Decorator to register a webhook event handler.

    Args:
        event_type: The Stripe event type (e.g., "payment_intent.succeeded")
    """

    def decorator(func: Handler) -> Handler:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent, trigger: BillingTrigger) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types are acknowledged with a success result.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success({"handled": False})

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )

    return handler(webhook_event, trigger)


def _metadata(data_object: dict) -> dict:
    return data_object.get("metadata") or {}


def _ignored(webhook_event: WebhookEvent, reason: str) -> ServiceResult:
    logger.info(
        f"{webhook_event.event_type}: ignored ({reason})",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )
    return ServiceResult.success({"handled": False, "ignored": reason})


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(
    webhook_event: WebhookEvent,
    trigger: BillingTrigger,
) -> ServiceResult:
    """
    Resolve the matching charge attempt as succeeded.

    The job becomes CHARGED and the upstream invoice is marked paid.
    Redelivery is a stale no-op with no second invoice call.
    """
    data_object = webhook_event.get_object()
    payment_intent_id = data_object.get("id")
    if not payment_intent_id:
        return _ignored(webhook_event, "no payment_intent_id")

    metadata = _metadata(data_object)
    result = trigger.resolve_succeeded(
        charge_attempt_id=metadata.get("charge_attempt_id"),
        payment_intent_id=payment_intent_id,
        job_id=metadata.get("job_id"),
    )

    logger.info(
        "Processed payment_intent.succeeded",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "payment_intent_id": payment_intent_id,
            "resolution": (result.data or {}).get("resolution"),
        },
    )
    return result


@register_handler("payment_intent.payment_failed")
def handle_payment_intent_failed(
    webhook_event: WebhookEvent,
    trigger: BillingTrigger,
) -> ServiceResult:
    """
    Resolve the matching charge attempt as failed.

    The external invoice is not touched. A failure for an old attempt
    of a job that is already CHARGED is stale and ignored.
    """
    data_object = webhook_event.get_object()
    payment_intent_id = data_object.get("id")
    if not payment_intent_id:
        return _ignored(webhook_event, "no payment_intent_id")

    last_error = data_object.get("last_payment_error") or {}
    metadata = _metadata(data_object)
    result = trigger.resolve_failed(
        charge_attempt_id=metadata.get("charge_attempt_id"),
        payment_intent_id=payment_intent_id,
        job_id=metadata.get("job_id"),
        failure_code=last_error.get("decline_code") or last_error.get("code"),
        failure_message=last_error.get("message", "Payment failed"),
    )

    logger.info(
        "Processed payment_intent.payment_failed",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "payment_intent_id": payment_intent_id,
            "resolution": (result.data or {}).get("resolution"),
        },
    )
    return result


# =============================================================================
# Setup Intent Handlers (informational)
# =============================================================================


@register_handler("setup_intent.succeeded")
def handle_setup_intent_succeeded(
    webhook_event: WebhookEvent,
    trigger: BillingTrigger,
) -> ServiceResult:
    # confirm_setup records the payment method; nothing to change here
    data_object = webhook_event.get_object()
    logger.info(
        "Card setup succeeded",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "setup_intent_id": data_object.get("id"),
            "job_id": _metadata(data_object).get("job_id"),
        },
    )
    return ServiceResult.success({"handled": True})


@register_handler("setup_intent.setup_failed")
def handle_setup_intent_failed(
    webhook_event: WebhookEvent,
    trigger: BillingTrigger,
) -> ServiceResult:
    data_object = webhook_event.get_object()
    last_error = data_object.get("last_setup_error") or {}
    logger.warning(
        "Card setup failed",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "setup_intent_id": data_object.get("id"),
            "job_id": _metadata(data_object).get("job_id"),
            "decline_code": last_error.get("decline_code") or last_error.get("code"),
            "reason": last_error.get("message"),
        },
    )
    return ServiceResult.success({"handled": True})


# =============================================================================
# Refund Handlers
# =============================================================================


@register_handler("charge.refunded")
def handle_charge_refunded(
    webhook_event: WebhookEvent,
    trigger: BillingTrigger,
) -> ServiceResult:
    """
    Reconcile refunds issued directly in the Stripe dashboard.

    Refunds already booked through BillingTrigger.refund are no-ops,
    since record_refund is idempotent by refund id. When the charge does
    not list its refunds, the difference in amount_refunded is booked
    under a synthetic id.
    """
    charge = webhook_event.get_object()
    payment_intent_id = charge.get("payment_intent")
    if not payment_intent_id:
        return _ignored(webhook_event, "no payment_intent")

    attempt = ChargeAttempt.objects.filter(payment_intent_id=payment_intent_id).first()
    if attempt is None:
        return _ignored(webhook_event, "unknown payment_intent")

    refunds = (charge.get("refunds") or {}).get("data") or []
    recorded = []
    if refunds:
        for refund in refunds:
            recorded.append(
                trigger.record_refund(
                    attempt.id,
                    stripe_refund_id=refund["id"],
                    amount_cents=refund.get("amount", 0),
                    status=refund.get("status", "succeeded"),
                    reason=refund.get("reason") or "",
                    source="dashboard",
                )
            )
    else:
        amount_refunded = charge.get("amount_refunded", 0)
        delta = amount_refunded - attempt.amount_refunded_cents
        if delta > 0:
            recorded.append(
                trigger.record_refund(
                    attempt.id,
                    stripe_refund_id=f"{charge.get('id')}:{amount_refunded}",
                    amount_cents=delta,
                    status="succeeded",
                    source="dashboard",
                )
            )

    logger.info(
        "Processed charge.refunded",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "payment_intent_id": payment_intent_id,
            "refund_count": len(recorded),
        },
    )
    return ServiceResult.success(
        {"handled": True, "refund_ids": [r.stripe_refund_id for r in recorded]}
    )
