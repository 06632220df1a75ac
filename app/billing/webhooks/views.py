"""
Webhook endpoint view for Stripe.

Events are processed synchronously so the response tells Stripe whether
to redeliver:
- 200: processed, duplicate, or in progress elsewhere
- 400: missing or invalid signature (no state changed)
- 500: unexpected processing failure (event marked FAILED)

Usage:
    from billing.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from billing.exceptions import SignatureInvalid
from billing.webhooks.reconciler import WebhookReconciler

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive, verify and process a Stripe webhook event.

    Security:
    - Signature verification prevents spoofed webhooks
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    signature = request.headers.get("Stripe-Signature", "")

    try:
        ack = WebhookReconciler().handle(request.body, signature)
    except SignatureInvalid as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": e.message},
        )
        return JsonResponse(e.to_dict(), status=400)
    except Exception:
        # Already logged and recorded as FAILED by the reconciler
        return JsonResponse({"error": "Webhook processing failed"}, status=500)

    body = {"event_id": ack.stripe_event_id, "status": ack.status}
    return JsonResponse(body, status=500 if ack.should_retry else 200)
