"""
Webhook handling for payment events from Stripe.

Webhooks are verified, claimed in the WebhookEvent ledger, and
processed synchronously through the handler registry.

Usage:
    # In urls.py
    from billing.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
    ]
"""
