"""
Billing app configuration.

This app provides the deferred-billing engine:
- Card setup for off-session charges (PaymentMethodVault)
- At-most-once charging on affidavit signature (BillingTrigger)
- Stripe webhook reconciliation and invoice propagation
"""

from django.apps import AppConfig


class BillingConfig(AppConfig):
    """Configuration for the billing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"
    verbose_name = "Billing"

    def ready(self):
        # Settings-change receiver and webhook handler registry
        import billing.config  # noqa: F401
        import billing.webhooks.handlers  # noqa: F401
