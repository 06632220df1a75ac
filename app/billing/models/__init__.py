"""
Billing domain models.

- BillingCustomer: Local dedup index for Stripe customers
- BillingJob: Billing state of one case-management job
- ChargeAttempt: One off-session PaymentIntent submission
- Refund: Refund issued against a succeeded attempt
- WebhookEvent: Stripe webhook idempotency ledger
- CrossSystemDrift: Failed propagation to the case-management system
"""

from billing.models.charge_attempt import ChargeAttempt, Refund
from billing.models.customer import BillingCustomer, normalize_email
from billing.models.drift import CrossSystemDrift
from billing.models.job import BillingJob
from billing.models.webhook_event import WebhookEvent

__all__ = [
    "BillingCustomer",
    "BillingJob",
    "ChargeAttempt",
    "CrossSystemDrift",
    "Refund",
    "WebhookEvent",
    "normalize_email",
]
