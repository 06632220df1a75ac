"""
Billing services.

- PaymentMethodVault: Deferred card setup and stored payment methods
- BillingTrigger: Trigger conditions, at-most-once charging, refunds
- InvoiceSync: Propagation of paid status to the case-management invoice
"""

from billing.services.billing_trigger import (
    BillingTrigger,
    TriggerDecision,
    TriggerOutcome,
)
from billing.services.invoice_sync import InvoiceSync
from billing.services.vault import PaymentMethodVault, SetupSession

__all__ = [
    "BillingTrigger",
    "InvoiceSync",
    "PaymentMethodVault",
    "SetupSession",
    "TriggerDecision",
    "TriggerOutcome",
]
