"""
Payment gateway adapters.

All Stripe API calls go through StripeAdapter to ensure consistent
error handling, timeouts, idempotency, and observability.
"""

from billing.adapters.stripe_adapter import (
    CustomerResult,
    IdempotencyKeyGenerator,
    OffSessionChargeParams,
    PaymentIntentResult,
    PaymentMethodResult,
    RefundResult,
    SetupIntentResult,
    StripeAdapter,
    is_retryable_stripe_error,
)

__all__ = [
    "CustomerResult",
    "IdempotencyKeyGenerator",
    "OffSessionChargeParams",
    "PaymentIntentResult",
    "PaymentMethodResult",
    "RefundResult",
    "SetupIntentResult",
    "StripeAdapter",
    "is_retryable_stripe_error",
]
