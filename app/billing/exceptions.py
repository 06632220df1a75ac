"""
Billing errors: domain failures, translated Stripe errors and concurrency
conflicts. Views map them to HTTP statuses through billing.views.ERROR_STATUS.

Exception Hierarchy:
    BillingError (base for billing domain)
    ├── SetupFailed - Card verification declined or incomplete
    ├── NoPaymentMethod - No attached payment method for the job's customer
    ├── ChargeDeclined - Off-session charge declined by the issuer
    ├── SignatureInvalid - Webhook signature verification failed
    ├── CrossSystemDriftError - Case-management propagation failed
    └── StripeError - Base for all translated Stripe errors
        ├── StripeCardDeclinedError - Card declined (also ChargeDeclined)
        ├── StripeInsufficientFundsError - Insufficient funds (also ChargeDeclined)
        ├── StripeInvalidRequestError - Invalid request params (permanent)
        ├── StripeRateLimitError - Rate limited (also UpstreamUnavailable)
        ├── StripeAPIUnavailableError - API unavailable (also UpstreamUnavailable)
        └── StripeTimeoutError - Request timeout (also UpstreamUnavailable)

    UpstreamUnavailable - Outcome unknown, retry later (inherits ExternalServiceError)

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Usage:
    from billing.exceptions import (
        ChargeDeclined,
        NoPaymentMethod,
        UpstreamUnavailable,
    )

    try:
        BillingTrigger().initiate_charge(job, manual=True)
    except ChargeDeclined as e:
        return Response(e.to_dict(), status=402)
    except UpstreamUnavailable as e:
        # Job stays CHARGE_IN_FLIGHT; the webhook or the stale charge
        # sweep resolves it
        return Response(e.to_dict(), status=503)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError, ExternalServiceError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Billing Domain Exceptions
# =============================================================================


class BillingError(BaseApplicationError):
    default_error_code: str = "BILLING_ERROR"


class SetupFailed(BillingError):
    """
    Raised when deferred card setup does not produce a usable payment method.

    The decline reason reported by Stripe (if any) is carried in
    details["decline_code"] so the client form can show it.

    Example:
        if intent.status == "requires_payment_method":
            raise SetupFailed(
                "Your card could not be verified",
                details={"decline_code": "incorrect_cvc"},
            )
    """

    default_error_code: str = "SETUP_FAILED"


class NoPaymentMethod(BillingError):
    """
    Raised when a charge needs a payment method and none is attached.

    Covers jobs that never completed setup as well as jobs whose stored
    payment method was detached after setup.
    """

    default_error_code: str = "NO_PAYMENT_METHOD"


class ChargeDeclined(BillingError):
    """
    Raised when an off-session charge is declined.

    The charge attempt is resolved as failed before this is raised,
    so the job is already CHARGE_FAILED and may be retried.
    """

    default_error_code: str = "CHARGE_DECLINED"


class SignatureInvalid(BillingError):
    """
    Raised when a webhook payload fails Stripe signature verification.

    No state is changed when this is raised. The webhook view answers 400.
    """

    default_error_code: str = "SIGNATURE_INVALID"


class CrossSystemDriftError(BillingError):
    """
    A charge succeeded but the case-management invoice was not updated.

    Never surfaced to API clients or to Stripe: InvoiceSync catches it,
    persists a CrossSystemDrift row and logs it for alerting.
    """

    default_error_code: str = "CROSS_SYSTEM_DRIFT"


class UpstreamUnavailable(ExternalServiceError):
    """
    An upstream call timed out or could not connect.

    The outcome of the call is unknown. For charge submission the job
    stays CHARGE_IN_FLIGHT and is never marked failed speculatively.
    """

    default_error_code: str = "UPSTREAM_UNAVAILABLE"
    is_retryable: bool = True


# =============================================================================
# Stripe Errors (translated by StripeAdapter)
# =============================================================================


class StripeError(BillingError):
    """
    A Stripe SDK error in our hierarchy.

    stripe_code and decline_code are copied into details. is_retryable
    tells tasks whether resubmitting with the same idempotency key can help.
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


class StripeCardDeclinedError(StripeError, ChargeDeclined):
    """
    Issuer declined the card (generic_decline, lost_card, expired_card,
    authentication_required for off-session charges, ...).
    """

    default_error_code: str = "CARD_DECLINED"


class StripeInsufficientFundsError(StripeError, ChargeDeclined):
    default_error_code: str = "INSUFFICIENT_FUNDS"


class StripeInvalidRequestError(StripeError):
    """Stripe rejected the request itself; nothing was charged."""

    default_error_code: str = "INVALID_STRIPE_REQUEST"


class StripeRateLimitError(StripeError, UpstreamUnavailable):
    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError, UpstreamUnavailable):
    """Connection failure or a 5xx from Stripe."""

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError, UpstreamUnavailable):
    """
    No response in STRIPE_API_TIMEOUT_SECONDS. Stripe may still have
    charged; resubmitting with the attempt's idempotency key returns the
    original PaymentIntent.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency
# =============================================================================


class StaleRecordError(ConflictError):
    """A compare-and-set found a different version (details: pk, expected_version)."""

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """DistributedLock was held elsewhere (details: key, timeout)."""

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    A billing_state move the FSM does not allow, re-raised from
    django-fsm's TransitionNotAllowed with current and target state in
    details.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"
