"""
Stripe API adapter for deferred billing.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions. All Stripe calls should go through this
adapter to ensure consistent error handling, timeouts, idempotency,
and observability.

Features:
- Bounded timeouts on all API calls (via GatewayConfig)
- Automatic error translation to billing exceptions
- Structured logging with timing metrics
- Idempotency support for safe retries
- Thread-safe for use from Celery workers

Covered Stripe resources:
- Customer: create, list by email
- SetupIntent: create (usage=off_session), retrieve
- PaymentIntent: create+confirm off session, retrieve, list for a customer
- PaymentMethod: list, retrieve, detach
- Refund: create
- Webhook: construct_event

Usage:
    from billing.adapters import StripeAdapter, OffSessionChargeParams

    result = StripeAdapter.create_off_session_payment_intent(
        OffSessionChargeParams(
            amount_cents=8500,
            currency="usd",
            customer_id="cus_xxx",
            payment_method_id="pm_xxx",
            idempotency_key=IdempotencyKeyGenerator.generate("charge", attempt.id),
            metadata={"job_id": str(job.id), "charge_attempt_id": str(attempt.id)},
        )
    )
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from billing.exceptions import (
    NoPaymentMethod,
    SignatureInvalid,
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeError,
    StripeInsufficientFundsError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from billing.config import GatewayConfig


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class OffSessionChargeParams:
    """
    Parameters for an off-session, immediately confirmed PaymentIntent.

    Attributes:
        amount_cents: Charge amount in smallest currency unit (e.g., cents)
        currency: ISO 4217 currency code
        customer_id: Stripe Customer ID owning the payment method
        payment_method_id: Stored payment method (pm_xxx)
        idempotency_key: Unique key; re-submitting with it returns the same intent
        metadata: Key-value pairs attached to the PaymentIntent
        description: Statement description shown in the Stripe dashboard
    """

    amount_cents: int
    currency: str
    customer_id: str
    payment_method_id: str
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)
    description: str | None = None

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.currency:
            raise ValueError("currency is required")
        if not self.customer_id:
            raise ValueError("customer_id is required")
        if not self.payment_method_id:
            raise ValueError("payment_method_id is required")


@dataclass
class CustomerResult:
    """Result from Stripe Customer operations."""

    id: str
    email: str | None
    name: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class SetupIntentResult:
    """
    Result from Stripe SetupIntent operations.

    Attributes:
        id: SetupIntent ID (seti_xxx)
        status: requires_payment_method, requires_action, processing,
            succeeded or canceled
        client_secret: Secret for the client-side card form
        customer_id: Customer the payment method is saved to
        payment_method_id: Attached payment method once succeeded
        metadata: Attached metadata
        last_error_code: Decline or error code from last_setup_error
        last_error_message: Human-readable message from last_setup_error
    """

    id: str
    status: str
    client_secret: str | None = None
    customer_id: str | None = None
    payment_method_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    last_error_code: str | None = None
    last_error_message: str | None = None


@dataclass
class PaymentIntentResult:
    """
    Result from Stripe PaymentIntent operations.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: Current status (succeeded, processing, requires_action, ...)
        amount_cents: Amount in cents
        currency: Currency code
        amount_received: Amount actually collected in cents
        customer_id: Customer charged
        payment_method_id: Payment method charged
        metadata: Attached metadata
        last_error_code: Decline code from last_payment_error (if any)
        last_error_message: Message from last_payment_error (if any)
        created_at: When the intent was created at Stripe
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    amount_received: int = 0
    customer_id: str | None = None
    payment_method_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    last_error_code: str | None = None
    last_error_message: str | None = None
    created_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass
class PaymentMethodResult:
    """
    A card payment method as stored at Stripe.

    Stripe owns the payment method; jobs keep only its id.
    """

    id: str
    customer_id: str | None
    brand: str | None = None
    last4: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "brand": self.brand,
            "last4": self.last4,
            "exp_month": self.exp_month,
            "exp_year": self.exp_year,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount in cents
        currency: Currency code
        status: Refund status (succeeded, pending, failed, canceled)
        payment_intent_id: Original PaymentIntent ID
        metadata: Attached metadata
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str
    metadata: dict[str, str] = field(default_factory=dict)


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same inputs always produce the same key, so a charge attempt that
    is re-submitted after a timeout returns the original PaymentIntent.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="charge",
            entity_id=charge_attempt.id,
        )
        # Result: "charge:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        """
        Generate a deterministic idempotency key.

        Args:
            operation: The Stripe operation (charge, refund, customer, ...)
            entity_id: The domain entity ID (charge_attempt_id, email, ...)
            attempt: Attempt number (default: 1)

        Returns:
            Formatted idempotency key string
        """
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


def is_retryable_stripe_error(error: Exception) -> bool:
    """
    Check if a translated Stripe error is transient.

    Args:
        error: The exception to check

    Returns:
        True if the error is a Stripe error that can be retried
    """
    if isinstance(error, StripeError):
        return getattr(error, "is_retryable", False)
    return False


# =============================================================================
# Stripe Adapter
# =============================================================================

# Operations where a missing resource means the payment method is gone
PAYMENT_METHOD_OPERATIONS = frozenset(
    {"retrieve_payment_method", "detach_payment_method"}
)



class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are classmethods - the only state is the Stripe SDK's
    module-level configuration, applied by configure().

    Usage:
        StripeAdapter.configure(GatewayConfig.from_settings())
        customer = StripeAdapter.create_customer("ops@firm.test", "Firm LLP")
    """

    _configured_with: GatewayConfig | None = None

    # =========================================================================
    # Configuration
    # =========================================================================

    @classmethod
    def configure(cls, config: GatewayConfig | None = None) -> None:
        """
        Configure the Stripe SDK with API key, timeout and retries.

        Args:
            config: Gateway configuration (defaults to the cached settings config)
        """
        if config is None:
            from billing.config import get_gateway_config

            config = get_gateway_config()

        if cls._configured_with is config:
            return

        stripe.api_key = config.secret_key
        stripe.max_network_retries = config.max_network_retries
        stripe.default_http_client = stripe.RequestsClient(
            timeout=config.timeout_seconds
        )
        cls._configured_with = config

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _call(
        cls,
        log_context: dict[str, Any],
        request: Callable[[], Any],
        level: int = logging.INFO,
    ) -> Any:
        """
        Run one Stripe request with timing, logging and error translation.

        Args:
            log_context: Structured logging context for this operation
            request: Zero-argument callable performing the SDK call
            level: Log level for start/completion records

        Returns:
            The Stripe SDK response object
        """
        if cls._configured_with is None:
            cls.configure()
        logger = cls.get_logger()

        start_time = time.time()
        logger.log(level, "Starting Stripe operation", extra=log_context)

        try:
            response = request()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.log(
            level,
            "Stripe operation completed",
            extra={
                **log_context,
                "stripe_id": getattr(response, "id", None),
                "duration_ms": duration_ms,
            },
        )
        return response

    # =========================================================================
    # Customers
    # =========================================================================

    @classmethod
    def create_customer(
        cls,
        email: str,
        name: str | None = None,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> CustomerResult:
        """
        Create a Stripe Customer.

        Args:
            email: Customer email (already normalized by the caller)
            name: Display name
            metadata: Optional metadata dict
            idempotency_key: Key that makes concurrent first calls converge

        Returns:
            CustomerResult for the new (or idempotently replayed) customer
        """
        log_context = {
            "operation": "create_customer",
            "idempotency_key": idempotency_key,
        }

        params: dict[str, Any] = {"email": email, "metadata": metadata or {}}
        if name:
            params["name"] = name
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        customer = cls._call(log_context, lambda: stripe.Customer.create(**params))
        return cls._to_customer_result(customer)

    @classmethod
    def find_customer_by_email(cls, email: str) -> CustomerResult | None:
        """
        Find an existing Stripe Customer by exact, case-insensitive email.

        Stripe's email filter is case-sensitive, so results are compared
        again after lower-casing both sides.

        Returns:
            The oldest matching customer, or None
        """
        log_context = {"operation": "find_customer_by_email"}

        customers = cls._call(
            log_context,
            lambda: stripe.Customer.list(email=email, limit=10),
            level=logging.DEBUG,
        )
        matches = [
            c for c in customers.data if (c.email or "").lower() == email.lower()
        ]
        if not matches:
            return None
        oldest = min(matches, key=lambda c: c.created or 0)
        return cls._to_customer_result(oldest)

    # =========================================================================
    # SetupIntents
    # =========================================================================

    @classmethod
    def create_setup_intent(
        cls,
        customer_id: str,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> SetupIntentResult:
        """
        Create a SetupIntent for off-session reuse of a card.

        No funds move. The returned client_secret is handed to the
        client-side card form.
        """
        log_context = {
            "operation": "create_setup_intent",
            "customer_id": customer_id,
        }

        params: dict[str, Any] = {
            "customer": customer_id,
            "usage": "off_session",
            "payment_method_types": ["card"],
            "metadata": metadata or {},
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        intent = cls._call(log_context, lambda: stripe.SetupIntent.create(**params))
        return cls._to_setup_intent_result(intent)

    @classmethod
    def retrieve_setup_intent(cls, setup_intent_id: str) -> SetupIntentResult:
        """Retrieve a SetupIntent by ID."""
        log_context = {
            "operation": "retrieve_setup_intent",
            "setup_intent_id": setup_intent_id,
        }

        intent = cls._call(
            log_context,
            lambda: stripe.SetupIntent.retrieve(setup_intent_id),
            level=logging.DEBUG,
        )
        return cls._to_setup_intent_result(intent)

    # =========================================================================
    # PaymentIntents
    # =========================================================================

    @classmethod
    def create_off_session_payment_intent(
        cls,
        params: OffSessionChargeParams,
    ) -> PaymentIntentResult:
        """
        Create and confirm an off-session PaymentIntent.

        Args:
            params: Parameters for the charge

        Returns:
            PaymentIntentResult; status is usually succeeded or processing

        Raises:
            StripeCardDeclinedError: Card was declined (details carry
                payment_intent_id when Stripe created one)
            StripeInsufficientFundsError: Insufficient funds
            NoPaymentMethod: Payment method missing or detached
            StripeTimeoutError: Outcome unknown, retry with the same key
            StripeAPIUnavailableError: Stripe unreachable, retry with the same key
        """
        log_context = {
            "operation": "create_off_session_payment_intent",
            "amount_cents": params.amount_cents,
            "currency": params.currency,
            "idempotency_key": params.idempotency_key,
            "job_id": params.metadata.get("job_id"),
            "charge_attempt_id": params.metadata.get("charge_attempt_id"),
        }

        request: dict[str, Any] = {
            "amount": params.amount_cents,
            "currency": params.currency,
            "customer": params.customer_id,
            "payment_method": params.payment_method_id,
            "confirm": True,
            "off_session": True,
            "metadata": params.metadata,
            "idempotency_key": params.idempotency_key,
        }
        if params.description:
            request["description"] = params.description

        intent = cls._call(log_context, lambda: stripe.PaymentIntent.create(**request))
        return cls._to_payment_intent_result(intent)

    @classmethod
    def retrieve_payment_intent(cls, payment_intent_id: str) -> PaymentIntentResult:
        """Retrieve a PaymentIntent by ID."""
        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": payment_intent_id,
        }

        intent = cls._call(
            log_context,
            lambda: stripe.PaymentIntent.retrieve(payment_intent_id),
            level=logging.DEBUG,
        )
        return cls._to_payment_intent_result(intent)

    @classmethod
    def list_payment_intents_for_job(
        cls,
        customer_id: str,
        job_id: str,
        limit: int = 100,
    ) -> list[PaymentIntentResult]:
        """
        List a customer's PaymentIntents whose metadata names the job.

        Used for the gateway-side payment history of a job.
        """
        log_context = {
            "operation": "list_payment_intents_for_job",
            "customer_id": customer_id,
            "job_id": job_id,
        }

        intents = cls._call(
            log_context,
            lambda: stripe.PaymentIntent.list(customer=customer_id, limit=min(limit, 100)),
        )
        return [
            cls._to_payment_intent_result(intent)
            for intent in intents.data
            if (intent.metadata or {}).get("job_id") == job_id
        ]

    # =========================================================================
    # PaymentMethods
    # =========================================================================

    @classmethod
    def list_payment_methods(cls, customer_id: str) -> list[PaymentMethodResult]:
        """List card payment methods attached to a customer."""
        log_context = {
            "operation": "list_payment_methods",
            "customer_id": customer_id,
        }

        methods = cls._call(
            log_context,
            lambda: stripe.PaymentMethod.list(customer=customer_id, type="card"),
            level=logging.DEBUG,
        )
        return [cls._to_payment_method_result(pm) for pm in methods.data]

    @classmethod
    def retrieve_payment_method(cls, payment_method_id: str) -> PaymentMethodResult:
        """
        Retrieve a payment method.

        Raises:
            NoPaymentMethod: The payment method does not exist
        """
        log_context = {
            "operation": "retrieve_payment_method",
            "payment_method_id": payment_method_id,
        }

        method = cls._call(
            log_context,
            lambda: stripe.PaymentMethod.retrieve(payment_method_id),
            level=logging.DEBUG,
        )
        return cls._to_payment_method_result(method)

    @classmethod
    def detach_payment_method(cls, payment_method_id: str) -> PaymentMethodResult:
        """
        Detach a payment method from its customer.

        Detachment is terminal: the method can no longer be charged.
        """
        log_context = {
            "operation": "detach_payment_method",
            "payment_method_id": payment_method_id,
        }

        method = cls._call(
            log_context,
            lambda: stripe.PaymentMethod.detach(payment_method_id),
        )
        return cls._to_payment_method_result(method)

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def create_refund(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        amount_cents: int | None = None,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Create a refund for a PaymentIntent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
            idempotency_key: Unique key for idempotent refund
            amount_cents: Amount to refund (None for full refund)
            reason: Refund reason (duplicate, fraudulent, requested_by_customer)
            metadata: Optional metadata dict

        Raises:
            StripeInvalidRequestError: Refund not possible
        """
        log_context = {
            "operation": "create_refund",
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }

        refund_params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "metadata": metadata or {},
            "idempotency_key": idempotency_key,
        }
        if amount_cents is not None:
            refund_params["amount"] = amount_cents
        if reason:
            refund_params["reason"] = reason

        refund = cls._call(log_context, lambda: stripe.Refund.create(**refund_params))
        return RefundResult(
            id=refund.id,
            amount_cents=refund.amount,
            currency=refund.currency,
            status=refund.status,
            payment_intent_id=refund.payment_intent,
            metadata=dict(refund.metadata or {}),
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
        secret: str | None = None,
    ) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Args:
            payload: Raw webhook payload bytes
            signature: Stripe-Signature header value
            secret: Signing secret (defaults to STRIPE_WEBHOOK_SECRET)

        Returns:
            Parsed event data dict

        Raises:
            SignatureInvalid: Missing secret, bad signature or unparseable payload
        """
        if secret is None:
            from billing.config import get_gateway_config

            secret = get_gateway_config().webhook_secret

        if not secret:
            raise SignatureInvalid("Webhook signing secret is not configured")

        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid(
                "Invalid webhook signature",
                details={"error": str(e)},
            )
        except ValueError as e:
            raise SignatureInvalid(
                "Invalid webhook payload",
                details={"error": str(e)},
            )
        return event.to_dict()

    # =========================================================================
    # Result Mapping
    # =========================================================================

    @staticmethod
    def _timestamp(value: int | None) -> datetime | None:
        if not value:
            return None
        return datetime.fromtimestamp(value, tz=timezone.utc)

    @staticmethod
    def _object_id(value: Any) -> str | None:
        """Stripe fields may hold an id string or an expanded object."""
        if value is None or isinstance(value, str):
            return value
        return getattr(value, "id", None)

    @classmethod
    def _to_customer_result(cls, customer: Any) -> CustomerResult:
        return CustomerResult(
            id=customer.id,
            email=customer.email,
            name=customer.name,
            metadata=dict(customer.metadata or {}),
        )

    @classmethod
    def _to_setup_intent_result(cls, intent: Any) -> SetupIntentResult:
        error = intent.last_setup_error
        return SetupIntentResult(
            id=intent.id,
            status=intent.status,
            client_secret=intent.client_secret,
            customer_id=cls._object_id(intent.customer),
            payment_method_id=cls._object_id(intent.payment_method),
            metadata=dict(intent.metadata or {}),
            last_error_code=(error.get("decline_code") or error.get("code")) if error else None,
            last_error_message=error.get("message") if error else None,
        )

    @classmethod
    def _to_payment_intent_result(cls, intent: Any) -> PaymentIntentResult:
        error = intent.last_payment_error
        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            currency=intent.currency,
            amount_received=intent.amount_received or 0,
            customer_id=cls._object_id(intent.customer),
            payment_method_id=cls._object_id(intent.payment_method),
            metadata=dict(intent.metadata or {}),
            last_error_code=(error.get("decline_code") or error.get("code")) if error else None,
            last_error_message=error.get("message") if error else None,
            created_at=cls._timestamp(intent.created),
        )

    @classmethod
    def _to_payment_method_result(cls, method: Any) -> PaymentMethodResult:
        card = method.card or {}
        return PaymentMethodResult(
            id=method.id,
            customer_id=cls._object_id(method.customer),
            brand=card.get("brand"),
            last4=card.get("last4"),
            exp_month=card.get("exp_month"),
            exp_year=card.get("exp_year"),
            created_at=cls._timestamp(method.created),
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    @staticmethod
    def _decline_code(error: stripe.CardError) -> str | None:
        decline_code = getattr(error, "decline_code", None)
        if decline_code:
            return decline_code
        body = getattr(error, "json_body", None) or {}
        return (body.get("error") or {}).get("decline_code")

    @staticmethod
    def _payment_intent_from_error(error: stripe.StripeError) -> str | None:
        body = getattr(error, "json_body", None) or {}
        intent = (body.get("error") or {}).get("payment_intent") or {}
        return intent.get("id")

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to billing exceptions.

        Args:
            error: The Stripe exception
            log_context: Logging context dict
            duration_ms: Operation duration for logging

        Raises:
            StripeCardDeclinedError: Card was declined
            StripeInsufficientFundsError: Insufficient funds
            NoPaymentMethod: Payment method missing or detached
            StripeInvalidRequestError: Invalid request parameters
            StripeRateLimitError: Rate limited
            StripeTimeoutError: Request timed out, outcome unknown
            StripeAPIUnavailableError: API unavailable
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            decline_code = cls._decline_code(error)
            details = {}
            payment_intent_id = cls._payment_intent_from_error(error)
            if payment_intent_id:
                details["payment_intent_id"] = payment_intent_id

            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )

            error_class = (
                StripeInsufficientFundsError
                if decline_code == "insufficient_funds"
                else StripeCardDeclinedError
            )
            raise error_class(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
                details=details,
            )

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )

            if getattr(error, "param", None) == "payment_method" or (
                error.code == "resource_missing"
                and log_context.get("operation") in PAYMENT_METHOD_OPERATIONS
            ):
                raise NoPaymentMethod(
                    "Stored payment method is missing or detached",
                    details={"stripe_code": error.code},
                )

            raise StripeInvalidRequestError(
                str(error),
                stripe_code=error.code,
            )

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            )

        elif isinstance(error, stripe.APIConnectionError):
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            if "timed out" in str(error).lower() or "timeout" in str(error).lower():
                raise StripeTimeoutError(
                    "Stripe request timed out. Outcome unknown.",
                    stripe_code="timeout",
                )
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            )

        elif isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            )

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            )

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            )
