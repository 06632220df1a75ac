"""
PaymentMethodVault: deferred card setup for off-session billing.

Cards are collected with a Stripe SetupIntent (usage="off_session"),
which verifies the card without moving funds. The payment method stays
at Stripe; jobs keep only its id.

Flow:
    1. ensure_customer(email, name) -> one Stripe customer per email
    2. begin_setup(customer, job) -> client_secret for the card form
    3. Client confirms the card with Stripe.js
    4. confirm_setup(setup_token) -> PaymentMethodResult, recorded on the job

Usage:
    from billing.services import PaymentMethodVault

    vault = PaymentMethodVault()
    customer = vault.ensure_customer("ops@firm.test", "Firm LLP")
    session = vault.begin_setup(customer, job=job)
    ...
    method = vault.confirm_setup(session.setup_token)
"""

from __future__ import annotations

from dataclasses import dataclass

from django.db import IntegrityError, transaction

from core.services import BaseService

from billing.adapters import IdempotencyKeyGenerator, PaymentMethodResult, StripeAdapter
from billing.config import GatewayConfig, get_gateway_config
from billing.exceptions import SetupFailed
from billing.models import BillingCustomer, BillingJob, normalize_email
from billing.services.billing_trigger import _as_uuid

# SetupIntent statuses that mean verification was declined
DECLINED_SETUP_STATUSES = frozenset({"requires_payment_method", "canceled"})


@dataclass(frozen=True)
class SetupSession:
    """Handle for an in-progress card setup."""

    setup_token: str
    client_secret: str
    customer_id: str


class PaymentMethodVault(BaseService):
    """
    Stores card payment methods for later off-session charges.

    Args:
        config: Gateway configuration (defaults to settings)
        gateway: Stripe adapter class (injected in tests)
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        gateway: type[StripeAdapter] = StripeAdapter,
    ) -> None:
        self.config = config or get_gateway_config()
        self.gateway = gateway
        self.gateway.configure(self.config)

    def get_publishable_key(self) -> str:
        return self.config.publishable_key

    # =========================================================================
    # Customers
    # =========================================================================

    def ensure_customer(self, email: str, name: str | None = None) -> BillingCustomer:
        """
        Return the customer for this email, creating it if needed.

        Lookup is exact and case-insensitive: local table first, then
        Stripe. Concurrent first calls converge through the unique email
        column and an idempotency key derived from the normalized email.
        """
        logger = self.get_logger()
        normalized = normalize_email(email)
        if not normalized:
            raise SetupFailed("An email address is required", error_code="EMAIL_REQUIRED")

        existing = BillingCustomer.objects.for_email(normalized)
        if existing:
            return existing

        remote = self.gateway.find_customer_by_email(normalized)
        if remote is None:
            remote = self.gateway.create_customer(
                normalized,
                name=name,
                metadata={"source": "client-portal"},
                idempotency_key=IdempotencyKeyGenerator.generate("customer", normalized),
            )
            logger.info(
                "Created Stripe customer",
                extra={"stripe_customer_id": remote.id},
            )

        try:
            with transaction.atomic():
                customer = BillingCustomer.objects.create(
                    email=normalized,
                    display_name=name or remote.name or "",
                    stripe_customer_id=remote.id,
                )
        except IntegrityError:
            # Lost the race to a concurrent call for the same email
            customer = BillingCustomer.objects.get(email=normalized)
        return customer

    # =========================================================================
    # Setup
    # =========================================================================

    def begin_setup(
        self,
        customer: BillingCustomer,
        job: BillingJob | None = None,
    ) -> SetupSession:
        """
        Start a deferred card setup. No funds move.

        When a job is given it is linked to the customer, and its id is
        carried in the SetupIntent metadata so confirm_setup can record
        the payment method on it.
        """
        metadata = {
            "purpose": "affidavit_billing",
            "source": "client-portal",
        }
        if job is not None:
            metadata["job_id"] = str(job.id)
            metadata["external_job_id"] = job.external_job_id
            if job.customer_id != customer.pk:
                BillingJob.objects.filter(pk=job.pk).update(customer=customer)
                job.customer = customer

        intent = self.gateway.create_setup_intent(customer.stripe_customer_id, metadata=metadata)

        self.get_logger().info(
            "Card setup started",
            extra={
                "setup_intent_id": intent.id,
                "stripe_customer_id": customer.stripe_customer_id,
                "job_id": metadata.get("job_id"),
            },
        )
        return SetupSession(
            setup_token=intent.id,
            client_secret=intent.client_secret,
            customer_id=customer.stripe_customer_id,
        )

    def confirm_setup(self, setup_token: str) -> PaymentMethodResult:
        """
        Finish a card setup.

        Raises:
            SetupFailed: Verification declined (details carry decline_code)
                or not finished yet (error_code SETUP_INCOMPLETE)
        """
        logger = self.get_logger()
        intent = self.gateway.retrieve_setup_intent(setup_token)
        log_context = {"setup_intent_id": intent.id, "status": intent.status}

        if intent.status != "succeeded":
            if intent.status in DECLINED_SETUP_STATUSES or intent.last_error_code:
                logger.warning(
                    "Card setup declined",
                    extra={**log_context, "decline_code": intent.last_error_code},
                )
                raise SetupFailed(
                    intent.last_error_message or "Card verification was declined",
                    details={
                        "setup_intent_id": intent.id,
                        "decline_code": intent.last_error_code,
                    },
                )
            raise SetupFailed(
                "Card setup has not completed yet",
                error_code="SETUP_INCOMPLETE",
                details={"setup_intent_id": intent.id, "status": intent.status},
            )

        if not intent.payment_method_id:
            raise SetupFailed(
                "Card setup finished without a payment method",
                details={"setup_intent_id": intent.id},
            )

        method = self.gateway.retrieve_payment_method(intent.payment_method_id)

        job_id = intent.metadata.get("job_id")
        if job_id:
            self._attach_to_job(job_id, method, intent.customer_id)

        logger.info(
            "Card setup confirmed",
            extra={**log_context, "payment_method_id": method.id, "job_id": job_id},
        )
        return method

    def _attach_to_job(
        self,
        job_id: str,
        method: PaymentMethodResult,
        stripe_customer_id: str | None,
    ) -> None:
        customer = None
        if stripe_customer_id:
            customer = BillingCustomer.objects.filter(
                stripe_customer_id=stripe_customer_id
            ).first()

        job_uuid = _as_uuid(job_id)
        with transaction.atomic():
            job = None
            if job_uuid is not None:
                job = BillingJob.objects.select_for_update().filter(pk=job_uuid).first()
            if job is None:
                self.get_logger().warning(
                    "Setup metadata names an unknown job",
                    extra={"job_id": job_id},
                )
                return

            update_fields = {"payment_method_id": method.id}
            if customer is not None:
                update_fields["customer"] = customer
            BillingJob.objects.filter(pk=job.pk).update(**update_fields)

            # Evaluate billing with the new method once committed
            from billing.tasks import evaluate_job

            transaction.on_commit(
                lambda: evaluate_job.delay(str(job.pk), source="payment_method_attached")
            )

    # =========================================================================
    # Stored Methods
    # =========================================================================

    def list_methods(self, customer_id: str) -> list[PaymentMethodResult]:
        """Card payment methods attached to a Stripe customer."""
        return self.gateway.list_payment_methods(customer_id)

    def remove_method(self, payment_method_id: str) -> PaymentMethodResult:
        """
        Detach a payment method immediately.

        Never blocked by jobs referencing it; those surface
        NoPaymentMethod on their next charge.
        """
        method = self.gateway.detach_payment_method(payment_method_id)
        self.get_logger().info(
            "Payment method detached",
            extra={"payment_method_id": payment_method_id},
        )
        return method
