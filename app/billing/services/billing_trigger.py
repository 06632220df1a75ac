"""
BillingTrigger: decides when a job may be charged, and charges it at most once.

A job may be charged iff its affidavit is signed, its billing state is
UNBILLED or CHARGE_FAILED, a payment method is attached for its customer,
and its amount is positive. Conditions are checked in a fixed order
(payment method, amount, affidavit, state) and the first unmet one is
recorded on the job as last_unmet_condition.

Charging is a three-step protocol:

1. Compare-and-set the job from a chargeable state to CHARGE_IN_FLIGHT,
   guarded by its version, and create the ChargeAttempt in the same
   transaction. Losing the race is a no-op.
2. Submit an off-session PaymentIntent with an idempotency key derived
   from the attempt id.
3. Resolve through resolve_succeeded/resolve_failed, the same path the
   Stripe webhooks use. Both are idempotent.

A timeout or connection failure during submission is an unknown outcome:
the job stays CHARGE_IN_FLIGHT until a webhook arrives or the
reconcile_stale_charges task re-submits with the same idempotency key.

Usage:
    from billing.services import BillingTrigger

    decision = BillingTrigger().initiate_charge(job, source="affidavit_signed")
    if decision.unmet_condition:
        ...
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from django.db import transaction
from django.utils import timezone

from core.exceptions import NotFoundError, ValidationError
from core.services import BaseService, ServiceResult

from billing.adapters import IdempotencyKeyGenerator, OffSessionChargeParams, StripeAdapter
from billing.config import GatewayConfig, get_gateway_config
from billing.exceptions import (
    ChargeDeclined,
    InvalidStateTransitionError,
    NoPaymentMethod,
    StripeError,
    UpstreamUnavailable,
)
from billing.locks import DistributedLock
from billing.models import BillingJob, ChargeAttempt, CrossSystemDrift, Refund
from billing.services.invoice_sync import InvoiceSync
from billing.state_machines import (
    BillingState,
    ChargeAttemptStatus,
    DriftKind,
    UnmetCondition,
)

if TYPE_CHECKING:
    from billing.adapters import PaymentIntentResult


# Intent statuses Stripe reports for a charge that will not complete
FAILED_INTENT_STATUSES = frozenset({"requires_payment_method", "canceled"})

# Stripe forgets idempotency keys after this; re-submitting later could charge twice
IDEMPOTENCY_KEY_TTL = timedelta(hours=24)


class TriggerOutcome(str, enum.Enum):
    SKIPPED = "skipped"
    CONTENDED = "contended"
    SUBMITTED = "submitted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TriggerDecision:
    """
    Outcome of evaluating or initiating a charge.

    Attributes:
        job_id: BillingJob id
        outcome: What happened (see TriggerOutcome)
        unmet_condition: First unmet condition when outcome is SKIPPED
        charge_attempt_id: Attempt created by this call, if any
        payment_intent_id: PaymentIntent returned by Stripe, if any
        detail: Decline or error message
    """

    job_id: str
    outcome: TriggerOutcome
    unmet_condition: str | None = None
    charge_attempt_id: str | None = None
    payment_intent_id: str | None = None
    detail: str | None = None

    @property
    def initiated(self) -> bool:
        return self.charge_attempt_id is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "outcome": self.outcome.value,
            "unmet_condition": self.unmet_condition,
            "charge_attempt_id": self.charge_attempt_id,
            "payment_intent_id": self.payment_intent_id,
            "detail": self.detail,
        }


def _as_uuid(value: Any) -> uuid.UUID | None:
    if value in (None, ""):
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class BillingTrigger(BaseService):
    """
    Billing state machine driver for jobs.

    Args:
        config: Gateway configuration (defaults to settings)
        gateway: Stripe adapter class (injected in tests)
        invoice_sync: Invoice propagation service
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        gateway: type[StripeAdapter] = StripeAdapter,
        invoice_sync: InvoiceSync | None = None,
    ) -> None:
        self.config = config or get_gateway_config()
        self.gateway = gateway
        self.gateway.configure(self.config)
        self.invoice_sync = invoice_sync or InvoiceSync()

    # =========================================================================
    # Evaluation
    # =========================================================================

    def _first_unmet_condition(self, job: BillingJob, *, manual: bool) -> str | None:
        if not job.payment_method_id or not job.customer_id:
            return UnmetCondition.NO_PAYMENT_METHOD
        if job.amount_cents <= 0:
            return UnmetCondition.NON_POSITIVE_AMOUNT
        if not job.affidavit_signed:
            return UnmetCondition.AFFIDAVIT_NOT_SIGNED
        if not job.is_chargeable_state:
            return UnmetCondition.INELIGIBLE_STATE
        if manual:
            return None
        automatic_attempts = job.charge_attempts.filter(is_manual=False).count()
        if automatic_attempts >= self.config.max_automatic_attempts:
            return UnmetCondition.RETRY_LIMIT_REACHED
        if job.due_for_billing_at and job.due_for_billing_at > timezone.now():
            return UnmetCondition.NOT_YET_DUE
        return None

    def _record_evaluation(self, job: BillingJob, condition: str | None, source: str) -> None:
        now = timezone.now()
        # Bookkeeping only; the version stays put so a following CAS still matches
        BillingJob.objects.filter(pk=job.pk).update(
            last_unmet_condition=condition,
            last_evaluated_at=now,
        )
        job.last_unmet_condition = condition
        job.last_evaluated_at = now

        if condition:
            self.get_logger().info(
                "Billing condition unmet",
                extra={
                    "job_id": str(job.id),
                    "external_job_id": job.external_job_id,
                    "condition": str(condition),
                    "source": source,
                    "billing_state": job.billing_state,
                },
            )

    def evaluate(
        self,
        job: BillingJob,
        source: str,
        *,
        manual: bool = False,
    ) -> TriggerDecision:
        """
        Check the trigger conditions and record the first unmet one.

        Does not call Stripe and does not change billing state.
        """
        condition = self._first_unmet_condition(job, manual=manual)
        self._record_evaluation(job, condition, source)
        return TriggerDecision(
            job_id=str(job.id),
            outcome=TriggerOutcome.SKIPPED if condition else TriggerOutcome.SUBMITTED,
            unmet_condition=str(condition) if condition else None,
        )

    def _skip(self, job: BillingJob, condition: str, source: str, detail: str | None = None):
        self._record_evaluation(job, condition, source)
        return TriggerDecision(
            job_id=str(job.id),
            outcome=TriggerOutcome.SKIPPED,
            unmet_condition=str(condition),
            detail=detail,
        )

    def _payment_method_attached(self, job: BillingJob) -> bool:
        try:
            method = self.gateway.retrieve_payment_method(job.payment_method_id)
        except NoPaymentMethod:
            return False
        return method.customer_id == job.customer.stripe_customer_id

    # =========================================================================
    # Initiation
    # =========================================================================

    def initiate_charge(
        self,
        job: BillingJob,
        *,
        source: str = "affidavit_signed",
        manual: bool = False,
    ) -> TriggerDecision:
        """
        Charge the job if every trigger condition holds.

        Args:
            job: The job to charge
            source: What prompted the call (stored on the attempt as trigger)
            manual: Operator or client initiated; ignores the automatic
                retry cap and surfaces failures as exceptions

        Returns:
            TriggerDecision describing what happened

        Raises (manual only):
            NoPaymentMethod: No attached payment method
            ChargeDeclined: The issuer declined; job is CHARGE_FAILED
            UpstreamUnavailable: Outcome unknown; job stays CHARGE_IN_FLIGHT,
                or Stripe could not confirm the payment method before claiming
        """
        logger = self.get_logger()
        decision = self.evaluate(job, source, manual=manual)
        if decision.unmet_condition:
            if manual and decision.unmet_condition == UnmetCondition.NO_PAYMENT_METHOD:
                raise NoPaymentMethod(
                    "No stored payment method for this job",
                    details={"job_id": str(job.id)},
                )
            return decision

        try:
            attached = self._payment_method_attached(job)
        except UpstreamUnavailable as e:
            if manual:
                raise
            logger.warning(
                "Payment method check unavailable; charge deferred",
                extra={"job_id": str(job.id), "source": source, "error_code": e.error_code},
            )
            return TriggerDecision(
                job_id=str(job.id),
                outcome=TriggerOutcome.UNKNOWN,
                detail=e.message,
            )

        if not attached:
            decision = self._skip(
                job,
                UnmetCondition.NO_PAYMENT_METHOD,
                source,
                detail="Payment method is detached",
            )
            if manual:
                raise NoPaymentMethod(
                    "Stored payment method is no longer attached",
                    details={"job_id": str(job.id), "payment_method_id": job.payment_method_id},
                )
            return decision

        attempt_id = uuid.uuid4()
        with transaction.atomic():
            if not BillingJob.objects.claim_for_charge(job.pk, job.version):
                logger.info(
                    "Charge already claimed by a concurrent caller",
                    extra={"job_id": str(job.id), "source": source},
                )
                return TriggerDecision(job_id=str(job.id), outcome=TriggerOutcome.CONTENDED)

            attempt = ChargeAttempt.objects.create(
                id=attempt_id,
                job_id=job.pk,
                idempotency_key=IdempotencyKeyGenerator.generate("charge", attempt_id),
                payment_method_id=job.payment_method_id,
                amount_cents=job.amount_cents,
                currency=job.currency or self.config.currency,
                trigger=source,
                is_manual=manual,
            )

        logger.info(
            "Charge attempt created",
            extra={
                "job_id": str(job.id),
                "charge_attempt_id": str(attempt.id),
                "amount_cents": attempt.amount_cents,
                "source": source,
                "manual": manual,
            },
        )

        job = BillingJob.objects.select_related("customer").get(pk=job.pk)
        return self._submit(job, attempt, manual=manual)

    def _submit(
        self,
        job: BillingJob,
        attempt: ChargeAttempt,
        *,
        manual: bool,
    ) -> TriggerDecision:
        """Submit (or re-submit) the attempt's PaymentIntent and resolve what we can."""
        logger = self.get_logger()
        params = OffSessionChargeParams(
            amount_cents=attempt.amount_cents,
            currency=attempt.currency,
            customer_id=job.customer.stripe_customer_id,
            payment_method_id=attempt.payment_method_id,
            idempotency_key=attempt.idempotency_key,
            metadata={
                "job_id": str(job.id),
                "charge_attempt_id": str(attempt.id),
                "external_job_id": job.external_job_id,
                "trigger": attempt.trigger,
            },
            description=f"Process service job {job.external_job_id}",
        )

        try:
            intent = self.gateway.create_off_session_payment_intent(params)
        except ChargeDeclined as e:
            self.resolve_failed(
                charge_attempt_id=attempt.id,
                payment_intent_id=e.details.get("payment_intent_id"),
                failure_code=getattr(e, "decline_code", None) or e.error_code,
                failure_message=e.message,
            )
            if manual:
                raise
            return TriggerDecision(
                job_id=str(job.id),
                outcome=TriggerOutcome.FAILED,
                charge_attempt_id=str(attempt.id),
                payment_intent_id=e.details.get("payment_intent_id"),
                detail=e.message,
            )
        except NoPaymentMethod as e:
            self.resolve_failed(
                charge_attempt_id=attempt.id,
                failure_code=UnmetCondition.NO_PAYMENT_METHOD,
                failure_message=e.message,
            )
            if manual:
                raise
            return TriggerDecision(
                job_id=str(job.id),
                outcome=TriggerOutcome.FAILED,
                charge_attempt_id=str(attempt.id),
                detail=e.message,
            )
        except UpstreamUnavailable as e:
            logger.warning(
                "Charge outcome unknown; job stays in flight",
                extra={
                    "job_id": str(job.id),
                    "charge_attempt_id": str(attempt.id),
                    "error_code": e.error_code,
                },
            )
            if manual:
                raise
            return TriggerDecision(
                job_id=str(job.id),
                outcome=TriggerOutcome.UNKNOWN,
                charge_attempt_id=str(attempt.id),
                detail=e.message,
            )
        except StripeError as e:
            # Rejected request: nothing was charged
            self.resolve_failed(
                charge_attempt_id=attempt.id,
                failure_code=e.error_code,
                failure_message=e.message,
            )
            if manual:
                raise
            return TriggerDecision(
                job_id=str(job.id),
                outcome=TriggerOutcome.FAILED,
                charge_attempt_id=str(attempt.id),
                detail=e.message,
            )

        ChargeAttempt.objects.filter(
            pk=attempt.pk, payment_intent_id__isnull=True
        ).update(payment_intent_id=intent.id)

        return self._resolve_from_intent(job, attempt, intent)

    def _resolve_from_intent(
        self,
        job: BillingJob,
        attempt: ChargeAttempt,
        intent: PaymentIntentResult,
    ) -> TriggerDecision:
        if intent.succeeded:
            self.resolve_succeeded(charge_attempt_id=attempt.id, payment_intent_id=intent.id)
            outcome = TriggerOutcome.SUCCEEDED
        elif intent.status in FAILED_INTENT_STATUSES:
            self.resolve_failed(
                charge_attempt_id=attempt.id,
                payment_intent_id=intent.id,
                failure_code=intent.last_error_code or intent.status,
                failure_message=intent.last_error_message,
            )
            outcome = TriggerOutcome.FAILED
        else:
            # processing / requires_action: the webhook resolves it
            outcome = TriggerOutcome.SUBMITTED

        return TriggerDecision(
            job_id=str(job.id),
            outcome=outcome,
            charge_attempt_id=str(attempt.id),
            payment_intent_id=intent.id,
            detail=intent.last_error_message,
        )

    # =========================================================================
    # Resolution (shared with webhook handlers)
    # =========================================================================

    def _find_attempt(
        self,
        charge_attempt_id: Any = None,
        payment_intent_id: str | None = None,
        job_id: Any = None,
    ) -> ChargeAttempt | None:
        """Correlate by attempt id, then PaymentIntent id, then job's in-flight attempt."""
        attempts = ChargeAttempt.objects.select_for_update()

        attempt_uuid = _as_uuid(charge_attempt_id)
        if attempt_uuid:
            attempt = attempts.filter(pk=attempt_uuid).first()
            if attempt:
                return attempt

        if payment_intent_id:
            attempt = attempts.filter(payment_intent_id=payment_intent_id).first()
            if attempt:
                return attempt

        job_uuid = _as_uuid(job_id)
        if job_uuid:
            return attempts.filter(job_id=job_uuid, status=ChargeAttemptStatus.IN_FLIGHT).first()
        return None

    def resolve_succeeded(
        self,
        *,
        charge_attempt_id: Any = None,
        payment_intent_id: str | None = None,
        job_id: Any = None,
    ) -> ServiceResult[dict]:
        """
        Resolve a charge attempt as succeeded and mark the job CHARGED.

        Idempotent: a terminal attempt or a job no longer in flight is
        reported as stale. When the job ends up CHARGED the upstream
        invoice is marked paid (at most once).

        Returns:
            ServiceResult with data["resolution"] in applied, stale, unknown
        """
        logger = self.get_logger()
        with transaction.atomic():
            attempt = self._find_attempt(charge_attempt_id, payment_intent_id, job_id)
            if attempt is None:
                logger.info(
                    "Success for unknown charge ignored",
                    extra={"payment_intent_id": payment_intent_id, "job_id": str(job_id)},
                )
                return ServiceResult.success({"resolution": "unknown"})

            job = BillingJob.objects.select_for_update().get(pk=attempt.job_id)
            if attempt.is_terminal or job.billing_state != BillingState.CHARGE_IN_FLIGHT:
                resolution = "stale"
            else:
                attempt.mark_succeeded()
                if payment_intent_id and not attempt.payment_intent_id:
                    attempt.payment_intent_id = payment_intent_id
                attempt.save()
                job.mark_charged()
                job.save()
                resolution = "applied"

        log_context = {
            "job_id": str(job.id),
            "charge_attempt_id": str(attempt.id),
            "payment_intent_id": payment_intent_id or attempt.payment_intent_id,
            "resolution": resolution,
        }
        if resolution == "applied":
            logger.info("Charge succeeded", extra=log_context)
        else:
            logger.info("Stale success resolution ignored", extra=log_context)

        invoice = None
        if job.billing_state == BillingState.CHARGED and attempt.status == ChargeAttemptStatus.SUCCEEDED:
            invoice = self.invoice_sync.mark_paid(job).to_response()

        return ServiceResult.success(
            {
                "resolution": resolution,
                "job_id": str(job.id),
                "charge_attempt_id": str(attempt.id),
                "invoice": invoice,
            }
        )

    def resolve_failed(
        self,
        *,
        charge_attempt_id: Any = None,
        payment_intent_id: str | None = None,
        job_id: Any = None,
        failure_code: str | None = None,
        failure_message: str | None = None,
    ) -> ServiceResult[dict]:
        """
        Resolve a charge attempt as failed and mark the job CHARGE_FAILED.

        The upstream invoice is not touched. Idempotent in the same way
        as resolve_succeeded; a failure for an old attempt of a job that
        has since been CHARGED is stale.
        """
        logger = self.get_logger()
        with transaction.atomic():
            attempt = self._find_attempt(charge_attempt_id, payment_intent_id, job_id)
            if attempt is None:
                logger.info(
                    "Failure for unknown charge ignored",
                    extra={"payment_intent_id": payment_intent_id, "job_id": str(job_id)},
                )
                return ServiceResult.success({"resolution": "unknown"})

            job = BillingJob.objects.select_for_update().get(pk=attempt.job_id)
            if attempt.is_terminal or job.billing_state != BillingState.CHARGE_IN_FLIGHT:
                resolution = "stale"
            else:
                attempt.mark_failed(failure_code, failure_message)
                if payment_intent_id and not attempt.payment_intent_id:
                    attempt.payment_intent_id = payment_intent_id
                attempt.save()
                job.mark_charge_failed()
                job.save()
                resolution = "applied"

        log_context = {
            "job_id": str(job.id),
            "charge_attempt_id": str(attempt.id),
            "payment_intent_id": payment_intent_id or attempt.payment_intent_id,
            "failure_code": failure_code,
            "resolution": resolution,
        }
        if resolution == "applied":
            logger.warning("Charge failed", extra=log_context)
        else:
            logger.info("Stale failure resolution ignored", extra=log_context)

        return ServiceResult.success(
            {
                "resolution": resolution,
                "job_id": str(job.id),
                "charge_attempt_id": str(attempt.id),
            }
        )

    # =========================================================================
    # Stale In-Flight Charges
    # =========================================================================

    def reconcile_in_flight(self, attempt: ChargeAttempt) -> TriggerDecision:
        """
        Settle an attempt whose outcome was never learned.

        With a known PaymentIntent the intent is retrieved. Otherwise the
        customer's intents are searched for one tagged with the attempt id.
        Failing that, the original request is re-submitted with the same
        idempotency key, which returns the original intent instead of
        charging again. Once the key is older than IDEMPOTENCY_KEY_TTL
        Stripe no longer deduplicates it, so the attempt is left in flight
        for an operator instead.
        """
        logger = self.get_logger()
        job = BillingJob.objects.select_related("customer").get(pk=attempt.job_id)
        if attempt.payment_intent_id:
            intent = self.gateway.retrieve_payment_intent(attempt.payment_intent_id)
            return self._resolve_from_intent(job, attempt, intent)

        intent = self._find_intent_for_attempt(job, attempt)
        if intent is not None:
            ChargeAttempt.objects.filter(
                pk=attempt.pk, payment_intent_id__isnull=True
            ).update(payment_intent_id=intent.id)
            return self._resolve_from_intent(job, attempt, intent)

        age = timezone.now() - attempt.created_at
        if age >= IDEMPOTENCY_KEY_TTL:
            logger.error(
                "In-flight charge needs operator review; idempotency key expired",
                extra={
                    "event": "charge_needs_operator",
                    "job_id": str(job.id),
                    "charge_attempt_id": str(attempt.id),
                    "age_hours": round(age.total_seconds() / 3600, 1),
                },
            )
            return TriggerDecision(
                job_id=str(job.id),
                outcome=TriggerOutcome.UNKNOWN,
                charge_attempt_id=str(attempt.id),
                detail="Idempotency key expired; not re-submitted",
            )
        return self._submit(job, attempt, manual=False)

    def _find_intent_for_attempt(
        self,
        job: BillingJob,
        attempt: ChargeAttempt,
    ) -> PaymentIntentResult | None:
        if job.customer is None:
            return None
        intents = self.gateway.list_payment_intents_for_job(
            job.customer.stripe_customer_id, str(job.id)
        )
        for intent in intents:
            if intent.metadata.get("charge_attempt_id") == str(attempt.id):
                return intent
        return None

    # =========================================================================
    # Refunds
    # =========================================================================

    def refund(
        self,
        charge_attempt_id: Any,
        amount_cents: int | None = None,
        reason: str = "requested_by_customer",
        refunded_by: str | None = None,
    ) -> Refund:
        """
        Refund a succeeded charge, fully or partially.

        Serialized per job with a distributed lock because it spans a
        Stripe call and several rows.

        Raises:
            NotFoundError: Unknown charge attempt
            InvalidStateTransitionError: Job not CHARGED or attempt not succeeded
            ValidationError: Amount not positive or above the refundable remainder
        """
        attempt = ChargeAttempt.objects.filter(pk=_as_uuid(charge_attempt_id)).first()
        if attempt is None:
            raise NotFoundError(
                f"Charge attempt {charge_attempt_id} not found",
                error_code="CHARGE_ATTEMPT_NOT_FOUND",
            )

        lock_ttl = max(30, self.config.timeout_seconds * 3)
        with DistributedLock(f"billing:refund:{attempt.job_id}", ttl=lock_ttl):
            attempt = ChargeAttempt.objects.get(pk=attempt.pk)
            job = BillingJob.objects.get(pk=attempt.job_id)

            if job.billing_state != BillingState.CHARGED or attempt.status != ChargeAttemptStatus.SUCCEEDED:
                raise InvalidStateTransitionError(
                    f"Cannot refund job in '{job.billing_state}' state",
                    details={
                        "current_state": job.billing_state,
                        "attempt_status": attempt.status,
                        "target_state": BillingState.REFUNDED,
                    },
                )

            amount = amount_cents if amount_cents is not None else attempt.refundable_cents
            if amount <= 0 or amount > attempt.refundable_cents:
                raise ValidationError(
                    "Refund amount must be positive and not exceed the refundable amount",
                    details={"amount_cents": amount, "refundable_cents": attempt.refundable_cents},
                )

            refund_number = attempt.refunds.count() + 1
            metadata = {"job_id": str(job.id), "charge_attempt_id": str(attempt.id)}
            if refunded_by:
                metadata["refunded_by"] = refunded_by

            result = self.gateway.create_refund(
                attempt.payment_intent_id,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "refund", attempt.id, refund_number
                ),
                amount_cents=amount,
                reason=reason,
                metadata=metadata,
            )

            return self.record_refund(
                attempt.id,
                stripe_refund_id=result.id,
                amount_cents=result.amount_cents,
                status=result.status,
                reason=reason,
                source="api",
            )

    def record_refund(
        self,
        charge_attempt_id: Any,
        *,
        stripe_refund_id: str,
        amount_cents: int,
        status: str,
        reason: str = "",
        source: str = "api",
    ) -> Refund:
        """
        Book a refund against an attempt; idempotent by stripe_refund_id.

        A refund completing the refunded total moves the job to REFUNDED.
        Every new refund records a refund_not_propagated drift, since the
        upstream invoice is left as paid.
        """
        with transaction.atomic():
            attempt = ChargeAttempt.objects.select_for_update().get(pk=charge_attempt_id)
            existing = Refund.objects.filter(stripe_refund_id=stripe_refund_id).first()
            if existing:
                if existing.status != status:
                    existing.status = status
                    existing.save(update_fields=["status", "updated_at"])
                return existing

            job = BillingJob.objects.select_for_update().get(pk=attempt.job_id)
            attempt.amount_refunded_cents = min(
                attempt.amount_cents, attempt.amount_refunded_cents + amount_cents
            )
            is_full = attempt.amount_refunded_cents >= attempt.amount_cents
            attempt.save(update_fields=["amount_refunded_cents", "updated_at"])

            refund = Refund.objects.create(
                charge_attempt=attempt,
                stripe_refund_id=stripe_refund_id,
                amount_cents=amount_cents,
                reason=reason or "",
                status=status,
                is_full=is_full,
                source=source,
            )

            if is_full and job.billing_state == BillingState.CHARGED:
                job.mark_refunded()
                job.save()

        self.get_logger().info(
            "Refund recorded",
            extra={
                "job_id": str(job.id),
                "charge_attempt_id": str(attempt.id),
                "refund_id": stripe_refund_id,
                "amount_cents": amount_cents,
                "is_full": is_full,
                "source": source,
            },
        )

        InvoiceSync.record_drift(
            job,
            DriftKind.REFUND_NOT_PROPAGATED,
            f"Refund {stripe_refund_id} of {amount_cents} cents not reflected on "
            f"invoice {job.external_invoice_id or '(none)'}",
        )
        return refund

    # =========================================================================
    # Reporting
    # =========================================================================

    def payment_status(self, job: BillingJob, *, include_gateway: bool = False) -> dict[str, Any]:
        """
        Billing summary for a job.

        Args:
            job: The job
            include_gateway: Also list the job's PaymentIntents from Stripe
        """
        attempts = list(job.charge_attempts.order_by("created_at"))
        succeeded = [a for a in attempts if a.status == ChargeAttemptStatus.SUCCEEDED]
        total_paid = sum(a.amount_cents for a in succeeded)
        total_refunded = sum(a.amount_refunded_cents for a in succeeded)

        status: dict[str, Any] = {
            "job_id": str(job.id),
            "external_job_id": job.external_job_id,
            "billing_state": job.billing_state,
            "amount_cents": job.amount_cents,
            "currency": job.currency,
            "is_paid": job.billing_state == BillingState.CHARGED,
            "total_paid_cents": total_paid,
            "total_refunded_cents": total_refunded,
            "last_unmet_condition": job.last_unmet_condition,
            "last_evaluated_at": job.last_evaluated_at,
            "invoice_marked_paid_at": job.invoice_marked_paid_at,
            "open_drift_count": CrossSystemDrift.objects.open().filter(job=job).count(),
            "attempts": [
                {
                    "id": str(a.id),
                    "status": a.status,
                    "amount_cents": a.amount_cents,
                    "amount_refunded_cents": a.amount_refunded_cents,
                    "payment_intent_id": a.payment_intent_id,
                    "trigger": a.trigger,
                    "failure_code": a.failure_code,
                    "created_at": a.created_at,
                    "resolved_at": a.resolved_at,
                }
                for a in attempts
            ],
        }

        if include_gateway and job.customer_id:
            status["gateway_payments"] = [
                {
                    "id": intent.id,
                    "status": intent.status,
                    "amount_cents": intent.amount_cents,
                    "amount_received": intent.amount_received,
                    "created_at": intent.created_at,
                }
                for intent in self.gateway.list_payment_intents_for_job(
                    job.customer.stripe_customer_id, str(job.id)
                )
            ]
        return status
