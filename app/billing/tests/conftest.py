"""
Pytest fixtures for billing tests.

Stripe and the case-management API are replaced by MagicMocks, and the
Redis connection behind DistributedLock is patched for every test in
this package.

Usage:
    def test_charge(trigger, chargeable_job, gateway):
        decision = trigger.initiate_charge(chargeable_job)
        gateway.create_off_session_payment_intent.assert_called_once()
"""

import pytest

from billing.adapters import PaymentIntentResult, PaymentMethodResult
from billing.config import GatewayConfig
from billing.models import BillingJob
from billing.services import BillingTrigger, InvoiceSync, PaymentMethodVault
from billing.state_machines import BillingState, ChargeAttemptStatus
from billing.tests.factories import (
    BillingCustomerFactory,
    BillingJobFactory,
    ChargeAttemptFactory,
    SucceededChargeAttemptFactory,
)


# =============================================================================
# External Services
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis(mocker):
    """
    Mock Redis client for distributed lock tests.

    Returns a MagicMock configured so every lock is free.
    """
    redis = mocker.MagicMock()
    redis.set.return_value = True
    redis.get.return_value = None
    redis.delete.return_value = 1
    redis.eval.return_value = 1
    mocker.patch("billing.locks.get_redis_connection", return_value=redis)
    return redis


@pytest.fixture
def gateway_config():
    return GatewayConfig(
        secret_key="sk_test_dummy",
        publishable_key="pk_test_dummy",
        webhook_secret="whsec_test_dummy",
        max_automatic_attempts=3,
        stale_charge_minutes=15,
    )


def _attached_method(payment_method_id):
    # Attached to whichever customer owns the job holding this method
    customer_id = (
        BillingJob.objects.filter(payment_method_id=payment_method_id)
        .values_list("customer__stripe_customer_id", flat=True)
        .first()
    )
    return PaymentMethodResult(
        id=payment_method_id,
        customer_id=customer_id,
        brand="visa",
        last4="4242",
        exp_month=12,
        exp_year=2030,
    )


def _succeeded_intent(params):
    return PaymentIntentResult(
        id=f"pi_{params.metadata['charge_attempt_id'].replace('-', '')}",
        status="succeeded",
        amount_cents=params.amount_cents,
        currency=params.currency,
        amount_received=params.amount_cents,
        customer_id=params.customer_id,
        payment_method_id=params.payment_method_id,
        metadata=params.metadata,
    )


@pytest.fixture
def gateway(mocker):
    """
    Stand-in for the StripeAdapter class.

    Payment methods are attached to their job's customer and every
    off-session charge succeeds unless a test overrides the side effect.
    """
    gateway = mocker.MagicMock(name="StripeAdapter")
    gateway.retrieve_payment_method.side_effect = _attached_method
    gateway.create_off_session_payment_intent.side_effect = _succeeded_intent
    gateway.list_payment_intents_for_job.return_value = []
    return gateway


@pytest.fixture
def case_management(mocker):
    """Case-management client whose invoice updates succeed."""
    client = mocker.MagicMock(name="CaseManagementClient")
    client.mark_invoice_paid.return_value = {"status": "paid"}
    return client


@pytest.fixture
def invoice_sync(case_management):
    return InvoiceSync(client=case_management)


@pytest.fixture
def trigger(gateway_config, gateway, invoice_sync):
    return BillingTrigger(config=gateway_config, gateway=gateway, invoice_sync=invoice_sync)


@pytest.fixture
def vault(gateway_config, gateway):
    return PaymentMethodVault(config=gateway_config, gateway=gateway)


# =============================================================================
# Customers & Jobs
# =============================================================================


@pytest.fixture
def customer(db):
    return BillingCustomerFactory(email="ops@firm.test", stripe_customer_id="cus_test_firm")


@pytest.fixture
def chargeable_job(db, customer):
    """Signed affidavit, $85.00, card on file."""
    return BillingJobFactory(
        external_job_id="sm-48213",
        customer=customer,
        payment_method_id="pm_test_visa",
        amount_cents=8500,
        external_invoice_id="inv-1001",
    )


@pytest.fixture
def unsigned_job(db, customer):
    """$85.00 job whose affidavit has not been signed yet."""
    return BillingJobFactory(
        customer=customer,
        payment_method_id="pm_test_unsigned",
        affidavit_signed=False,
    )


@pytest.fixture
def in_flight_attempt(db, customer):
    """An attempt submitted to Stripe whose outcome is not known yet."""
    job = BillingJobFactory(
        customer=customer,
        payment_method_id="pm_test_in_flight",
        billing_state=BillingState.CHARGE_IN_FLIGHT,
    )
    return ChargeAttemptFactory(job=job, payment_intent_id="pi_test_in_flight")


@pytest.fixture
def succeeded_attempt(db, customer):
    """A settled $85.00 charge; the job is CHARGED."""
    job = BillingJobFactory(
        customer=customer,
        payment_method_id="pm_test_charged",
        billing_state=BillingState.CHARGED,
    )
    return SucceededChargeAttemptFactory(job=job, payment_intent_id="pi_test_charged")


@pytest.fixture
def failed_job(db, customer):
    """A job whose single automatic attempt was declined."""
    job = BillingJobFactory(
        customer=customer,
        payment_method_id="pm_test_declined",
        billing_state=BillingState.CHARGE_FAILED,
    )
    ChargeAttemptFactory(
        job=job,
        status=ChargeAttemptStatus.FAILED,
        failure_code="card_declined",
    )
    return job
