"""
Tests for the Stripe adapter.

The Stripe SDK resources are patched; these tests cover request shaping,
result mapping and error translation.
"""

import hashlib
import hmac
import json
import time

import pytest
import stripe

from billing.adapters import (
    IdempotencyKeyGenerator,
    OffSessionChargeParams,
    PaymentIntentResult,
    StripeAdapter,
    is_retryable_stripe_error,
)
from billing.exceptions import (
    NoPaymentMethod,
    SignatureInvalid,
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeInsufficientFundsError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)

from billing.adapters.tests.conftest import MockStripeList


def charge_params(**overrides):
    values = {
        "amount_cents": 8500,
        "currency": "usd",
        "customer_id": "cus_test_firm",
        "payment_method_id": "pm_test_visa",
        "idempotency_key": "charge:abc:1:deadbeef",
        "metadata": {"job_id": "job-1", "charge_attempt_id": "attempt-1"},
    }
    values.update(overrides)
    return OffSessionChargeParams(**values)


class TestOffSessionChargeParams:
    """Tests for OffSessionChargeParams validation."""

    def test_valid_params(self):
        params = charge_params(description="Process service job sm-1")

        assert params.amount_cents == 8500
        assert params.description == "Process service job sm-1"

    @pytest.mark.parametrize(
        "field,value,message",
        [
            ("amount_cents", 0, "amount_cents must be positive"),
            ("idempotency_key", "", "idempotency_key is required"),
            ("currency", "", "currency is required"),
            ("customer_id", "", "customer_id is required"),
            ("payment_method_id", "", "payment_method_id is required"),
        ],
    )
    def test_rejects_invalid_values(self, field, value, message):
        with pytest.raises(ValueError, match=message):
            charge_params(**{field: value})


class TestIdempotencyKeyGenerator:
    def test_key_format(self):
        key = IdempotencyKeyGenerator.generate("charge", "550e8400-e29b-41d4-a716-446655440000")

        operation, entity, attempt, digest = key.split(":")
        assert operation == "charge"
        assert entity == "550e8400-e29b-41d4-a716-446655440000"
        assert attempt == "1"
        assert len(digest) == 8

    def test_deterministic(self):
        assert IdempotencyKeyGenerator.generate("refund", "x", 2) == IdempotencyKeyGenerator.generate(
            "refund", "x", 2
        )

    def test_attempt_and_operation_change_key(self):
        base = IdempotencyKeyGenerator.generate("refund", "x", 1)

        assert IdempotencyKeyGenerator.generate("refund", "x", 2) != base
        assert IdempotencyKeyGenerator.generate("charge", "x", 1) != base


class TestIsRetryableStripeError:
    def test_transient_errors(self):
        assert is_retryable_stripe_error(StripeTimeoutError("timeout")) is True
        assert is_retryable_stripe_error(StripeRateLimitError("slow down")) is True

    def test_permanent_errors(self):
        assert is_retryable_stripe_error(StripeCardDeclinedError("declined")) is False
        assert is_retryable_stripe_error(ValueError("nope")) is False


class TestCreateOffSessionPaymentIntent:
    def test_request_shape(self, mock_stripe_payment_intent):
        result = StripeAdapter.create_off_session_payment_intent(
            charge_params(description="Process service job sm-1")
        )

        kwargs = mock_stripe_payment_intent.create.call_args.kwargs
        assert kwargs["amount"] == 8500
        assert kwargs["customer"] == "cus_test_firm"
        assert kwargs["payment_method"] == "pm_test_visa"
        assert kwargs["confirm"] is True
        assert kwargs["off_session"] is True
        assert kwargs["idempotency_key"] == "charge:abc:1:deadbeef"
        assert kwargs["metadata"]["charge_attempt_id"] == "attempt-1"
        assert kwargs["description"] == "Process service job sm-1"

        assert isinstance(result, PaymentIntentResult)
        assert result.succeeded is True
        assert result.amount_received == 8500
        assert result.created_at is not None

    def test_maps_last_payment_error(self, mock_stripe_payment_intent, mock_payment_intent):
        mock_stripe_payment_intent.create.return_value = mock_payment_intent(
            status="requires_payment_method",
            amount_received=0,
            last_payment_error={
                "code": "card_declined",
                "decline_code": "do_not_honor",
                "message": "Your card was declined.",
            },
        )

        result = StripeAdapter.create_off_session_payment_intent(charge_params())

        assert result.succeeded is False
        assert result.last_error_code == "do_not_honor"
        assert result.last_error_message == "Your card was declined."


class TestErrorTranslation:
    """Stripe SDK errors are translated to billing exceptions."""

    def test_card_declined(self, mock_stripe_payment_intent, card_error):
        mock_stripe_payment_intent.create.side_effect = card_error()

        with pytest.raises(StripeCardDeclinedError) as exc_info:
            StripeAdapter.create_off_session_payment_intent(charge_params())

        assert exc_info.value.decline_code == "generic_decline"
        assert exc_info.value.details["payment_intent_id"] == "pi_test_declined"
        assert exc_info.value.is_retryable is False

    def test_insufficient_funds(self, mock_stripe_payment_intent, card_error):
        mock_stripe_payment_intent.create.side_effect = card_error(
            message="Your card has insufficient funds.",
            decline_code="insufficient_funds",
        )

        with pytest.raises(StripeInsufficientFundsError):
            StripeAdapter.create_off_session_payment_intent(charge_params())

    def test_detached_payment_method_param(self, mock_stripe_payment_intent, invalid_request_error):
        mock_stripe_payment_intent.create.side_effect = invalid_request_error(
            message="The PaymentMethod was previously detached.",
            param="payment_method",
            code="payment_method_unexpected_state",
        )

        with pytest.raises(NoPaymentMethod):
            StripeAdapter.create_off_session_payment_intent(charge_params())

    def test_missing_payment_method(self, mock_stripe_payment_method, invalid_request_error):
        mock_stripe_payment_method.retrieve.side_effect = invalid_request_error()

        with pytest.raises(NoPaymentMethod):
            StripeAdapter.retrieve_payment_method("pm_gone")

    def test_other_missing_resource_is_invalid_request(self, mock_stripe_payment_intent, invalid_request_error):
        mock_stripe_payment_intent.retrieve.side_effect = invalid_request_error(
            message="No such payment_intent: 'pi_gone'"
        )

        with pytest.raises(StripeInvalidRequestError):
            StripeAdapter.retrieve_payment_intent("pi_gone")

    def test_rate_limit(self, mock_stripe_payment_intent):
        mock_stripe_payment_intent.create.side_effect = stripe.RateLimitError(
            message="Too many requests hit the API too quickly."
        )

        with pytest.raises(StripeRateLimitError) as exc_info:
            StripeAdapter.create_off_session_payment_intent(charge_params())

        assert exc_info.value.is_retryable is True

    def test_timeout_is_unknown_outcome(self, mock_stripe_payment_intent):
        mock_stripe_payment_intent.create.side_effect = stripe.APIConnectionError(
            message="Request to Stripe timed out"
        )

        with pytest.raises(StripeTimeoutError):
            StripeAdapter.create_off_session_payment_intent(charge_params())

    def test_connection_error(self, mock_stripe_payment_intent):
        mock_stripe_payment_intent.create.side_effect = stripe.APIConnectionError(
            message="Could not connect to Stripe."
        )

        with pytest.raises(StripeAPIUnavailableError):
            StripeAdapter.create_off_session_payment_intent(charge_params())

    def test_api_error(self, mock_stripe_payment_intent):
        mock_stripe_payment_intent.create.side_effect = stripe.APIError(
            message="Something went wrong on Stripe's end."
        )

        with pytest.raises(StripeAPIUnavailableError):
            StripeAdapter.create_off_session_payment_intent(charge_params())

    def test_authentication_error(self, mock_stripe_payment_intent):
        mock_stripe_payment_intent.create.side_effect = stripe.AuthenticationError(
            message="Invalid API Key provided."
        )

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.create_off_session_payment_intent(charge_params())

        assert exc_info.value.stripe_code == "authentication_error"


class TestCustomers:
    def test_find_customer_matches_case_insensitively(self, mock_stripe_customer, mock_customer):
        mock_stripe_customer.list.return_value = MockStripeList(
            items=[
                mock_customer(id="cus_newer", email="Ops@Firm.test", created=200),
                mock_customer(id="cus_older", email="ops@firm.test", created=100),
                mock_customer(id="cus_other", email="other@firm.test", created=50),
            ]
        )

        result = StripeAdapter.find_customer_by_email("ops@firm.test")

        assert result.id == "cus_older"

    def test_find_customer_without_match(self, mock_stripe_customer):
        assert StripeAdapter.find_customer_by_email("nobody@firm.test") is None

    def test_create_customer_passes_idempotency_key(self, mock_stripe_customer):
        result = StripeAdapter.create_customer(
            "ops@firm.test",
            name="Firm LLP",
            idempotency_key="customer:ops@firm.test:1:abcd1234",
        )

        kwargs = mock_stripe_customer.create.call_args.kwargs
        assert kwargs["email"] == "ops@firm.test"
        assert kwargs["idempotency_key"] == "customer:ops@firm.test:1:abcd1234"
        assert result.id == "cus_test_firm"


class TestSetupIntents:
    def test_create_is_off_session(self, mock_stripe_setup_intent):
        result = StripeAdapter.create_setup_intent("cus_test_firm", metadata={"job_id": "job-1"})

        kwargs = mock_stripe_setup_intent.create.call_args.kwargs
        assert kwargs["usage"] == "off_session"
        assert kwargs["customer"] == "cus_test_firm"
        assert kwargs["metadata"] == {"job_id": "job-1"}
        assert result.client_secret == "seti_test123_secret_abc"

    def test_retrieve_maps_setup_error(self, mock_stripe_setup_intent, mock_setup_intent):
        mock_stripe_setup_intent.retrieve.return_value = mock_setup_intent(
            status="requires_payment_method",
            payment_method=None,
            last_setup_error={"code": "card_declined", "message": "Your card was declined."},
        )

        result = StripeAdapter.retrieve_setup_intent("seti_test123")

        assert result.last_error_code == "card_declined"
        assert result.payment_method_id is None


class TestPaymentMethods:
    def test_retrieve_maps_card(self, mock_stripe_payment_method):
        method = StripeAdapter.retrieve_payment_method("pm_test_visa")

        assert method.customer_id == "cus_test_firm"
        assert method.brand == "visa"
        assert method.last4 == "4242"

    def test_detach(self, mock_stripe_payment_method):
        method = StripeAdapter.detach_payment_method("pm_test_visa")

        mock_stripe_payment_method.detach.assert_called_once_with("pm_test_visa")
        assert method.customer_id is None

    def test_list_payment_intents_for_job_filters_metadata(self, mock_stripe_payment_intent, mock_payment_intent):
        mock_stripe_payment_intent.list.return_value = MockStripeList(
            items=[
                mock_payment_intent(id="pi_a", metadata={"job_id": "job-1"}),
                mock_payment_intent(id="pi_b", metadata={"job_id": "job-2"}),
            ]
        )

        results = StripeAdapter.list_payment_intents_for_job("cus_test_firm", "job-1")

        assert [r.id for r in results] == ["pi_a"]


class TestRefunds:
    def test_partial_refund(self, mock_stripe_refund):
        result = StripeAdapter.create_refund(
            "pi_test123456",
            idempotency_key="refund:attempt-1:1:abcd1234",
            amount_cents=2000,
            reason="requested_by_customer",
        )

        kwargs = mock_stripe_refund.create.call_args.kwargs
        assert kwargs["amount"] == 2000
        assert kwargs["reason"] == "requested_by_customer"
        assert kwargs["idempotency_key"] == "refund:attempt-1:1:abcd1234"
        assert result.id == "re_test123"

    def test_full_refund_omits_amount(self, mock_stripe_refund):
        StripeAdapter.create_refund("pi_test123456", idempotency_key="refund:attempt-1:1:abcd1234")

        assert "amount" not in mock_stripe_refund.create.call_args.kwargs


class TestWebhookSignature:
    """verify_webhook_signature runs the real Stripe verification."""

    def _signed(self, event, secret="whsec_test_dummy"):
        payload = json.dumps(event).encode()
        timestamp = int(time.time())
        digest = hmac.new(
            secret.encode(), f"{timestamp}.{payload.decode()}".encode(), hashlib.sha256
        ).hexdigest()
        return payload, f"t={timestamp},v1={digest}"

    def test_valid_signature(self):
        payload, header = self._signed(
            {"id": "evt_test_1", "object": "event", "type": "payment_intent.succeeded", "data": {"object": {}}}
        )

        event = StripeAdapter.verify_webhook_signature(payload, header, secret="whsec_test_dummy")

        assert event["id"] == "evt_test_1"
        assert event["type"] == "payment_intent.succeeded"

    def test_wrong_secret(self):
        payload, header = self._signed({"id": "evt_test_1", "object": "event"}, secret="whsec_other")

        with pytest.raises(SignatureInvalid):
            StripeAdapter.verify_webhook_signature(payload, header, secret="whsec_test_dummy")

    def test_missing_secret(self):
        with pytest.raises(SignatureInvalid, match="not configured"):
            StripeAdapter.verify_webhook_signature(b"{}", "t=1,v1=x", secret="")
