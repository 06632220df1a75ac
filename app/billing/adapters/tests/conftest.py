"""
Pytest fixtures for Stripe adapter tests.

Sections:
    - Adapter Configuration
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
    - Mock Stripe Client Fixtures
"""

from dataclasses import dataclass
from typing import Any
from unittest.mock import patch

import pytest
import stripe

from billing.adapters import StripeAdapter
from billing.config import GatewayConfig


# =============================================================================
# Adapter Configuration
# =============================================================================


@pytest.fixture(autouse=True)
def configured_adapter():
    """Configure the adapter with test keys and no real HTTP client."""
    config = GatewayConfig(
        secret_key="sk_test_dummy",
        publishable_key="pk_test_dummy",
        webhook_secret="whsec_test_dummy",
        timeout_seconds=5,
        max_network_retries=0,
    )
    with patch("stripe.RequestsClient"):
        StripeAdapter.configure(config)
        yield config
    StripeAdapter._configured_with = None


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@dataclass
class MockStripeObject:
    """Mock Stripe API object; unknown attributes read as None."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@dataclass
class MockStripeList:
    """Mock Stripe list response with data attribute."""

    items: list[MockStripeObject]
    has_more: bool = False

    @property
    def data(self) -> list[MockStripeObject]:
        return self.items


@pytest.fixture
def mock_payment_intent():
    """Create a mock PaymentIntent response."""

    def _create(
        id: str = "pi_test123456",
        status: str = "succeeded",
        amount: int = 8500,
        currency: str = "usd",
        amount_received: int = 8500,
        customer: str = "cus_test_firm",
        payment_method: str = "pm_test_visa",
        metadata: dict | None = None,
        last_payment_error: dict | None = None,
        created: int = 1767225600,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "currency": currency,
                "amount_received": amount_received,
                "customer": customer,
                "payment_method": payment_method,
                "metadata": metadata or {},
                "last_payment_error": last_payment_error,
                "created": created,
            }
        )

    return _create


@pytest.fixture
def mock_payment_method():
    """Create a mock card PaymentMethod response."""

    def _create(
        id: str = "pm_test_visa",
        customer: str | None = "cus_test_firm",
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_method",
                "customer": customer,
                "card": {
                    "brand": "visa",
                    "last4": "4242",
                    "exp_month": 12,
                    "exp_year": 2030,
                },
                "created": 1767225600,
            }
        )

    return _create


@pytest.fixture
def mock_setup_intent():
    """Create a mock SetupIntent response."""

    def _create(
        id: str = "seti_test123",
        status: str = "succeeded",
        payment_method: str | None = "pm_test_visa",
        last_setup_error: dict | None = None,
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "setup_intent",
                "status": status,
                "client_secret": f"{id}_secret_abc",
                "customer": "cus_test_firm",
                "payment_method": payment_method,
                "last_setup_error": last_setup_error,
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_customer():
    """Create a mock Customer response."""

    def _create(
        id: str = "cus_test_firm",
        email: str = "ops@firm.test",
        created: int = 1767225600,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "customer",
                "email": email,
                "name": "Firm LLP",
                "metadata": {},
                "created": created,
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError carrying the decline in its JSON body."""

    def _create(
        message: str = "Your card was declined.",
        decline_code: str = "generic_decline",
        payment_intent_id: str | None = "pi_test_declined",
    ) -> stripe.CardError:
        error_body = {
            "type": "card_error",
            "code": "card_declined",
            "message": message,
            "decline_code": decline_code,
        }
        if payment_intent_id:
            error_body["payment_intent"] = {"id": payment_intent_id}
        return stripe.CardError(
            message=message,
            param=None,
            code="card_declined",
            json_body={"error": error_body},
        )

    return _create


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "No such PaymentMethod: 'pm_gone'",
        param: str | None = None,
        code: str = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param=param, code=code)

    return _create


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture
def mock_stripe_payment_intent(mock_payment_intent):
    """Mock stripe.PaymentIntent API."""
    with patch("stripe.PaymentIntent") as mock:
        mock.create.return_value = mock_payment_intent()
        mock.retrieve.return_value = mock_payment_intent()
        mock.list.return_value = MockStripeList(items=[])
        yield mock


@pytest.fixture
def mock_stripe_payment_method(mock_payment_method):
    """Mock stripe.PaymentMethod API."""
    with patch("stripe.PaymentMethod") as mock:
        mock.retrieve.return_value = mock_payment_method()
        mock.detach.return_value = mock_payment_method(customer=None)
        mock.list.return_value = MockStripeList(items=[mock_payment_method()])
        yield mock


@pytest.fixture
def mock_stripe_setup_intent(mock_setup_intent):
    """Mock stripe.SetupIntent API."""
    with patch("stripe.SetupIntent") as mock:
        mock.create.return_value = mock_setup_intent(status="requires_payment_method", payment_method=None)
        mock.retrieve.return_value = mock_setup_intent()
        yield mock


@pytest.fixture
def mock_stripe_customer(mock_customer):
    """Mock stripe.Customer API."""
    with patch("stripe.Customer") as mock:
        mock.create.return_value = mock_customer()
        mock.list.return_value = MockStripeList(items=[])
        yield mock


@pytest.fixture
def mock_stripe_refund():
    """Mock stripe.Refund API."""
    with patch("stripe.Refund") as mock:
        mock.create.return_value = MockStripeObject(
            {
                "id": "re_test123",
                "object": "refund",
                "amount": 8500,
                "currency": "usd",
                "status": "succeeded",
                "payment_intent": "pi_test123456",
                "metadata": {},
            }
        )
        yield mock
