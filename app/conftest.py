"""
Project-wide pytest configuration.

This module provides shared fixtures and auto-marks tests by filename.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import pytest
from rest_framework.test import APIClient


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py -> e2e (full billing scenarios)
    - test_views.py, test_services.py, test_tasks.py, etc. -> integration
    - test_models.py, test_change_feed.py, test_normalizer.py, etc. -> unit
    - Unmatched files -> integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_webhooks.py",
        "test_handlers.py",
        "test_billing_trigger.py",
        "test_vault.py",
        "test_invoice_sync.py",
        "test_watcher.py",
        "test_consumers.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_stripe_adapter.py",
        "test_state_transitions.py",
        "test_locks.py",
        "test_change_feed.py",
        "test_normalizer.py",
        "test_client.py",
        "test_bus.py",
        "test_middleware.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def user(db, django_user_model):
    return django_user_model.objects.create_user(
        username="portal-user",
        email="portal@firm.test",
        password="testpass123",
    )


@pytest.fixture
def staff_user(db, django_user_model):
    return django_user_model.objects.create_user(
        username="billing-ops",
        email="ops@billing.test",
        password="testpass123",
        is_staff=True,
    )


@pytest.fixture
def authenticated_client(api_client, user):
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def staff_client(staff_user):
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client
