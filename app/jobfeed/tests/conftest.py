"""
Pytest fixtures for job feed tests.

The case-management client and the billing trigger are MagicMocks; the
channel layer is the in-memory layer from settings_test.
"""

import pytest
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from billing.services import TriggerDecision, TriggerOutcome
from casemanager.normalizer import NormalizedAttempt, NormalizedDocument, NormalizedJob
from jobfeed.config import JobFeedConfig
from jobfeed.services import JobWatcher


def make_job(**overrides) -> NormalizedJob:
    """A served-but-unsigned $85.00 job; override any field."""
    values = {
        "id": "48213",
        "job_number": "SM-48213",
        "status": "Attempted",
        "amount_cents": 8500,
        "affidavit_signed": False,
        "invoice_id": "9921",
        "client_email": "ops@firm.test",
        "client_name": "Dana Reyes",
        "updated_at": "2026-10-18T14:02:11Z",
        "attempts": (NormalizedAttempt(id="a1", attempted_at="2026-10-17", result="not home"),),
        "documents": (NormalizedDocument(id="d1", title="Summons"),),
    }
    values.update(overrides)
    return NormalizedJob(**values)


@pytest.fixture(autouse=True)
def channel_layer():
    layer = get_channel_layer()
    yield layer
    async_to_sync(layer.flush)()


@pytest.fixture
def jobfeed_config():
    return JobFeedConfig(poll_batch_size=5, watch_ttl_minutes=60, liveness_timeout_seconds=60)


@pytest.fixture
def case_client(mocker):
    client = mocker.MagicMock(name="CaseManagementClient")
    client.fetch_job.return_value = make_job()
    return client


@pytest.fixture
def billing_trigger(mocker):
    trigger = mocker.MagicMock(name="BillingTrigger")
    trigger.initiate_charge.side_effect = lambda job, source: TriggerDecision(
        job_id=str(job.id),
        outcome=TriggerOutcome.SKIPPED,
        unmet_condition="NOT_YET_DUE",
    )
    return trigger


@pytest.fixture
def published():
    """Events handed to the publisher, as (job_id, event) pairs."""
    return []


@pytest.fixture
def watcher(case_client, billing_trigger, published, jobfeed_config):
    return JobWatcher(
        client=case_client,
        publisher=lambda job_id, event: published.append((job_id, event)),
        trigger=billing_trigger,
        config=jobfeed_config,
    )
