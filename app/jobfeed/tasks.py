"""
Celery tasks for the job feed.

- poll_watched_jobs: the poll transport, run by celery-beat every
  JOBFEED_POLL_INTERVAL_SECONDS (seeded by migration 0002)
- refresh_job: re-diff one job on demand
"""

from __future__ import annotations

import logging

from celery import shared_task

from casemanager.exceptions import CaseManagementNotFound
from jobfeed.config import get_jobfeed_config

logger = logging.getLogger(__name__)


@shared_task
def poll_watched_jobs() -> dict:
    """
    Re-diff the least recently polled watched jobs.

    Returns immediately when the push transport is configured.
    """
    from jobfeed.services import JobWatcher

    config = get_jobfeed_config()
    if not config.polling:
        return {"status": "skipped", "transport": config.transport}

    counts = JobWatcher(config=config).poll_due()
    if counts["refreshed"] or counts["failed"]:
        logger.info("Polled watched jobs", extra=counts)
    return counts


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    dont_autoretry_for=(CaseManagementNotFound,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def refresh_job(self, external_job_id: str) -> dict:
    """
    Re-diff one job and fan out its changes.

    Raises:
        Exception: Re-raised to trigger Celery retry mechanism
    """
    from jobfeed.services import JobWatcher

    result = JobWatcher().refresh(external_job_id)
    return {
        "external_job_id": str(external_job_id),
        "events": len(result.data["events"]),
        "baseline": result.data["baseline"],
    }
