"""
Notification bus: fans job change events out to WebSocket subscribers.

Each job has one channel-layer group. Delivery is fire and forget: a
client that is not connected when an event is published never sees it.

Usage:
    from jobfeed.bus import publish

    for event in events:
        publish(event.job_id, event)
"""

from __future__ import annotations

import hashlib
import logging
import random
import re
import string
import time

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

from jobfeed.change_feed import ChangeKind, JobChangeEvent

logger = logging.getLogger(__name__)

GROUP_PREFIX = "jobfeed.job."
GROUP_NAME_MAX_LENGTH = 99

# Channels group names: ASCII alphanumerics, hyphens, underscores, periods
_GROUP_UNSAFE = re.compile(r"[^a-zA-Z0-9_.\-]")


def group_name(job_id) -> str:
    """
    Channel-layer group for a job.

    Ids that had to be sanitized or truncated get a digest of the raw id
    appended, so "a/b" and "a_b" land in different groups.
    """
    raw = str(job_id)
    name = f"{GROUP_PREFIX}{_GROUP_UNSAFE.sub('_', raw)}"
    if name == f"{GROUP_PREFIX}{raw}" and len(name) <= GROUP_NAME_MAX_LENGTH:
        return name
    digest = hashlib.sha1(raw.encode("utf-8")).hexdigest()[:12]
    return f"{name[: GROUP_NAME_MAX_LENGTH - len(digest) - 1]}.{digest}"


def generate_client_id() -> str:
    """Connection id of the form client_<epoch ms>_<9 random chars>."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"client_{int(time.time() * 1000)}_{suffix}"


def publish(job_id, event: JobChangeEvent) -> bool:
    """
    Broadcast one change event to the job's subscribers.

    Returns False when no channel layer is configured.
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("No channel layer configured; dropping job change event")
        return False

    async_to_sync(channel_layer.group_send)(
        group_name(job_id),
        {
            "type": "job.change",
            "job_id": str(job_id),
            "kind": event.kind.value,
            "data": event.data,
            "timestamp": event.timestamp,
        },
    )
    logger.debug(
        "Published job change",
        extra={"job_id": str(job_id), "kind": event.kind.value},
    )
    return True


def force_notification(job_id, kind: ChangeKind | str, data: dict | None = None) -> JobChangeEvent:
    """Broadcast a synthetic event, e.g. from an operator."""
    event = JobChangeEvent(
        job_id=str(job_id),
        kind=ChangeKind(kind),
        data=data or {},
        timestamp=timezone.now().isoformat(),
    )
    publish(job_id, event)
    logger.info(
        "Forced job change notification",
        extra={"job_id": str(job_id), "kind": event.kind.value},
    )
    return event
