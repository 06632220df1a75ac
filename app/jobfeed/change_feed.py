"""
Change detection between two observations of the same job.

diff() is pure: it compares two NormalizedJob values and returns the
change events in a fixed order (attempts, status, documents, generic).
Timestamps come from the job itself (updated_at) or from the caller's
observed_at, never from the clock, so re-running a diff after a restart
yields the same events.

Usage:
    from jobfeed.change_feed import diff

    events = diff(previous_job, current_job, observed_at=now.isoformat())
    for event in events:
        publish(event.job_id, event)
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from casemanager.normalizer import NormalizedJob


class ChangeKind(str, enum.Enum):
    NEW_ATTEMPT = "new_attempt"
    STATUS_CHANGE = "status_change"
    DOCUMENT_ADDED = "document_added"
    JOB_UPDATED = "job_updated"


@dataclass(frozen=True)
class JobChangeEvent:
    """One detected change. Ephemeral; never persisted."""

    job_id: str
    kind: ChangeKind
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "kind": self.kind.value,
            "data": self.data,
            "timestamp": self.timestamp,
        }


# Fields with dedicated events; everything else is covered by JOB_UPDATED
_DEDICATED_FIELDS = {"attempts", "documents", "status"}


def _new_items(previous: tuple, current: tuple) -> list:
    seen = {item.id for item in previous}
    return [item for item in current if item.id not in seen]


def _existing_items_changed(previous: tuple, current: tuple) -> bool:
    """True if any previously seen item was edited or removed."""
    current_by_id = {item.id: item for item in current}
    return any(current_by_id.get(item.id) != item for item in previous)


def _changed_fields(previous: NormalizedJob, current: NormalizedJob) -> list[str]:
    changed = [
        f.name
        for f in fields(NormalizedJob)
        if f.name not in _DEDICATED_FIELDS
        and getattr(previous, f.name) != getattr(current, f.name)
    ]
    if _existing_items_changed(previous.attempts, current.attempts):
        changed.append("attempts")
    if _existing_items_changed(previous.documents, current.documents):
        changed.append("documents")
    return changed


def diff(
    previous: NormalizedJob | None,
    current: NormalizedJob,
    observed_at: str | None = None,
) -> list[JobChangeEvent]:
    """
    Compute the change events between two observations of a job.

    Args:
        previous: Last stored observation, or None on first sight
        current: Fresh observation
        observed_at: Timestamp to use when current.updated_at is empty

    Returns:
        Events in order NEW_ATTEMPT, STATUS_CHANGE, DOCUMENT_ADDED,
        JOB_UPDATED; empty on first observation
    """
    if previous is None:
        return []

    timestamp = current.updated_at or observed_at
    events: list[JobChangeEvent] = []

    new_attempts = _new_items(previous.attempts, current.attempts)
    if new_attempts:
        events.append(
            JobChangeEvent(
                job_id=current.id,
                kind=ChangeKind.NEW_ATTEMPT,
                data={
                    "new_attempts": [asdict(a) for a in new_attempts],
                    "attempt_count": len(current.attempts),
                },
                timestamp=timestamp,
            )
        )

    if previous.status != current.status:
        events.append(
            JobChangeEvent(
                job_id=current.id,
                kind=ChangeKind.STATUS_CHANGE,
                data={
                    "old": previous.status,
                    "new": current.status,
                    "affidavit_signed": current.affidavit_signed,
                },
                timestamp=timestamp,
            )
        )

    new_documents = _new_items(previous.documents, current.documents)
    if new_documents:
        events.append(
            JobChangeEvent(
                job_id=current.id,
                kind=ChangeKind.DOCUMENT_ADDED,
                data={"new_documents": [asdict(d) for d in new_documents]},
                timestamp=timestamp,
            )
        )

    changed = _changed_fields(previous, current)
    if changed:
        events.append(
            JobChangeEvent(
                job_id=current.id,
                kind=ChangeKind.JOB_UPDATED,
                data={"changed_fields": changed, "job": current.to_dict()},
                timestamp=timestamp,
            )
        )

    return events
