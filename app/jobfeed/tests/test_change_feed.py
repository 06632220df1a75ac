"""
Tests for job change detection.
"""

from casemanager.normalizer import NormalizedAttempt, NormalizedDocument
from jobfeed.change_feed import ChangeKind, JobChangeEvent, diff
from jobfeed.tests.conftest import make_job

OBSERVED_AT = "2026-10-19T09:00:00+00:00"


class TestDiff:
    def test_first_observation_has_no_events(self):
        assert diff(None, make_job()) == []

    def test_identical_observations(self):
        assert diff(make_job(), make_job()) == []

    def test_new_attempt(self):
        previous = make_job()
        second = NormalizedAttempt(id="a2", attempted_at="2026-10-18", result="served")
        current = make_job(attempts=previous.attempts + (second,))

        events = diff(previous, current)

        assert [e.kind for e in events] == [ChangeKind.NEW_ATTEMPT]
        assert events[0].data["attempt_count"] == 2
        assert events[0].data["new_attempts"][0]["id"] == "a2"
        assert events[0].timestamp == "2026-10-18T14:02:11Z"

    def test_status_change_carries_affidavit_flag(self):
        events = diff(make_job(), make_job(status="Served", affidavit_signed=True))

        status_event = next(e for e in events if e.kind == ChangeKind.STATUS_CHANGE)
        assert status_event.data == {"old": "Attempted", "new": "Served", "affidavit_signed": True}

    def test_document_added(self):
        previous = make_job()
        current = make_job(
            documents=previous.documents + (NormalizedDocument(id="d2", title="Affidavit"),)
        )

        events = diff(previous, current)

        assert [e.kind for e in events] == [ChangeKind.DOCUMENT_ADDED]
        assert events[0].data["new_documents"][0]["title"] == "Affidavit"

    def test_generic_field_change(self):
        events = diff(make_job(), make_job(amount_cents=9500))

        assert [e.kind for e in events] == [ChangeKind.JOB_UPDATED]
        assert events[0].data["changed_fields"] == ["amount_cents"]
        assert events[0].data["job"]["amount_cents"] == 9500

    def test_edited_attempt_is_a_generic_update(self):
        previous = make_job()
        edited = NormalizedAttempt(id="a1", attempted_at="2026-10-17", result="served")

        events = diff(previous, make_job(attempts=(edited,)))

        assert [e.kind for e in events] == [ChangeKind.JOB_UPDATED]
        assert events[0].data["changed_fields"] == ["attempts"]

    def test_removed_document_is_a_generic_update(self):
        events = diff(make_job(), make_job(documents=()))

        assert [e.kind for e in events] == [ChangeKind.JOB_UPDATED]
        assert "documents" in events[0].data["changed_fields"]

    def test_event_order(self):
        previous = make_job()
        current = make_job(
            status="Served",
            affidavit_signed=True,
            attempts=previous.attempts + (NormalizedAttempt(id="a2"),),
            documents=previous.documents + (NormalizedDocument(id="d2"),),
        )

        events = diff(previous, current)

        assert [e.kind for e in events] == [
            ChangeKind.NEW_ATTEMPT,
            ChangeKind.STATUS_CHANGE,
            ChangeKind.DOCUMENT_ADDED,
            ChangeKind.JOB_UPDATED,
        ]
        assert events[-1].data["changed_fields"] == ["affidavit_signed"]

    def test_observed_at_used_without_upstream_timestamp(self):
        events = diff(
            make_job(updated_at=None),
            make_job(updated_at=None, status="Served"),
            observed_at=OBSERVED_AT,
        )

        assert events[0].timestamp == OBSERVED_AT

    def test_rerunning_diff_is_deterministic(self):
        previous, current = make_job(), make_job(status="Served")

        assert diff(previous, current, OBSERVED_AT) == diff(previous, current, OBSERVED_AT)


class TestJobChangeEvent:
    def test_to_dict(self):
        event = JobChangeEvent(
            job_id="48213",
            kind=ChangeKind.STATUS_CHANGE,
            data={"old": "Attempted", "new": "Served"},
            timestamp=OBSERVED_AT,
        )

        assert event.to_dict() == {
            "job_id": "48213",
            "kind": "status_change",
            "data": {"old": "Attempted", "new": "Served"},
            "timestamp": OBSERVED_AT,
        }
