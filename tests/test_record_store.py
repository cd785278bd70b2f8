"""Tests for the record store's conditional updates, scans and preferences."""

import pytest

from health_diary.models.entry import STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING, STATUS_PROCESSING
from health_diary.models.processing_job import JOB_TYPE_ANALYSIS, JOB_TYPE_TRANSCRIPTION
from health_diary.services.record_store import RecordStore


class TestEntryUpdates:
    """Single-row conditional updates."""

    def test_new_entry_has_both_stages_pending(self, make_entry):
        entry = make_entry()
        assert entry.transcription_status == STATUS_PENDING
        assert entry.analysis_status == STATUS_PENDING
        assert entry.transcript_ref is None
        assert entry.summary_ref is None

    def test_guarded_update_applies_once(self, records: RecordStore, make_entry):
        """Second writer with the same expectation loses."""
        entry = make_entry()
        assert records.claim_entry_stage(entry.id, "analysis", STATUS_PENDING, STATUS_PROCESSING)
        assert not records.claim_entry_stage(entry.id, "analysis", STATUS_PENDING, STATUS_PROCESSING)
        assert records.get_entry(entry.id).analysis_status == STATUS_PROCESSING

    def test_claim_checks_other_stage(self, records: RecordStore, make_entry):
        entry = make_entry()
        requires = {"transcription_status": STATUS_COMPLETED}
        assert not records.claim_entry_stage(entry.id, "analysis", STATUS_PENDING, STATUS_PROCESSING, requires=requires)
        assert records.get_entry(entry.id).analysis_status == STATUS_PENDING

        with records.unit_of_work() as db:
            assert records.claim_entry_stage(entry.id, "transcription", STATUS_PENDING, STATUS_PROCESSING, db=db)
        records.update_entry(
            entry.id,
            {"transcription_status": STATUS_COMPLETED, "transcript_ref": "t.md"},
            expected={"transcription_status": STATUS_PROCESSING},
        )
        assert records.claim_entry_stage(entry.id, "analysis", STATUS_PENDING, STATUS_PROCESSING, requires=requires)

    def test_backward_transition_rejected(self, records: RecordStore, make_entry):
        entry = make_entry()
        with pytest.raises(ValueError, match="Illegal"):
            records.update_entry(
                entry.id,
                {"transcription_status": STATUS_PENDING},
                expected={"transcription_status": STATUS_COMPLETED},
            )

    def test_none_expectation_guards_ref(self, records: RecordStore, make_entry):
        """A ref, once set, is never overwritten by a guarded update."""
        entry = make_entry()
        assert records.update_entry(entry.id, {"transcript_ref": "a"}, expected={"transcript_ref": None})
        assert not records.update_entry(entry.id, {"transcript_ref": "b"}, expected={"transcript_ref": None})
        assert records.get_entry(entry.id).transcript_ref == "a"

    def test_update_missing_entry_returns_false(self, records: RecordStore):
        assert not records.update_entry("missing", {"summary_ref": "x"})

    def test_unit_of_work_rolls_back_together(self, records: RecordStore, make_entry):
        """Job creation and status change commit or roll back as one."""
        entry = make_entry()
        with pytest.raises(RuntimeError):
            with records.unit_of_work() as db:
                records.create_job(
                    {"entry_id": entry.id, "job_type": JOB_TYPE_TRANSCRIPTION, "status": STATUS_PROCESSING}, db=db
                )
                records.update_entry(entry.id, {"transcription_status": STATUS_PROCESSING}, db=db)
                raise RuntimeError("boom")
        assert records.get_entry(entry.id).transcription_status == STATUS_PENDING
        assert records.get_entry_jobs(entry.id) == []


class TestScans:
    """Status scans used by the stages."""

    def test_get_entries_by_status(self, records: RecordStore, make_entry):
        first = make_entry()
        second = make_entry()
        records.update_entry(
            second.id,
            {"transcription_status": STATUS_COMPLETED, "transcript_ref": "users/user-1/raw.md"},
        )

        pending = records.get_entries_by_status(transcription_status=STATUS_PENDING)
        assert [e.id for e in pending] == [first.id]

        ready = records.get_entries_by_status(
            transcription_status=STATUS_COMPLETED, analysis_status=STATUS_PENDING, with_transcript=True
        )
        assert [e.id for e in ready] == [second.id]

    def test_jobs_by_status_and_type(self, records: RecordStore, make_entry):
        entry = make_entry()
        records.create_job({"entry_id": entry.id, "job_type": JOB_TYPE_TRANSCRIPTION, "status": STATUS_PROCESSING})
        records.create_job({"entry_id": entry.id, "job_type": JOB_TYPE_ANALYSIS, "status": STATUS_PROCESSING})
        records.create_job({"entry_id": entry.id, "job_type": JOB_TYPE_TRANSCRIPTION, "status": STATUS_FAILED})

        outstanding = records.get_jobs_by_status(JOB_TYPE_TRANSCRIPTION, STATUS_PROCESSING)
        assert len(outstanding) == 1
        assert outstanding[0].job_type == JOB_TYPE_TRANSCRIPTION

    def test_increment_poll_errors(self, records: RecordStore, make_entry):
        entry = make_entry()
        job = records.create_job(
            {"entry_id": entry.id, "job_type": JOB_TYPE_TRANSCRIPTION, "status": STATUS_PROCESSING}
        )
        assert records.increment_poll_errors(job.id, "timeout") == 1
        assert records.increment_poll_errors(job.id, "timeout again") == 2
        stored = records.get_job(job.id)
        assert stored.poll_error_count == 2
        assert stored.error_message == "timeout again"
        assert stored.status == STATUS_PROCESSING

    def test_list_entries_scoped_to_owner(self, records: RecordStore, make_entry):
        make_entry("user-1")
        make_entry("user-1")
        make_entry("user-2")
        items, total = records.list_entries("user-1", limit=1)
        assert total == 2
        assert len(items) == 1
        assert items[0].owner_id == "user-1"

    def test_processing_stats(self, records: RecordStore, make_entry):
        make_entry()
        done = make_entry()
        records.update_entry(done.id, {"transcription_status": STATUS_FAILED})

        stats = {(s["transcription_status"], s["analysis_status"]): s["count"] for s in records.processing_stats("user-1")}
        assert stats == {(STATUS_PENDING, STATUS_PENDING): 1, (STATUS_FAILED, STATUS_PENDING): 1}


class TestDeleteEntry:
    """Entry deletion."""

    def test_delete_removes_jobs(self, records: RecordStore, make_entry):
        entry = make_entry()
        records.create_job({"entry_id": entry.id, "job_type": JOB_TYPE_TRANSCRIPTION, "status": STATUS_PROCESSING})

        deleted = records.delete_entry(entry.id, owner_id="user-1")
        assert deleted.id == entry.id
        assert records.get_entry(entry.id) is None
        assert records.get_jobs_by_status(JOB_TYPE_TRANSCRIPTION, STATUS_PROCESSING) == []

    def test_delete_other_owners_entry(self, records: RecordStore, make_entry):
        entry = make_entry("user-1")
        assert records.delete_entry(entry.id, owner_id="user-2") is None
        assert records.get_entry(entry.id) is not None


class TestPreferences:
    """User preference storage."""

    def test_new_user_gets_defaults(self, records: RecordStore):
        records.ensure_user("acct-1", email="a@example.com")
        prefs = records.get_user_preferences("acct-1")
        assert prefs.tone == "friendly"
        assert prefs.topics == ["wellness", "mood"]

    def test_ensure_user_is_idempotent(self, records: RecordStore):
        records.ensure_user("acct-1")
        records.set_user_preferences("acct-1", tone="minimal")
        records.ensure_user("acct-1")
        assert records.get_user_preferences("acct-1").tone == "minimal"

    def test_replace_topics(self, records: RecordStore):
        records.ensure_user("acct-1")
        records.set_user_preferences("acct-1", topics=["sleep", "mood"])
        prefs = records.get_user_preferences("acct-1")
        assert sorted(prefs.topics) == ["mood", "sleep"]
