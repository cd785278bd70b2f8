"""Analysis stage: gated on a completed transcript, runs one synchronous provider call per entry."""

import json
import logging
from collections.abc import Callable
from datetime import datetime

from health_diary.models.entry import STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING, STATUS_PROCESSING, Entry
from health_diary.models.processing_job import JOB_TYPE_ANALYSIS
from health_diary.services.analysis_provider import AnalysisProvider, AnalysisResult
from health_diary.services.blob_store import BlobStore, timestamp_slug
from health_diary.services.errors import ProviderError, StaleStateError, StorageError
from health_diary.services.record_store import RecordStore
from health_diary.services.transcription_stage import extract_transcript_text

logger = logging.getLogger("health_diary.analysis_stage")


def summary_document(result: AnalysisResult, processed_at: datetime) -> dict:
    """Structured summary as stored in the blob store."""
    data = result.analysis.model_dump(mode="json")
    data["metadata"] = {
        **data.get("metadata", {}),
        "processed_at": processed_at.isoformat(),
        "usage": result.usage,
    }
    return data


class AnalysisStage:
    """Runs analysis for every entry whose transcript is ready and analysis still pending."""

    def __init__(
        self,
        records: RecordStore,
        blobs: BlobStore,
        provider: AnalysisProvider,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.records = records
        self.blobs = blobs
        self.provider = provider
        self.clock = clock

    def reconcile(self) -> int:
        """Advance every eligible entry. Returns how many reached a terminal state."""
        finished = 0
        entries = self.records.get_entries_by_status(
            transcription_status=STATUS_COMPLETED,
            analysis_status=STATUS_PENDING,
            with_transcript=True,
        )
        for entry in entries:
            try:
                if self.run(entry):
                    finished += 1
            except Exception:
                logger.exception("Error processing analysis for entry %s", entry.id)
        return finished

    def run(self, entry: Entry) -> bool:
        """Analyze one entry. Returns False when another writer claimed it first."""
        if entry.transcription_status != STATUS_COMPLETED or not entry.transcript_ref:
            raise ValueError(f"Entry {entry.id} has no completed transcript")

        # Inputs are read before claiming so a storage outage leaves the entry pending.
        text = extract_transcript_text(self.blobs.get(entry.transcript_ref).decode("utf-8"))
        preferences = self.records.get_user_preferences(entry.owner_id)

        with self.records.unit_of_work() as db:
            claimed = self.records.claim_entry_stage(
                entry.id,
                "analysis",
                STATUS_PENDING,
                STATUS_PROCESSING,
                requires={"transcription_status": STATUS_COMPLETED},
                db=db,
            )
            if not claimed:
                logger.info("Entry %s analysis already claimed, skipping", entry.id)
                return False
            job = self.records.create_job(
                {"entry_id": entry.id, "job_type": JOB_TYPE_ANALYSIS, "status": STATUS_PROCESSING},
                db=db,
            )

        try:
            result = self.provider.analyze(text, preferences.topics, preferences.tone)
        except ProviderError as e:
            logger.error("Analysis failed for entry %s: %s", entry.id, e)
            return self._fail(entry.id, job.id, str(e))
        except Exception as e:
            self._fail(entry.id, job.id, f"unexpected error: {e}")
            raise

        now = self.clock()
        try:
            summary_ref = self.blobs.put(
                entry.owner_id,
                f"structured-summaries/{timestamp_slug(now)}-summary.json",
                json.dumps(summary_document(result, now), indent=2).encode("utf-8"),
                "application/json",
            )
        except StorageError as e:
            # The provider call already happened; the stage cannot go back to pending.
            logger.error("Could not store analysis for entry %s: %s", entry.id, e)
            return self._fail(entry.id, job.id, str(e))

        with self.records.unit_of_work() as db:
            updated = self.records.update_entry(
                entry.id,
                {"analysis_status": STATUS_COMPLETED, "summary_ref": summary_ref},
                expected={"analysis_status": STATUS_PROCESSING, "summary_ref": None},
                db=db,
            )
            if not updated:
                raise StaleStateError(f"Entry {entry.id} is no longer being analyzed")
            self.records.update_job(
                job.id,
                {"status": STATUS_COMPLETED, "provider_job_id": result.request_id},
                expected={"status": STATUS_PROCESSING},
                db=db,
            )
        logger.info("Analysis completed for entry %s", entry.id)
        return True

    def _fail(self, entry_id: str, job_id: str, reason: str) -> bool:
        with self.records.unit_of_work() as db:
            self.records.update_job(
                job_id,
                {"status": STATUS_FAILED, "error_message": reason},
                expected={"status": STATUS_PROCESSING},
                db=db,
            )
            self.records.update_entry(
                entry_id,
                {"analysis_status": STATUS_FAILED},
                expected={"analysis_status": STATUS_PROCESSING},
                db=db,
            )
        return True
