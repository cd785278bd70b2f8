"""Transcription stage: pending -> processing (remote job outstanding) -> completed | failed."""

import logging
import re
from collections.abc import Callable
from datetime import datetime

from health_diary.models.entry import STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING, STATUS_PROCESSING, Entry
from health_diary.models.processing_job import JOB_TYPE_TRANSCRIPTION, ProcessingJob
from health_diary.services.blob_store import BlobStore, timestamp_slug
from health_diary.services.errors import PollingError, ResultShapeError, StaleStateError, SubmissionError
from health_diary.services.record_store import RecordStore
from health_diary.services.transcription_provider import (
    STATE_COMPLETED,
    STATE_FAILED,
    TranscriptionProvider,
    TranscriptionResult,
)

logger = logging.getLogger("health_diary.transcription_stage")

TRANSCRIPT_SECTION = re.compile(r"## Transcript\n([\s\S]*?)\n\n## Metadata")


def average_confidence(confidences: list[float]) -> float:
    """Arithmetic mean of token confidences; 0 when nothing is scoreable."""
    if not confidences:
        return 0.0
    return sum(confidences) / len(confidences)


def render_transcript(result: TranscriptionResult, confidence: float, processed_at: datetime) -> str:
    """Markdown document stored as the entry's transcript blob."""
    duration = f"{result.duration_seconds:.1f}s" if result.duration_seconds else "Unknown"
    return (
        f"# Health Diary Entry - {processed_at.date().isoformat()}\n\n"
        f"## Transcript\n{result.text}\n\n"
        "## Metadata\n"
        f"- **Confidence**: {confidence:.2f}\n"
        f"- **Word Count**: {len(result.text.split())}\n"
        f"- **Duration**: {duration}\n"
        f"- **Processed**: {processed_at.isoformat()}\n"
    )


def extract_transcript_text(document: str) -> str:
    """Pull the plain text back out of a stored transcript document."""
    match = TRANSCRIPT_SECTION.search(document)
    return match.group(1).strip() if match else document.strip()


class TranscriptionStage:
    """Starts remote transcription jobs and reconciles outstanding ones."""

    def __init__(
        self,
        records: RecordStore,
        blobs: BlobStore,
        provider: TranscriptionProvider,
        language: str = "en-GB",
        max_poll_errors: int = 30,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.records = records
        self.blobs = blobs
        self.provider = provider
        self.language = language
        self.max_poll_errors = max_poll_errors
        self.clock = clock

    def start(self, entry: Entry) -> ProcessingJob | None:
        """Submit the entry's audio. Returns the new job, or None if submission failed."""
        if entry.transcription_status != STATUS_PENDING:
            raise ValueError(f"Entry {entry.id} transcription is '{entry.transcription_status}', expected pending")

        try:
            provider_job_id = self.provider.submit(entry.audio_ref, self.language)
        except SubmissionError as e:
            logger.error("Transcription submission failed for entry %s: %s", entry.id, e)
            self.records.update_entry(
                entry.id,
                {"transcription_status": STATUS_FAILED},
                expected={"transcription_status": STATUS_PENDING},
            )
            return None

        with self.records.unit_of_work() as db:
            job = self.records.create_job(
                {
                    "entry_id": entry.id,
                    "job_type": JOB_TYPE_TRANSCRIPTION,
                    "status": STATUS_PROCESSING,
                    "provider_job_id": provider_job_id,
                },
                db=db,
            )
            claimed = self.records.claim_entry_stage(entry.id, "transcription", STATUS_PENDING, STATUS_PROCESSING, db=db)
            if not claimed:
                raise StaleStateError(f"Entry {entry.id} left pending while job {provider_job_id} was submitted")
        logger.info("Transcription started for entry %s (provider job %s)", entry.id, provider_job_id)
        return job

    def start_pending(self) -> int:
        """Start every pending entry. Per-entry errors are logged and leave the entry pending."""
        started = 0
        for entry in self.records.get_entries_by_status(transcription_status=STATUS_PENDING):
            try:
                if self.start(entry) is not None:
                    started += 1
            except Exception:
                logger.exception("Error starting transcription for entry %s", entry.id)
        return started

    def reconcile(self) -> int:
        """Poll every outstanding transcription job. Returns how many reached a terminal state."""
        finished = 0
        for job in self.records.get_jobs_by_status(JOB_TYPE_TRANSCRIPTION, STATUS_PROCESSING):
            try:
                if self.reconcile_job(job):
                    finished += 1
            except Exception:
                logger.exception("Error processing transcription job %s", job.id)
        return finished

    def reconcile_job(self, job: ProcessingJob) -> bool:
        try:
            status = self.provider.poll_status(job.provider_job_id)
        except PollingError as e:
            return self._record_poll_error(job, e)

        if status.state == STATE_COMPLETED:
            return self._complete(job, status.result_ref)
        if status.state == STATE_FAILED:
            logger.error("Transcription failed for entry %s: %s", job.entry_id, status.failure_reason)
            return self._fail(job, status.failure_reason or "transcription failed")
        return False

    def _record_poll_error(self, job: ProcessingJob, error: PollingError) -> bool:
        count = self.records.increment_poll_errors(job.id, str(error))
        if self.max_poll_errors and count >= self.max_poll_errors:
            logger.error("Giving up on transcription job %s after %d failed status checks", job.id, count)
            return self._fail(job, f"status check failed {count} times: {error}")
        logger.warning("Status check %d for transcription job %s failed: %s", count, job.id, error)
        return False

    def _complete(self, job: ProcessingJob, result_ref: str | None) -> bool:
        entry = self.records.get_entry(job.entry_id)
        if entry is None:
            logger.warning("Entry %s for transcription job %s no longer exists", job.entry_id, job.id)
            return False

        try:
            if not result_ref:
                raise ResultShapeError("provider reported completion without a result")
            result = self.provider.fetch_result(result_ref)
        except ResultShapeError as e:
            logger.error("Unusable transcription result for entry %s: %s", entry.id, e)
            return self._fail(job, str(e))

        now = self.clock()
        confidence = average_confidence(result.token_confidences)
        document = render_transcript(result, confidence, now)
        transcript_ref = self.blobs.put(
            entry.owner_id,
            f"raw-transcripts/{timestamp_slug(now)}-raw.md",
            document.encode("utf-8"),
            "text/markdown",
        )

        with self.records.unit_of_work() as db:
            claimed = self.records.update_entry(
                entry.id,
                {"transcription_status": STATUS_COMPLETED, "transcript_ref": transcript_ref},
                expected={"transcription_status": STATUS_PROCESSING, "transcript_ref": None},
                db=db,
            )
            if not claimed:
                raise StaleStateError(f"Entry {entry.id} is no longer awaiting transcription")
            self.records.update_job(
                job.id,
                {"status": STATUS_COMPLETED, "error_message": None},
                expected={"status": STATUS_PROCESSING},
                db=db,
            )
        logger.info("Transcription completed for entry %s (confidence %.2f)", entry.id, confidence)
        return True

    def _fail(self, job: ProcessingJob, reason: str) -> bool:
        with self.records.unit_of_work() as db:
            self.records.update_job(
                job.id,
                {"status": STATUS_FAILED, "error_message": reason},
                expected={"status": STATUS_PROCESSING},
                db=db,
            )
            self.records.update_entry(
                job.entry_id,
                {"transcription_status": STATUS_FAILED},
                expected={"transcription_status": STATUS_PROCESSING},
                db=db,
            )
        return True
