"""Entry service: upload validation, read path and deletion around the pipeline's records."""

import json
import logging
from collections.abc import Callable
from datetime import datetime

from fastapi import UploadFile

from health_diary.models.entry import STATUS_COMPLETED, Entry
from health_diary.services.analysis_provider import AnalysisProvider
from health_diary.services.blob_store import BlobStore, audio_logical_path
from health_diary.services.errors import StorageError
from health_diary.services.record_store import RecordStore
from health_diary.services.transcription_stage import extract_transcript_text

logger = logging.getLogger("health_diary.entries")


class EntryNotReadyError(Exception):
    """The requested operation needs a stage that has not completed yet."""


class EntryService:
    """Handles entry creation, retrieval and deletion."""

    def __init__(
        self,
        records: RecordStore,
        blobs: BlobStore,
        analysis_provider: AnalysisProvider,
        allowed_audio_types: list[str],
        max_upload_size_mb: int = 50,
        signed_url_ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.records = records
        self.blobs = blobs
        self.analysis_provider = analysis_provider
        self.allowed_audio_types = allowed_audio_types
        self.max_upload_size_mb = max_upload_size_mb
        self.signed_url_ttl_seconds = signed_url_ttl_seconds
        self.clock = clock

    def validate_content_type(self, content_type: str | None) -> str | None:
        """Returns error message or None if valid."""
        if not content_type or content_type not in self.allowed_audio_types:
            return f"File type {content_type} not allowed. Allowed types: {', '.join(self.allowed_audio_types)}"
        return None

    async def read_upload(self, upload: UploadFile) -> bytes:
        """Read the upload with size limit enforcement.

        Raises ValueError if the file is empty or exceeds max upload size.
        """
        max_bytes = self.max_upload_size_mb * 1024 * 1024
        chunks = []
        size = 0
        chunk_size = 1024 * 64  # 64KB chunks
        while True:
            chunk = await upload.read(chunk_size)
            if not chunk:
                break
            size += len(chunk)
            if size > max_bytes:
                raise ValueError(f"File too large ({size // (1024 * 1024)}MB). Maximum: {self.max_upload_size_mb}MB")
            chunks.append(chunk)
        if size == 0:
            raise ValueError("Audio file is required")
        return b"".join(chunks)

    def create_entry(
        self, owner_id: str, audio: bytes, content_type: str, occurred_at: datetime | None = None
    ) -> Entry:
        """Store the audio and create the entry with both stages pending; the scheduler takes it from here."""
        now = self.clock()
        audio_ref = self.blobs.put(owner_id, audio_logical_path(content_type, now), audio, content_type)
        try:
            entry = self.records.create_entry(owner_id, audio_ref, occurred_at=occurred_at)
        except Exception:
            self._delete_blobs([audio_ref])
            raise
        logger.info("Entry %s created for user %s", entry.id, owner_id)
        return entry

    def get_entry(self, entry_id: str, owner_id: str) -> Entry | None:
        return self.records.get_entry(entry_id, owner_id=owner_id)

    def list_entries(self, owner_id: str, limit: int = 20, offset: int = 0) -> tuple[list[Entry], int]:
        return self.records.list_entries(owner_id, limit=limit, offset=offset)

    def get_entry_detail(self, entry_id: str, owner_id: str) -> dict | None:
        """Entry statuses plus transcript text and analysis, fetched from the blob store on demand."""
        entry = self.records.get_entry(entry_id, owner_id=owner_id)
        if entry is None:
            return None

        detail = {
            "id": entry.id,
            "occurred_at": entry.occurred_at,
            "transcription_status": entry.transcription_status,
            "analysis_status": entry.analysis_status,
            "created_at": entry.created_at,
            "updated_at": entry.updated_at,
            "transcript": None,
            "analysis": None,
            "audio_url": None,
            "jobs": self.records.get_entry_jobs(entry.id),
        }
        if entry.transcript_ref:
            try:
                detail["transcript"] = extract_transcript_text(self.blobs.get(entry.transcript_ref).decode("utf-8"))
            except (StorageError, ValueError) as e:
                logger.error("Error fetching transcript for entry %s: %s", entry.id, e)
        if entry.summary_ref:
            try:
                detail["analysis"] = json.loads(self.blobs.get(entry.summary_ref))
            except (StorageError, ValueError) as e:
                logger.error("Error fetching analysis for entry %s: %s", entry.id, e)
        try:
            detail["audio_url"] = self.blobs.signed_url(entry.audio_ref, self.signed_url_ttl_seconds)
        except StorageError as e:
            logger.error("Error signing audio URL for entry %s: %s", entry.id, e)
        return detail

    def delete_entry(self, entry_id: str, owner_id: str) -> bool:
        """Delete the entry and its jobs, then its blobs (best-effort)."""
        entry = self.records.delete_entry(entry_id, owner_id=owner_id)
        if entry is None:
            return False
        self._delete_blobs(entry.blob_refs)
        logger.info("Entry %s deleted", entry_id)
        return True

    def _delete_blobs(self, refs: list[str]) -> None:
        for ref in refs:
            try:
                self.blobs.delete(ref)
            except StorageError as e:
                logger.warning("Orphaned blob %s left behind: %s", ref, e)

    def follow_up_questions(self, entry_id: str, owner_id: str) -> dict | None:
        """Questions about tracked topics the entry did not mention."""
        entry = self.records.get_entry(entry_id, owner_id=owner_id)
        if entry is None:
            return None
        if entry.analysis_status != STATUS_COMPLETED or not entry.summary_ref:
            raise EntryNotReadyError("Entry analysis not yet completed")

        analysis = json.loads(self.blobs.get(entry.summary_ref))
        missing = analysis.get("missing_subjects") or []
        if not missing:
            return {"questions": [], "missing_subjects": []}

        text = extract_transcript_text(self.blobs.get(entry.transcript_ref).decode("utf-8"))
        preferences = self.records.get_user_preferences(owner_id)
        questions = self.analysis_provider.follow_up_questions(text, missing, preferences.tone)
        return {"questions": questions, "missing_subjects": missing}

    def processing_status(self, owner_id: str) -> dict:
        return {
            "stats": self.records.processing_stats(owner_id),
            "recent_jobs": self.records.recent_jobs(owner_id, limit=10),
        }
