"""Wires the record store, blob store, providers, stages and scheduler from settings."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from sqlalchemy.orm import Session

from health_diary.config import Settings
from health_diary.services.analysis_provider import AnalysisProvider, AnthropicAnalysisProvider
from health_diary.services.analysis_stage import AnalysisStage
from health_diary.services.blob_store import BlobStore, LocalBlobStore, S3BlobStore
from health_diary.services.entry import EntryService
from health_diary.services.record_store import RecordStore
from health_diary.services.scheduler import PipelineScheduler
from health_diary.services.transcription_provider import (
    AwsTranscribeProvider,
    TranscriptionProvider,
    WhisperTranscriptionProvider,
)
from health_diary.services.transcription_stage import TranscriptionStage

logger = logging.getLogger("health_diary.pipeline")


@dataclass
class Pipeline:
    """Everything the process entry point owns."""

    records: RecordStore
    blobs: BlobStore
    entries: EntryService
    transcription: TranscriptionStage
    analysis: AnalysisStage
    scheduler: PipelineScheduler


def assemble_pipeline(
    settings: Settings,
    records: RecordStore,
    blobs: BlobStore,
    transcription_provider: TranscriptionProvider,
    analysis_provider: AnalysisProvider,
    clock: Callable[[], datetime] = datetime.utcnow,
) -> Pipeline:
    """Build stages, scheduler and entry service around already-constructed collaborators."""
    transcription = TranscriptionStage(
        records,
        blobs,
        transcription_provider,
        language=settings.TRANSCRIPTION_LANGUAGE,
        max_poll_errors=settings.TRANSCRIPTION_MAX_POLL_ERRORS,
        clock=clock,
    )
    analysis = AnalysisStage(records, blobs, analysis_provider, clock=clock)
    entries = EntryService(
        records,
        blobs,
        analysis_provider,
        allowed_audio_types=settings.ALLOWED_AUDIO_TYPES,
        max_upload_size_mb=settings.MAX_UPLOAD_SIZE_MB,
        signed_url_ttl_seconds=settings.SIGNED_URL_TTL_SECONDS,
        clock=clock,
    )
    return Pipeline(
        records=records,
        blobs=blobs,
        entries=entries,
        transcription=transcription,
        analysis=analysis,
        scheduler=PipelineScheduler(transcription, analysis, blobs, clock=clock),
    )


def build_blob_store(settings: Settings) -> BlobStore:
    if settings.STORAGE_BACKEND == "s3":
        return S3BlobStore(
            settings.S3_BUCKET_NAME,
            region=settings.AWS_REGION,
            endpoint_url=settings.S3_ENDPOINT_URL,
            timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
        )
    return LocalBlobStore(settings.LOCAL_STORAGE_DIR)


def build_transcription_provider(settings: Settings, blobs: BlobStore) -> TranscriptionProvider:
    if settings.TRANSCRIPTION_PROVIDER == "whisper":
        return WhisperTranscriptionProvider(
            blobs,
            work_dir=Path(settings.LOCAL_STORAGE_DIR) / "whisper-jobs",
            model_size=settings.WHISPER_MODEL_SIZE,
        )
    return AwsTranscribeProvider(
        blobs,
        settings.S3_BUCKET_NAME,
        region=settings.AWS_REGION,
        timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
        vocabulary_filter=settings.TRANSCRIBE_VOCABULARY_FILTER,
    )


def build_pipeline(settings: Settings, session_factory: Callable[[], Session]) -> Pipeline:
    """Production wiring from settings."""
    blobs = build_blob_store(settings)
    analysis_provider = AnthropicAnalysisProvider(
        api_key=settings.ANTHROPIC_API_KEY,
        model=settings.ANALYSIS_MODEL,
        max_tokens=settings.ANALYSIS_MAX_TOKENS,
        temperature=settings.ANALYSIS_TEMPERATURE,
        timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
    )
    logger.info(
        "Pipeline configured: storage=%s transcription=%s analysis_model=%s",
        settings.STORAGE_BACKEND,
        settings.TRANSCRIPTION_PROVIDER,
        settings.ANALYSIS_MODEL,
    )
    return assemble_pipeline(
        settings,
        RecordStore(session_factory),
        blobs,
        build_transcription_provider(settings, blobs),
        analysis_provider,
    )
