"""Speech-to-text providers: AWS Transcribe, and faster-whisper for local runs."""

import json
import logging
import tempfile
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from health_diary.services.blob_store import BlobStore
from health_diary.services.errors import PollingError, ResultShapeError, StorageError, SubmissionError

logger = logging.getLogger("health_diary.transcription")

STATE_RUNNING = "running"
STATE_COMPLETED = "completed"
STATE_FAILED = "failed"

AWS_STATES = {
    "QUEUED": STATE_RUNNING,
    "IN_PROGRESS": STATE_RUNNING,
    "COMPLETED": STATE_COMPLETED,
    "FAILED": STATE_FAILED,
}


@dataclass(frozen=True)
class PollResult:
    """Provider-side state of one job."""

    state: str
    result_ref: str | None = None
    failure_reason: str | None = None


@dataclass
class TranscriptionResult:
    """Plain transcript text plus whatever per-token confidence the provider reports."""

    text: str
    token_confidences: list[float] = field(default_factory=list)
    duration_seconds: float | None = None


class TranscriptionProvider(Protocol):
    def submit(self, audio_ref: str, language_hint: str) -> str: ...

    def poll_status(self, provider_job_id: str) -> PollResult: ...

    def fetch_result(self, result_ref: str) -> TranscriptionResult: ...


def job_name() -> str:
    return f"healthdiary-{uuid.uuid4().hex[:12]}-{int(time.time() * 1000)}"


class AwsTranscribeProvider:
    """Amazon Transcribe batch jobs reading audio from, and writing results to, the blob bucket."""

    def __init__(
        self,
        blob_store: BlobStore,
        bucket_name: str,
        region: str | None = None,
        timeout_seconds: int = 60,
        vocabulary_filter: str | None = None,
        client=None,
    ) -> None:
        self.blob_store = blob_store
        self.bucket_name = bucket_name
        self.vocabulary_filter = vocabulary_filter
        if client is None:
            config = Config(connect_timeout=timeout_seconds, read_timeout=timeout_seconds, retries={"max_attempts": 3})
            client = boto3.client("transcribe", region_name=region, config=config)
        self.client = client

    def output_key(self, audio_ref: str, name: str) -> str:
        """Result JSON sits next to the audio, under transcripts/ instead of audio-files/."""
        prefix = audio_ref.rsplit("/audio-files/", 1)[0] if "/audio-files/" in audio_ref else "transcripts"
        return f"{prefix}/transcripts/{name}-transcript.json"

    def submit(self, audio_ref: str, language_hint: str) -> str:
        name = job_name()
        settings = {"ShowSpeakerLabels": False, "ShowAlternatives": False}
        if self.vocabulary_filter:
            settings["VocabularyFilterName"] = self.vocabulary_filter
            settings["VocabularyFilterMethod"] = "mask"
        try:
            self.client.start_transcription_job(
                TranscriptionJobName=name,
                LanguageCode=language_hint,
                Media={"MediaFileUri": f"s3://{self.bucket_name}/{audio_ref}"},
                OutputBucketName=self.bucket_name,
                OutputKey=self.output_key(audio_ref, name),
                Settings=settings,
            )
        except (BotoCoreError, ClientError) as e:
            raise SubmissionError(f"Failed to start transcription job for {audio_ref}: {e}") from e
        logger.info("Transcription job started: %s", name)
        return name

    def poll_status(self, provider_job_id: str) -> PollResult:
        try:
            response = self.client.get_transcription_job(TranscriptionJobName=provider_job_id)
        except (BotoCoreError, ClientError) as e:
            raise PollingError(f"Failed to check transcription job {provider_job_id}: {e}") from e

        job = response["TranscriptionJob"]
        aws_state = job.get("TranscriptionJobStatus")
        state = AWS_STATES.get(aws_state)
        if state is None:
            raise PollingError(f"Unknown transcription job status '{aws_state}' for {provider_job_id}")
        if state == STATE_COMPLETED:
            return PollResult(state=state, result_ref=job.get("Transcript", {}).get("TranscriptFileUri"))
        if state == STATE_FAILED:
            return PollResult(state=state, failure_reason=job.get("FailureReason") or "unknown failure")
        return PollResult(state=state)

    def result_key(self, result_ref: str) -> str:
        """Map s3:// or https:// transcript URIs to an object key in our bucket."""
        if result_ref.startswith("s3://"):
            return result_ref.removeprefix(f"s3://{self.bucket_name}/")
        key = urlparse(result_ref).path.lstrip("/")
        # Path-style URLs carry the bucket as the first segment
        return key.removeprefix(f"{self.bucket_name}/")

    def fetch_result(self, result_ref: str) -> TranscriptionResult:
        raw = self.blob_store.get(self.result_key(result_ref))
        try:
            payload = json.loads(raw)
            results = payload["results"]
            text = results["transcripts"][0]["transcript"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ResultShapeError(f"Unexpected transcription result format: {e}") from e

        confidences = []
        for item in results.get("items") or []:
            alternatives = item.get("alternatives") or []
            if not alternatives or alternatives[0].get("confidence") in (None, ""):
                continue
            try:
                confidences.append(float(alternatives[0]["confidence"]))
            except (TypeError, ValueError):
                continue

        duration = None
        end_times = [float(i["end_time"]) for i in results.get("items") or [] if i.get("end_time")]
        if end_times:
            duration = max(end_times)
        return TranscriptionResult(text=text, token_confidences=confidences, duration_seconds=duration)


class WhisperTranscriptionProvider:
    """Runs faster-whisper on a worker thread and keeps job state on disk.

    Job status lives in ``<work_dir>/<job_id>.status.json`` so handles stay pollable after a
    restart; a job still marked running that this process never started was interrupted.
    """

    def __init__(self, blob_store: BlobStore, work_dir: str | Path, model_size: str = "base", max_workers: int = 1):
        self.blob_store = blob_store
        self.work_dir = Path(work_dir)
        self.model_size = model_size
        self._model = None
        self._model_lock = threading.Lock()
        self._active: set[str] = set()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="whisper")

    def _get_model(self):
        """Lazy-load the whisper model."""
        with self._model_lock:
            if self._model is None:
                from faster_whisper import WhisperModel

                self._model = WhisperModel(self.model_size, device="cpu", compute_type="int8")
            return self._model

    def _status_path(self, job_id: str) -> Path:
        return self.work_dir / f"{job_id}.status.json"

    def _write_status(self, job_id: str, **status) -> None:
        path = self._status_path(job_id)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(status))
        tmp.replace(path)

    def submit(self, audio_ref: str, language_hint: str) -> str:
        job_id = job_name()
        try:
            self.work_dir.mkdir(parents=True, exist_ok=True)
            self._write_status(job_id, state=STATE_RUNNING, audio_ref=audio_ref)
            self._active.add(job_id)
            self._executor.submit(self._run, job_id, audio_ref, language_hint)
        except (OSError, RuntimeError) as e:
            self._active.discard(job_id)
            raise SubmissionError(f"Failed to queue local transcription for {audio_ref}: {e}") from e
        logger.info("Local transcription job queued: %s", job_id)
        return job_id

    def _run(self, job_id: str, audio_ref: str, language_hint: str) -> None:
        try:
            audio = self.blob_store.get(audio_ref)
            suffix = Path(audio_ref).suffix or ".bin"
            with tempfile.NamedTemporaryFile(suffix=suffix, dir=self.work_dir, delete=False) as f:
                f.write(audio)
                audio_path = Path(f.name)
            try:
                model = self._get_model()
                segments_iter, info = model.transcribe(
                    str(audio_path),
                    beam_size=5,
                    language=language_hint.split("-")[0].lower() or None,
                    word_timestamps=True,
                )
                segments_list = list(segments_iter)
            finally:
                audio_path.unlink(missing_ok=True)

            full_text = " ".join(seg.text.strip() for seg in segments_list)
            confidences = [w.probability for seg in segments_list for w in (seg.words or [])]
            result_path = self.work_dir / f"{job_id}.result.json"
            result_path.write_text(
                json.dumps(
                    {
                        "text": full_text,
                        "token_confidences": confidences,
                        "duration_seconds": getattr(info, "duration", None),
                    }
                )
            )
            self._write_status(job_id, state=STATE_COMPLETED, result_ref=str(result_path))
        except Exception as e:
            logger.exception("Local transcription job %s failed", job_id)
            self._write_status(job_id, state=STATE_FAILED, failure_reason=str(e) or type(e).__name__)
        finally:
            self._active.discard(job_id)

    def poll_status(self, provider_job_id: str) -> PollResult:
        path = self._status_path(provider_job_id)
        try:
            status = json.loads(path.read_text())
        except FileNotFoundError:
            return PollResult(state=STATE_FAILED, failure_reason="unknown transcription job")
        except (OSError, ValueError) as e:
            raise PollingError(f"Failed to read status of {provider_job_id}: {e}") from e

        state = status.get("state")
        if state == STATE_RUNNING and provider_job_id not in self._active:
            return PollResult(state=STATE_FAILED, failure_reason="interrupted before completion")
        return PollResult(state=state, result_ref=status.get("result_ref"), failure_reason=status.get("failure_reason"))

    def fetch_result(self, result_ref: str) -> TranscriptionResult:
        try:
            payload = json.loads(Path(result_ref).read_text())
        except OSError as e:
            raise StorageError(f"Failed to read transcription result {result_ref}: {e}") from e
        except ValueError as e:
            raise ResultShapeError(f"Unexpected transcription result format: {e}") from e
        try:
            return TranscriptionResult(
                text=payload["text"],
                token_confidences=[float(c) for c in payload.get("token_confidences") or []],
                duration_seconds=payload.get("duration_seconds"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ResultShapeError(f"Unexpected transcription result format: {e}") from e

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
