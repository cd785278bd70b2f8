"""Pytest configuration and fixtures."""

import json
import os

# Settings are read at import time; keep tests off real services and the scheduler thread.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["STORAGE_BACKEND"] = "local"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["TRANSCRIPTION_MAX_POLL_ERRORS"] = "3"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from health_diary.config import get_settings  # noqa: E402
from health_diary.database import Base  # noqa: E402
from health_diary.models.entry import Entry  # noqa: E402, F401
from health_diary.models.processing_job import ProcessingJob  # noqa: E402, F401
from health_diary.models.user import User, UserTopic  # noqa: E402, F401
from health_diary.services.analysis_provider import AnalysisResult, parse_structured_analysis  # noqa: E402
from health_diary.services.blob_store import LocalBlobStore  # noqa: E402
from health_diary.services.errors import PollingError, SubmissionError  # noqa: E402
from health_diary.services.pipeline import assemble_pipeline  # noqa: E402
from health_diary.services.record_store import RecordStore  # noqa: E402
from health_diary.services.transcription_provider import (  # noqa: E402
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_RUNNING,
    PollResult,
    TranscriptionResult,
)

ANALYSIS_REPLY = {
    "summary": "Slept badly and felt anxious this morning.",
    "subjects": {
        "mood": {"mentioned": True, "data": {"notes": "anxious in the morning"}, "confidence": 0.8},
        "wellness": {"mentioned": False, "data": {}, "confidence": 0.0},
    },
    "missing_subjects": ["wellness"],
    "health_flags": {
        "concerning_symptoms": [],
        "positive_trends": [],
        "recommendations": ["Try winding down earlier in the evening"],
    },
    "metadata": {"word_count": 8, "key_themes": ["sleep", "anxiety"], "emotional_tone": "anxious"},
}


class FakeTranscriptionProvider:
    """In-memory provider whose jobs move only when a test says so."""

    def __init__(self) -> None:
        self.submitted: list[tuple[str, str]] = []
        self.states: dict[str, PollResult] = {}
        self.results: dict[str, TranscriptionResult] = {}
        self.poll_errors: dict[str, int] = {}
        self.poll_calls = 0
        self.submit_error: str | None = None

    def submit(self, audio_ref: str, language_hint: str) -> str:
        if self.submit_error:
            raise SubmissionError(self.submit_error)
        self.submitted.append((audio_ref, language_hint))
        handle = f"t{len(self.submitted)}"
        self.states[handle] = PollResult(state=STATE_RUNNING)
        return handle

    def poll_status(self, provider_job_id: str) -> PollResult:
        self.poll_calls += 1
        if self.poll_errors.get(provider_job_id):
            self.poll_errors[provider_job_id] -= 1
            raise PollingError("connection reset by peer")
        return self.states[provider_job_id]

    def fetch_result(self, result_ref: str) -> TranscriptionResult:
        return self.results[result_ref]

    def complete(self, handle: str, text: str, confidences: list[float] | None = None) -> None:
        ref = f"results/{handle}.json"
        self.states[handle] = PollResult(state=STATE_COMPLETED, result_ref=ref)
        self.results[ref] = TranscriptionResult(text=text, token_confidences=confidences or [], duration_seconds=4.2)

    def fail(self, handle: str, reason: str) -> None:
        self.states[handle] = PollResult(state=STATE_FAILED, failure_reason=reason)


class FakeAnalysisProvider:
    """Parses a canned model reply with the real parser, so malformed replies behave as in production."""

    def __init__(self) -> None:
        self.reply = json.dumps(ANALYSIS_REPLY)
        self.error: Exception | None = None
        self.calls: list[dict] = []
        self.questions = ["How have you been feeling in yourself today?"]
        self.follow_up_calls: list[dict] = []

    def analyze(self, text: str, topics: list[str], tone: str) -> AnalysisResult:
        self.calls.append({"text": text, "topics": list(topics), "tone": tone})
        if self.error is not None:
            raise self.error
        return AnalysisResult(
            analysis=parse_structured_analysis(self.reply),
            usage={"input_tokens": 120, "output_tokens": 80},
            request_id=f"msg_{len(self.calls)}",
        )

    def follow_up_questions(self, text: str, missing_topics: list[str], tone: str) -> list[str]:
        self.follow_up_calls.append({"text": text, "missing_topics": list(missing_topics), "tone": tone})
        return list(self.questions)


@pytest.fixture(name="session_factory")
def session_factory_fixture():
    """Create an in-memory SQLite database for tests."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(name="records")
def records_fixture(session_factory) -> RecordStore:
    return RecordStore(session_factory)


@pytest.fixture(name="blobs")
def blobs_fixture(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture(name="transcriber")
def transcriber_fixture() -> FakeTranscriptionProvider:
    return FakeTranscriptionProvider()


@pytest.fixture(name="analyzer")
def analyzer_fixture() -> FakeAnalysisProvider:
    return FakeAnalysisProvider()


@pytest.fixture(name="pipeline")
def pipeline_fixture(records, blobs, transcriber, analyzer):
    """Pipeline wired with the fakes; the scheduler is never started."""
    return assemble_pipeline(get_settings(), records, blobs, transcriber, analyzer)


@pytest.fixture(name="make_entry")
def make_entry_fixture(records: RecordStore, blobs: LocalBlobStore):
    """Store a dummy recording and create a pending entry for it."""

    def _make(owner_id: str = "user-1") -> Entry:
        records.ensure_user(owner_id, email=f"{owner_id}@example.com", display_name="Diary Owner")
        audio_ref = blobs.put(owner_id, "audio-files/test.mp3", b"\x00" * 256, "audio/mpeg")
        return records.create_entry(owner_id, audio_ref)

    return _make


@pytest.fixture(name="client")
def client_fixture(pipeline):
    """Create a test client around the fake pipeline with rate limiting disabled."""
    from health_diary.rate_limit import limiter
    from main import app

    app.state.pipeline = pipeline
    limiter.enabled = False
    with TestClient(app) as c:
        yield c
    limiter.enabled = True
    app.state.pipeline = None


@pytest.fixture(name="test_user")
def test_user_fixture() -> dict:
    """Token for a user known to the account service, as it would issue it."""
    from health_diary.services.jwt import get_jwt_service

    user = {"user_id": "acct-7f3a", "email": "test@example.com", "display_name": "Test User"}
    user["token"] = get_jwt_service().create_token(
        user_id=user["user_id"],
        email=user["email"],
        display_name=user["display_name"],
    )
    return user
