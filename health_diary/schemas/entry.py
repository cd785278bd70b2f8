"""Pydantic schemas for entry endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class ProcessingJobResponse(BaseModel):
    id: str
    entry_id: str
    job_type: str
    status: str
    error_message: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EntryResponse(BaseModel):
    id: str
    occurred_at: datetime
    transcription_status: str
    analysis_status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EntryDetailResponse(EntryResponse):
    transcript: str | None = None
    analysis: dict[str, Any] | None = None
    audio_url: str | None = None
    jobs: list[ProcessingJobResponse] = []


class EntryListResponse(BaseModel):
    items: list[EntryResponse]
    total: int
    limit: int
    offset: int


class FollowUpResponse(BaseModel):
    questions: list[str]
    missing_subjects: list[str]


class StatusCount(BaseModel):
    transcription_status: str
    analysis_status: str
    count: int


class ProcessingStatusResponse(BaseModel):
    stats: list[StatusCount]
    recent_jobs: list[ProcessingJobResponse]
