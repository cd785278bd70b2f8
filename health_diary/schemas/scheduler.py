"""Pydantic schemas for scheduler endpoints."""

from datetime import datetime

from pydantic import BaseModel


class TickReportResponse(BaseModel):
    started_at: datetime
    finished_at: datetime | None
    transcriptions_started: int
    transcriptions_finished: int
    analyses_finished: int
    errors: int


class SchedulerStatusResponse(BaseModel):
    running: bool
    interval_seconds: float | None
    ticks_completed: int
    ticks_skipped: int
    last_tick: TickReportResponse | None
