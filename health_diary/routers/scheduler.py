"""Operational endpoints for the background scheduler."""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from health_diary.dependencies import CurrentUser, get_current_user, get_scheduler
from health_diary.schemas.scheduler import SchedulerStatusResponse, TickReportResponse
from health_diary.services.scheduler import PipelineScheduler

router = APIRouter(prefix="/api/v1/scheduler", tags=["Scheduler"])


@router.get("/status", response_model=SchedulerStatusResponse)
def scheduler_status(
    user: CurrentUser = Depends(get_current_user),
    scheduler: PipelineScheduler = Depends(get_scheduler),
) -> SchedulerStatusResponse:
    """Whether the scheduler loop is active, plus the last tick's counters."""
    return SchedulerStatusResponse(**scheduler.get_status())


@router.post("/run", response_model=TickReportResponse)
def force_run(
    user: CurrentUser = Depends(get_current_user),
    scheduler: PipelineScheduler = Depends(get_scheduler),
) -> TickReportResponse:
    """Run a tick now. Waits for a tick already in progress."""
    return TickReportResponse(**asdict(scheduler.force_run()))
