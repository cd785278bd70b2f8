"""Diary entry API endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool

from health_diary.dependencies import CurrentUser, get_current_user, get_entry_service
from health_diary.rate_limit import limiter
from health_diary.schemas.entry import (
    EntryDetailResponse,
    EntryListResponse,
    EntryResponse,
    FollowUpResponse,
    ProcessingStatusResponse,
)
from health_diary.services.entry import EntryNotReadyError, EntryService
from health_diary.services.errors import ProviderError, StorageError

router = APIRouter(prefix="/api/v1/entries", tags=["Entries"])


@router.post("/", response_model=EntryResponse, status_code=201)
@limiter.limit("20/minute")
async def upload_entry(
    request: Request,
    audio: UploadFile,
    occurred_at: datetime | None = Form(None),
    user: CurrentUser = Depends(get_current_user),
    service: EntryService = Depends(get_entry_service),
) -> EntryResponse:
    """Upload an audio recording as a new diary entry."""
    error = service.validate_content_type(audio.content_type)
    if error:
        raise HTTPException(status_code=400, detail=error)

    try:
        data = await service.read_upload(audio)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    try:
        # Blob writes block (S3 put_object); keep them off the event loop.
        entry = await run_in_threadpool(
            service.create_entry, user.user_id, data, audio.content_type, occurred_at=occurred_at
        )
    except StorageError as e:
        raise HTTPException(status_code=502, detail="Failed to store audio file") from e

    return EntryResponse.model_validate(entry)


@router.get("/", response_model=EntryListResponse)
def list_entries(
    limit: int = 20,
    offset: int = 0,
    user: CurrentUser = Depends(get_current_user),
    service: EntryService = Depends(get_entry_service),
) -> EntryListResponse:
    """List the caller's entries, newest first."""
    limit = max(1, min(limit, 100))
    offset = max(0, offset)
    items, total = service.list_entries(user.user_id, limit=limit, offset=offset)
    return EntryListResponse(
        items=[EntryResponse.model_validate(e) for e in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/processing-status", response_model=ProcessingStatusResponse)
def processing_status(
    user: CurrentUser = Depends(get_current_user),
    service: EntryService = Depends(get_entry_service),
) -> ProcessingStatusResponse:
    """Entry counts per status pair and the most recent processing jobs."""
    return ProcessingStatusResponse.model_validate(service.processing_status(user.user_id), from_attributes=True)


@router.get("/{entry_id}", response_model=EntryDetailResponse)
def get_entry(
    entry_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: EntryService = Depends(get_entry_service),
) -> EntryDetailResponse:
    """Get an entry with its transcript and analysis when available."""
    detail = service.get_entry_detail(entry_id, user.user_id)
    if not detail:
        raise HTTPException(status_code=404, detail="Entry not found")
    return EntryDetailResponse.model_validate(detail, from_attributes=True)


@router.delete("/{entry_id}")
def delete_entry(
    entry_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: EntryService = Depends(get_entry_service),
) -> dict:
    """Delete an entry, its processing jobs and stored files."""
    if not service.delete_entry(entry_id, user.user_id):
        raise HTTPException(status_code=404, detail="Entry not found")
    return {"detail": "Entry deleted"}


@router.post("/{entry_id}/follow-up", response_model=FollowUpResponse)
def follow_up_questions(
    entry_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: EntryService = Depends(get_entry_service),
) -> FollowUpResponse:
    """Generate follow-up questions for tracked topics the entry did not cover."""
    try:
        result = service.follow_up_questions(entry_id, user.user_id)
    except EntryNotReadyError as e:
        raise HTTPException(status_code=409, detail=str(e)) from None
    except (ProviderError, StorageError) as e:
        raise HTTPException(status_code=502, detail="Failed to generate follow-up questions") from e
    if result is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return FollowUpResponse(**result)
