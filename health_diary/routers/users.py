"""User preference API endpoints."""

from fastapi import APIRouter, Depends

from health_diary.dependencies import CurrentUser, get_current_user, get_pipeline
from health_diary.schemas.user import PreferencesResponse, PreferencesUpdate
from health_diary.services.pipeline import Pipeline

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.get("/me/preferences", response_model=PreferencesResponse)
def get_preferences(
    user: CurrentUser = Depends(get_current_user),
    pipeline: Pipeline = Depends(get_pipeline),
) -> PreferencesResponse:
    """Get the caller's analysis tone and tracked topics."""
    prefs = pipeline.records.get_user_preferences(user.user_id)
    return PreferencesResponse(interaction_style=prefs.tone, topics=prefs.topics)


@router.put("/me/preferences", response_model=PreferencesResponse)
def update_preferences(
    body: PreferencesUpdate,
    user: CurrentUser = Depends(get_current_user),
    pipeline: Pipeline = Depends(get_pipeline),
) -> PreferencesResponse:
    """Update tone and/or the tracked topic set. Applies to entries analyzed from now on."""
    pipeline.records.set_user_preferences(
        user.user_id,
        tone=body.interaction_style,
        topics=list(body.topics) if body.topics is not None else None,
    )
    prefs = pipeline.records.get_user_preferences(user.user_id)
    return PreferencesResponse(interaction_style=prefs.tone, topics=prefs.topics)
