"""Request dependencies: the process-wide pipeline and the authenticated caller."""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request

from health_diary.services.entry import EntryService
from health_diary.services.jwt import get_jwt_service
from health_diary.services.pipeline import Pipeline
from health_diary.services.scheduler import PipelineScheduler


@dataclass
class CurrentUser:
    """Authenticated user context."""

    user_id: str
    email: str | None
    display_name: str | None


def get_pipeline(request: Request) -> Pipeline:
    """The pipeline built by the application lifespan."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialised")
    return pipeline


def get_entry_service(pipeline: Pipeline = Depends(get_pipeline)) -> EntryService:
    return pipeline.entries


def get_scheduler(pipeline: Pipeline = Depends(get_pipeline)) -> PipelineScheduler:
    return pipeline.scheduler


def get_current_user(request: Request, pipeline: Pipeline = Depends(get_pipeline)) -> CurrentUser:
    """Validate the Bearer token and make sure the caller has a profile row. Raises 401 if invalid."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")

    claims = get_jwt_service().decode_token(auth_header[7:])
    if claims is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = CurrentUser(user_id=claims.user_id, email=claims.email, display_name=claims.display_name)
    pipeline.records.ensure_user(user.user_id, email=user.email, display_name=user.display_name)
    return user
